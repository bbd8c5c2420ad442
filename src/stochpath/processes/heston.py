"""Heston stochastic volatility model simulation.

Two coupled SDEs:
  dS = μ·S·dt + √V·S·dW₁
  dV = κ(θ − V)dt + ξ√V·dW₂
  corr(W₁, W₂) = ρ

The log-price uses the floored variance V⁺ = max(V, 0); the variance
recursion is Euler (full truncation) or Milstein, floored at zero.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import ClassVar

import numpy as np

from stochpath.errors import InvalidParameters
from stochpath.grid import TimeGrid, as_grid
from stochpath.noise import CorrelatedIncrements
from stochpath.processes import Path, ProcessKind, ProcessParams, Scheme, require
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HestonParams(ProcessParams):
    """Heston parameters.

    Attributes:
        mu: Arithmetic drift of the price.
        kappa: Mean reversion speed of variance.
        theta: Long-run variance level.
        xi: Vol-of-vol.
        rho: Correlation between price and variance Brownian motions.
        s0: Initial price.
        v0: Initial variance.
    """

    mu: float = 0.0
    kappa: float = 2.0
    theta: float = 0.04
    xi: float = 0.3
    rho: float = -0.7
    s0: float = 1.0
    v0: float = 0.04

    kind: ClassVar[ProcessKind] = ProcessKind.HESTON
    default_scheme: ClassVar[Scheme] = Scheme.EULER
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EULER, Scheme.MILSTEIN)

    def __post_init__(self):
        super().__post_init__()
        require(self.kappa > 0, f"kappa must be positive, got {self.kappa}")
        require(self.theta > 0, f"theta must be positive, got {self.theta}")
        require(self.xi >= 0, f"xi must be non-negative, got {self.xi}")
        require(-1.0 <= self.rho <= 1.0, f"rho must be in [-1, 1], got {self.rho}")
        require(self.s0 > 0, f"s0 must be positive, got {self.s0}")
        require(self.v0 >= 0, f"v0 must be non-negative, got {self.v0}")

    @property
    def feller_satisfied(self) -> bool:
        return 2 * self.kappa * self.theta >= self.xi**2

    def correlation(self) -> np.ndarray:
        return np.array([[1.0, self.rho], [self.rho, 1.0]])


def heston_noise(params: HestonParams) -> CorrelatedIncrements:
    """Cholesky factor of the price/variance correlation, shareable across paths."""
    return CorrelatedIncrements(params.correlation())


@lru_cache(maxsize=128)
def _warn_feller(params: HestonParams) -> None:
    # Once per parameter set, not once per ensemble path
    logger.warning(
        "Heston: Feller condition violated (2κθ=%.4f < ξ²=%.4f); variance is floored at zero",
        2 * params.kappa * params.theta, params.xi**2,
    )


def simulate_heston(
    params: HestonParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: CorrelatedIncrements | None = None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)

    if noise is None:
        noise = heston_noise(params)
    elif not isinstance(noise, CorrelatedIncrements) or not np.allclose(
        noise.correlation, params.correlation()
    ):
        raise InvalidParameters("noise does not match the Heston correlation")

    if not params.feller_satisfied:
        _warn_feller(params)

    dt = grid.dt
    dw = noise.sample(stream, grid)
    kappa, theta, xi = params.kappa, params.theta, params.xi

    log_s = np.empty(len(grid))
    v = np.empty(len(grid))
    log_s[0] = np.log(params.s0)
    v[0] = params.v0
    floored = 0

    for i in range(grid.steps):
        v_pos = max(v[i], 0.0)
        sqrt_v = np.sqrt(v_pos)

        # Price process (log space) with stochastic Ito correction
        log_s[i + 1] = log_s[i] + (params.mu - 0.5 * v_pos) * dt[i] + sqrt_v * dw[i, 0]

        # Variance process
        nxt = v[i] + kappa * (theta - v_pos) * dt[i] + xi * sqrt_v * dw[i, 1]
        if scheme is Scheme.MILSTEIN:
            nxt += 0.25 * xi**2 * (dw[i, 1] ** 2 - dt[i])
        if nxt < 0.0:
            nxt = 0.0
            floored += 1
        v[i + 1] = nxt

    return Path(
        grid=grid,
        values=np.exp(log_s),
        kind=ProcessKind.HESTON,
        scheme=scheme,
        components={"variance": v},
        diagnostics={
            "feller_violated": not params.feller_satisfied,
            "floored_steps": floored,
        },
    )
