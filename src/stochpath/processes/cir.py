"""Cox-Ingersoll-Ross square-root diffusion.

  dX = κ(θ − X)dt + σ√X dW

EXACT samples the scaled noncentral chi-squared transition and never goes
negative. MILSTEIN and EULER (full truncation) can undershoot zero; such
values are clamped to zero and counted in ``diagnostics["clamped_steps"]``.
Every scheme reports ``diagnostics["feller_violated"]`` (2κθ < σ²).
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import ClassVar

import numpy as np

from stochpath.grid import TimeGrid, as_grid
from stochpath.processes import Path, ProcessKind, ProcessParams, Scheme, require
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CIRParams(ProcessParams):
    kappa: float = 1.0
    theta: float = 0.04
    sigma: float = 0.1
    x0: float = 0.04

    kind: ClassVar[ProcessKind] = ProcessKind.CIR
    default_scheme: ClassVar[Scheme] = Scheme.EXACT
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EXACT, Scheme.MILSTEIN, Scheme.EULER)

    def __post_init__(self):
        super().__post_init__()
        require(self.kappa > 0, f"kappa must be positive, got {self.kappa}")
        require(self.theta > 0, f"theta must be positive, got {self.theta}")
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(self.x0 >= 0, f"x0 must be non-negative, got {self.x0}")

    @property
    def feller_satisfied(self) -> bool:
        """2κθ ≥ σ²: the process stays strictly positive."""
        return 2 * self.kappa * self.theta >= self.sigma**2


@lru_cache(maxsize=128)
def _warn_feller(params: CIRParams) -> None:
    # Once per parameter set, not once per ensemble path
    logger.warning(
        "CIR: Feller condition violated (2κθ=%.4f < σ²=%.4f); the process can reach zero",
        2 * params.kappa * params.theta, params.sigma**2,
    )


def _exact_path(params: CIRParams, dt: np.ndarray, stream: NoiseStream, values: np.ndarray):
    kappa, theta, sigma = params.kappa, params.theta, params.sigma
    decay = np.exp(-kappa * dt)
    if sigma == 0.0:
        for i in range(dt.size):
            values[i + 1] = values[i] * decay[i] + theta * (1.0 - decay[i])
        return

    df = 4.0 * kappa * theta / sigma**2
    scale = -(sigma**2) * np.expm1(-kappa * dt) / (4.0 * kappa)
    for i in range(dt.size):
        nonc = values[i] * decay[i] / scale[i]
        values[i + 1] = scale[i] * stream.noncentral_chisquare(df, nonc)


def _discretised_path(
    params: CIRParams, dt: np.ndarray, stream: NoiseStream, values: np.ndarray, milstein: bool
) -> int:
    kappa, theta, sigma = params.kappa, params.theta, params.sigma
    dw = stream.normals(dt.size) * np.sqrt(dt)
    clamped = 0
    for i in range(dt.size):
        x = values[i]
        x_pos = max(x, 0.0)
        nxt = x + kappa * (theta - x_pos) * dt[i] + sigma * np.sqrt(x_pos) * dw[i]
        if milstein:
            nxt += 0.25 * sigma**2 * (dw[i] ** 2 - dt[i])
        if nxt < 0.0:
            nxt = 0.0
            clamped += 1
        values[i + 1] = nxt
    return clamped


def simulate_cir(
    params: CIRParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)

    values = np.empty(len(grid))
    values[0] = params.x0
    diagnostics = {"feller_violated": not params.feller_satisfied}
    if not params.feller_satisfied:
        _warn_feller(params)

    if scheme is Scheme.EXACT:
        _exact_path(params, grid.dt, stream, values)
    else:
        clamped = _discretised_path(params, grid.dt, stream, values, scheme is Scheme.MILSTEIN)
        diagnostics["clamped_steps"] = clamped
        if clamped:
            logger.debug("CIR %s: clamped %d negative steps to zero", scheme.value, clamped)

    return Path(
        grid=grid,
        values=values,
        kind=ProcessKind.CIR,
        scheme=scheme,
        diagnostics=diagnostics,
    )
