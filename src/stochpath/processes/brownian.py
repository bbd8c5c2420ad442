"""Arithmetic and geometric Brownian motion.

  BM:  dX = μ dt + σ dW
  GBM: dS = μ S dt + σ S dW   (exact step: S·exp((μ − ½σ²)Δt + σΔW))
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from stochpath.grid import TimeGrid, as_grid
from stochpath.noise import gaussian_increments
from stochpath.processes import Path, ProcessKind, ProcessParams, Scheme, require
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrownianParams(ProcessParams):
    """Brownian motion with drift ``mu`` and volatility ``sigma`` from ``x0``."""

    mu: float = 0.0
    sigma: float = 1.0
    x0: float = 0.0

    kind: ClassVar[ProcessKind] = ProcessKind.BM
    default_scheme: ClassVar[Scheme] = Scheme.EXACT
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EXACT, Scheme.EULER)

    def __post_init__(self):
        super().__post_init__()
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")


@dataclass(frozen=True)
class GBMParams(ProcessParams):
    """Geometric Brownian motion with arithmetic drift ``mu``."""

    mu: float = 0.0
    sigma: float = 0.2
    s0: float = 1.0

    kind: ClassVar[ProcessKind] = ProcessKind.GBM
    default_scheme: ClassVar[Scheme] = Scheme.EXACT
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EXACT, Scheme.EULER, Scheme.MILSTEIN)

    def __post_init__(self):
        super().__post_init__()
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(self.s0 > 0, f"s0 must be positive, got {self.s0}")


def simulate_bm(
    params: BrownianParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    """Brownian motion; Euler is exact for constant coefficients."""
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)

    dw = gaussian_increments(stream, grid)
    steps = params.mu * grid.dt + params.sigma * dw
    values = params.x0 + np.concatenate(([0.0], np.cumsum(steps)))

    return Path(grid=grid, values=values, kind=ProcessKind.BM, scheme=scheme)


def simulate_gbm(
    params: GBMParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    """Geometric Brownian motion.

    EXACT samples the lognormal transition and is strictly positive.
    EULER and MILSTEIN multiply by ``1 + μΔt + σΔW`` (plus the Milstein
    correction ``½σ²(ΔW² − Δt)``) and may cross zero for coarse grids; the
    number of non-positive values is reported in ``diagnostics``.
    """
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    dt = grid.dt
    mu, sigma = params.mu, params.sigma

    dw = gaussian_increments(stream, grid)

    if scheme is Scheme.EXACT:
        log_steps = (mu - 0.5 * sigma**2) * dt + sigma * dw
        values = params.s0 * np.exp(np.concatenate(([0.0], np.cumsum(log_steps))))
        return Path(grid=grid, values=values, kind=ProcessKind.GBM, scheme=scheme)

    factors = 1.0 + mu * dt + sigma * dw
    if scheme is Scheme.MILSTEIN:
        factors += 0.5 * sigma**2 * (dw**2 - dt)
    values = params.s0 * np.concatenate(([1.0], np.cumprod(factors)))

    nonpositive = int(np.sum(values <= 0))
    if nonpositive:
        logger.debug("GBM %s: %d non-positive values", scheme.value, nonpositive)

    return Path(
        grid=grid,
        values=values,
        kind=ProcessKind.GBM,
        scheme=scheme,
        diagnostics={"nonpositive_values": nonpositive},
    )
