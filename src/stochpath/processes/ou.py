"""Ornstein-Uhlenbeck mean-reverting process.

  dX = θ(μ − X)dt + σ dW

The exact transition is Gaussian:
  X_{t+Δ} = X_t·e^{−θΔ} + μ(1 − e^{−θΔ}) + σ·√((1 − e^{−2θΔ})/(2θ))·Z
and is stable for any Δ, unlike Euler which overshoots once θΔ > 1.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from stochpath.grid import TimeGrid, as_grid
from stochpath.processes import Path, ProcessKind, ProcessParams, Scheme, require
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)

# Below this θΔt the transition std uses its Taylor expansion (θ → 0 limit σ√Δt)
SMALL_RATE = 1e-8


@dataclass(frozen=True)
class OUParams(ProcessParams):
    """OU parameters: ``theta`` speed, ``mu`` long-run mean, ``sigma`` volatility."""

    theta: float = 1.0
    mu: float = 0.0
    sigma: float = 0.2
    x0: float = 0.0

    kind: ClassVar[ProcessKind] = ProcessKind.OU
    default_scheme: ClassVar[Scheme] = Scheme.EXACT
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EXACT, Scheme.EULER)

    def __post_init__(self):
        super().__post_init__()
        require(self.theta >= 0, f"theta must be non-negative, got {self.theta}")
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")

    @property
    def half_life(self) -> float:
        if self.theta <= 0:
            return float("inf")
        return float(np.log(2) / self.theta)

    @property
    def stationary_variance(self) -> float:
        if self.theta <= 0:
            return float("inf")
        return self.sigma**2 / (2 * self.theta)


def ou_transition(theta: float, mu: float, sigma: float, dt):
    """Return ``(decay, shift, std)`` so that ``X' = decay·X + shift + std·Z``."""
    dt = np.asarray(dt, dtype=float)
    rate = theta * dt
    decay = np.exp(-rate)
    shift = -mu * np.expm1(-rate)
    safe_theta = theta if theta > 0 else 1.0
    variance = np.where(
        rate > SMALL_RATE,
        -np.expm1(-2.0 * np.maximum(rate, SMALL_RATE)) / (2.0 * safe_theta),
        dt * (1.0 - rate + 2.0 * rate**2 / 3.0),
    )
    return decay, shift, sigma * np.sqrt(variance)


def simulate_ou(
    params: OUParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    dt = grid.dt
    z = stream.normals(grid.steps)

    values = np.empty(len(grid))
    values[0] = params.x0

    if scheme is Scheme.EXACT:
        decay, shift, std = ou_transition(params.theta, params.mu, params.sigma, dt)
        for i in range(grid.steps):
            values[i + 1] = decay[i] * values[i] + shift[i] + std[i] * z[i]
    else:
        sqrt_dt = np.sqrt(dt)
        for i in range(grid.steps):
            x = values[i]
            values[i + 1] = x + params.theta * (params.mu - x) * dt[i] + params.sigma * sqrt_dt[i] * z[i]

    return Path(grid=grid, values=values, kind=ProcessKind.OU, scheme=scheme)
