"""Processes driven by fractional Gaussian noise.

- FBM:      X_t = x0 + μt + σ·B^H_t
- FOU:      X' = X + θ(μ − X)Δt + σ·ΔB^H
- FJACOBI:  X' = X + (α − βX)Δt + σ·√(X(1 − X))·ΔB^H, absorbed at 0 and 1
- JUMP_FOU: FOU step plus compound Poisson Normal jumps

All accept a prebuilt ``FractionalGaussianNoise`` via ``noise`` so that
ensembles factorise the covariance only once.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from stochpath.errors import InvalidParameters
from stochpath.grid import TimeGrid, as_grid
from stochpath.noise import FractionalGaussianNoise
from stochpath.processes import Path, ProcessKind, ProcessParams, Scheme, require
from stochpath.processes.jump import compound_poisson_normal
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)


def _check_hurst(hurst: float) -> None:
    require(0.0 < hurst < 1.0, f"hurst must be in (0, 1), got {hurst}")


@dataclass(frozen=True)
class FBMParams(ProcessParams):
    hurst: float = 0.7
    sigma: float = 1.0
    mu: float = 0.0
    x0: float = 0.0

    kind: ClassVar[ProcessKind] = ProcessKind.FBM

    def __post_init__(self):
        super().__post_init__()
        _check_hurst(self.hurst)
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")


@dataclass(frozen=True)
class FOUParams(ProcessParams):
    hurst: float = 0.7
    theta: float = 1.0
    mu: float = 0.0
    sigma: float = 0.2
    x0: float = 0.0

    kind: ClassVar[ProcessKind] = ProcessKind.FOU
    default_scheme: ClassVar[Scheme] = Scheme.EULER
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EULER,)

    def __post_init__(self):
        super().__post_init__()
        _check_hurst(self.hurst)
        require(self.theta >= 0, f"theta must be non-negative, got {self.theta}")
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")


@dataclass(frozen=True)
class FJacobiParams(ProcessParams):
    """Fractional Jacobi process on [0, 1]; requires ``0 < alpha < beta``."""

    hurst: float = 0.7
    alpha: float = 1.0
    beta: float = 2.0
    sigma: float = 0.5
    x0: float = 0.5

    kind: ClassVar[ProcessKind] = ProcessKind.FJACOBI
    default_scheme: ClassVar[Scheme] = Scheme.EULER
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EULER,)

    def __post_init__(self):
        super().__post_init__()
        _check_hurst(self.hurst)
        require(self.alpha > 0, f"alpha must be positive, got {self.alpha}")
        require(self.beta > self.alpha, f"beta must exceed alpha, got {self.beta} <= {self.alpha}")
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(0.0 <= self.x0 <= 1.0, f"x0 must be in [0, 1], got {self.x0}")


@dataclass(frozen=True)
class JumpFOUParams(ProcessParams):
    hurst: float = 0.7
    theta: float = 1.0
    mu: float = 0.0
    sigma: float = 0.2
    lam: float = 1.0
    jump_mean: float = 0.0
    jump_std: float = 0.1
    x0: float = 0.0

    kind: ClassVar[ProcessKind] = ProcessKind.JUMP_FOU
    default_scheme: ClassVar[Scheme] = Scheme.EULER
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EULER,)

    def __post_init__(self):
        super().__post_init__()
        _check_hurst(self.hurst)
        require(self.theta >= 0, f"theta must be non-negative, got {self.theta}")
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(self.lam >= 0, f"lam must be non-negative, got {self.lam}")
        require(self.jump_std >= 0, f"jump_std must be non-negative, got {self.jump_std}")


def _resolve_fgn(params, grid: TimeGrid, noise) -> FractionalGaussianNoise:
    if noise is None:
        return FractionalGaussianNoise(params.hurst, grid)
    if not isinstance(noise, FractionalGaussianNoise):
        raise InvalidParameters(f"expected FractionalGaussianNoise, got {type(noise).__name__}")
    if noise.hurst != params.hurst or noise.grid != grid:
        raise InvalidParameters("fractional noise was built for a different hurst or grid")
    return noise


def simulate_fbm(
    params: FBMParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: FractionalGaussianNoise | None = None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    fgn = _resolve_fgn(params, grid, noise).sample(stream)

    levels = np.concatenate(([0.0], np.cumsum(fgn)))
    values = params.x0 + params.mu * (grid.points - grid.start) + params.sigma * levels
    return Path(grid=grid, values=values, kind=ProcessKind.FBM, scheme=scheme)


def simulate_fou(
    params: FOUParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: FractionalGaussianNoise | None = None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    fgn = _resolve_fgn(params, grid, noise).sample(stream)
    dt = grid.dt

    values = np.empty(len(grid))
    values[0] = params.x0
    for i in range(grid.steps):
        x = values[i]
        values[i + 1] = x + params.theta * (params.mu - x) * dt[i] + params.sigma * fgn[i]

    return Path(grid=grid, values=values, kind=ProcessKind.FOU, scheme=scheme)


def simulate_fjacobi(
    params: FJacobiParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: FractionalGaussianNoise | None = None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    fgn = _resolve_fgn(params, grid, noise).sample(stream)
    dt = grid.dt

    values = np.empty(len(grid))
    values[0] = params.x0
    absorbed_at = None
    for i in range(grid.steps):
        x = values[i]
        if x <= 0.0 or x >= 1.0:
            values[i + 1] = 0.0 if x <= 0.0 else 1.0
            if absorbed_at is None:
                absorbed_at = i
            continue
        nxt = x + (params.alpha - params.beta * x) * dt[i] + params.sigma * np.sqrt(x * (1.0 - x)) * fgn[i]
        values[i + 1] = min(max(nxt, 0.0), 1.0)

    return Path(
        grid=grid,
        values=values,
        kind=ProcessKind.FJACOBI,
        scheme=scheme,
        diagnostics={"absorbed_at": absorbed_at},
    )


def simulate_jump_fou(
    params: JumpFOUParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: FractionalGaussianNoise | None = None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    fgn = _resolve_fgn(params, grid, noise).sample(stream)
    dt = grid.dt
    jumps, n_jumps = compound_poisson_normal(stream, params.lam * dt, params.jump_mean, params.jump_std)

    values = np.empty(len(grid))
    values[0] = params.x0
    for i in range(grid.steps):
        x = values[i]
        values[i + 1] = (
            x + params.theta * (params.mu - x) * dt[i] + params.sigma * fgn[i] + jumps[i]
        )

    return Path(
        grid=grid,
        values=values,
        kind=ProcessKind.JUMP_FOU,
        scheme=scheme,
        diagnostics={"jump_count": n_jumps},
    )
