"""Merton and Kou jump-diffusion simulation.

GBM + compound Poisson jump process in log space:
  d ln S = (μ − λk − ½σ²)dt + σ dW + J dN,   N ~ Poisson(λ·dt)

Merton: J ~ Normal(m, s²),            k = exp(m + s²/2) − 1
Kou:    J = +Exp(η₁) w.p. p, −Exp(η₂) w.p. 1 − p,
        k = p·η₁/(η₁ − 1) + (1 − p)·η₂/(η₂ + 1) − 1
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
class MertonParams(ProcessParams):
    """Merton jump-diffusion.

    Attributes:
        mu: Arithmetic drift (jump-compensated).
        sigma: Diffusion volatility.
        lam: Jump intensity (expected jumps per unit time).
        jump_mean: Mean jump size (log scale).
        jump_std: Jump size volatility.
        s0: Initial price.
    """

    mu: float = 0.05
    sigma: float = 0.2
    lam: float = 1.0
    jump_mean: float = -0.05
    jump_std: float = 0.1
    s0: float = 1.0

    kind: ClassVar[ProcessKind] = ProcessKind.MERTON

    def __post_init__(self):
        super().__post_init__()
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(self.lam >= 0, f"lam must be non-negative, got {self.lam}")
        require(self.jump_std >= 0, f"jump_std must be non-negative, got {self.jump_std}")
        require(self.s0 > 0, f"s0 must be positive, got {self.s0}")

    @property
    def compensator(self) -> float:
        """k = E[e^J − 1]."""
        return float(np.expm1(self.jump_mean + 0.5 * self.jump_std**2))


@dataclass(frozen=True)
class KouParams(ProcessParams):
    """Kou double-exponential jump-diffusion; ``eta_up > 1`` keeps E[e^J] finite."""

    mu: float = 0.05
    sigma: float = 0.2
    lam: float = 1.0
    p_up: float = 0.4
    eta_up: float = 10.0
    eta_down: float = 5.0
    s0: float = 1.0

    kind: ClassVar[ProcessKind] = ProcessKind.KOU

    def __post_init__(self):
        super().__post_init__()
        require(self.sigma >= 0, f"sigma must be non-negative, got {self.sigma}")
        require(self.lam >= 0, f"lam must be non-negative, got {self.lam}")
        require(0.0 <= self.p_up <= 1.0, f"p_up must be in [0, 1], got {self.p_up}")
        require(self.eta_up > 1.0, f"eta_up must exceed 1, got {self.eta_up}")
        require(self.eta_down > 0, f"eta_down must be positive, got {self.eta_down}")
        require(self.s0 > 0, f"s0 must be positive, got {self.s0}")

    @property
    def compensator(self) -> float:
        p, up, down = self.p_up, self.eta_up, self.eta_down
        return p * up / (up - 1.0) + (1.0 - p) * down / (down + 1.0) - 1.0


def compound_poisson_normal(
    stream: NoiseStream, rates: np.ndarray, mean: float, std: float
) -> tuple[np.ndarray, int]:
    """Per-step sums of Poisson(rate)-many Normal(mean, std²) jumps.

    The sum of N i.i.d. normals is drawn directly as N·m + √N·s·Z.
    """
    counts = stream.poisson(rates)
    z = stream.normals(rates.size)
    sums = counts * mean + np.sqrt(counts) * std * z
    return sums, int(counts.sum())


def _compound_poisson_double_exponential(
    stream: NoiseStream, rates: np.ndarray, params: KouParams
) -> tuple[np.ndarray, int]:
    counts = stream.poisson(rates)
    total = int(counts.sum())
    if total == 0:
        return np.zeros(rates.size), 0

    up = stream.uniforms(total) < params.p_up
    up_sizes = stream.exponential(1.0 / params.eta_up, total)
    down_sizes = stream.exponential(1.0 / params.eta_down, total)
    sizes = np.where(up, up_sizes, -down_sizes)

    owner = np.repeat(np.arange(rates.size), counts)
    return np.bincount(owner, weights=sizes, minlength=rates.size), total


def _exponentiate(s0: float, log_steps: np.ndarray) -> np.ndarray:
    return s0 * np.exp(np.concatenate(([0.0], np.cumsum(log_steps))))


def simulate_merton(
    params: MertonParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    dt = grid.dt

    dw = gaussian_increments(stream, grid)
    jumps, n_jumps = compound_poisson_normal(stream, params.lam * dt, params.jump_mean, params.jump_std)

    drift = params.mu - params.lam * params.compensator - 0.5 * params.sigma**2
    log_steps = drift * dt + params.sigma * dw + jumps

    return Path(
        grid=grid,
        values=_exponentiate(params.s0, log_steps),
        kind=ProcessKind.MERTON,
        scheme=scheme,
        diagnostics={"jump_count": n_jumps},
    )


def simulate_kou(
    params: KouParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> Path:
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    dt = grid.dt

    dw = gaussian_increments(stream, grid)
    jumps, n_jumps = _compound_poisson_double_exponential(stream, params.lam * dt, params)

    drift = params.mu - params.lam * params.compensator - 0.5 * params.sigma**2
    log_steps = drift * dt + params.sigma * dw + jumps

    return Path(
        grid=grid,
        values=_exponentiate(params.s0, log_steps),
        kind=ProcessKind.KOU,
        scheme=scheme,
        diagnostics={"jump_count": n_jumps},
    )
