"""Counting processes: homogeneous Poisson and exponential-kernel Hawkes.

Outputs are ``EventSequence`` objects (event times), not regularly sampled
paths; ``EventSequence.to_path()`` gives the counting path N(t) on the grid.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from stochpath.grid import TimeGrid, as_grid
from stochpath.processes import EventSequence, ProcessKind, ProcessParams, Scheme, require
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoissonParams(ProcessParams):
    lam: float = 1.0

    kind: ClassVar[ProcessKind] = ProcessKind.POISSON

    def __post_init__(self):
        super().__post_init__()
        require(self.lam >= 0, f"lam must be non-negative, got {self.lam}")


@dataclass(frozen=True)
class HawkesParams(ProcessParams):
    """Hawkes process with intensity λ(t) = μ + Σ α·e^{−β(t − tᵢ)}.

    Stationarity requires the branching ratio α/β < 1.
    """

    mu: float = 1.0
    alpha: float = 0.5
    beta: float = 1.0

    kind: ClassVar[ProcessKind] = ProcessKind.HAWKES

    def __post_init__(self):
        super().__post_init__()
        require(self.mu >= 0, f"mu must be non-negative, got {self.mu}")
        require(self.alpha >= 0, f"alpha must be non-negative, got {self.alpha}")
        require(self.beta > 0, f"beta must be positive, got {self.beta}")
        require(
            self.alpha < self.beta,
            f"branching ratio alpha/beta must be < 1, got {self.alpha / self.beta:.4f}",
        )

    @property
    def branching_ratio(self) -> float:
        return self.alpha / self.beta

    @property
    def stationary_intensity(self) -> float:
        return self.mu / (1.0 - self.branching_ratio)


def hawkes_intensity(params: HawkesParams, event_times, t) -> np.ndarray:
    """Conditional intensity λ(t) given events strictly before ``t``."""
    events = np.asarray(event_times, dtype=float)
    t = np.atleast_1d(np.asarray(t, dtype=float))
    lags = t[:, None] - events[None, :]
    excitation = np.where(lags > 0, np.exp(-params.beta * np.where(lags > 0, lags, 0.0)), 0.0)
    return params.mu + params.alpha * excitation.sum(axis=1)


def simulate_poisson(
    params: PoissonParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> EventSequence:
    """Event times from exponential inter-arrivals on ``[grid.start, grid.end]``."""
    grid = as_grid(grid)
    params.resolve_scheme(scheme)

    if params.lam == 0.0:
        return EventSequence(grid=grid, event_times=np.empty(0), kind=ProcessKind.POISSON)

    scale = 1.0 / params.lam
    expected = params.lam * grid.horizon
    chunk = int(expected + 5.0 * np.sqrt(expected) + 10)

    parts = []
    t = grid.start
    while True:
        arrivals = t + np.cumsum(stream.exponential(scale, chunk))
        inside = arrivals[arrivals <= grid.end]
        parts.append(inside)
        if inside.size < chunk:
            break
        t = arrivals[-1]

    return EventSequence(grid=grid, event_times=np.concatenate(parts), kind=ProcessKind.POISSON)


def simulate_hawkes(
    params: HawkesParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise=None,
) -> EventSequence:
    """Ogata thinning with the exponential-kernel excitation recursion.

    Between candidates the excitation only decays, so the intensity at the
    last candidate bounds the intensity until the next one.
    """
    grid = as_grid(grid)
    params.resolve_scheme(scheme)

    events: list[float] = []
    t = grid.start
    excitation = 0.0
    candidates = 0

    while True:
        bound = params.mu + excitation
        if bound <= 0.0:
            break
        wait = stream.exponential(1.0 / bound)
        t += wait
        if t > grid.end:
            break
        candidates += 1
        excitation *= np.exp(-params.beta * wait)
        intensity = params.mu + excitation
        if stream.next_uniform() * bound <= intensity:
            events.append(t)
            excitation += params.alpha

    return EventSequence(
        grid=grid,
        event_times=np.array(events),
        kind=ProcessKind.HAWKES,
        diagnostics={"candidates": candidates},
    )
