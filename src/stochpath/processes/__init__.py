"""Stochastic process simulators package.

Provides one simulator per process variant, all with the signature
``simulate_<kind>(params, grid, stream, scheme=None, noise=None)``:
- BM / GBM: arithmetic and geometric Brownian motion
- OU: Ornstein-Uhlenbeck (exact transition or Euler)
- CIR: Cox-Ingersoll-Ross (noncentral chi-squared, Milstein, Euler)
- HESTON: Heston stochastic volatility (two-factor)
- MERTON / KOU: jump-diffusions with normal / double-exponential jumps
- FBM / FOU / FJACOBI / JUMP_FOU: fractional-noise driven processes
- POISSON / HAWKES: counting processes (event times)
"""

import dataclasses
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Mapping

import numpy as np

from stochpath.errors import InvalidParameters
from stochpath.grid import TimeGrid


class ProcessKind(str, Enum):
    BM = "bm"
    GBM = "gbm"
    OU = "ou"
    CIR = "cir"
    HESTON = "heston"
    MERTON = "merton"
    KOU = "kou"
    FBM = "fbm"
    FOU = "fou"
    FJACOBI = "fjacobi"
    JUMP_FOU = "jump_fou"
    POISSON = "poisson"
    HAWKES = "hawkes"


class Scheme(str, Enum):
    EULER = "euler"
    MILSTEIN = "milstein"
    EXACT = "exact"


def _readonly(values) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class ProcessParams:
    """Base class for per-variant parameter sets.

    Subclasses validate their domain in ``__post_init__`` and declare which
    discretisation schemes they support.
    """

    kind: ClassVar[ProcessKind]
    default_scheme: ClassVar[Scheme] = Scheme.EXACT
    schemes: ClassVar[tuple[Scheme, ...]] = (Scheme.EXACT,)

    def __post_init__(self):
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (int, float)) and not math.isfinite(value):
                raise InvalidParameters(f"{f.name} must be finite, got {value}")

    def to_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)

    def replace(self, **changes) -> "ProcessParams":
        return dataclasses.replace(self, **changes)

    def resolve_scheme(self, scheme: "Scheme | str | None") -> Scheme:
        if scheme is None:
            return self.default_scheme
        try:
            scheme = Scheme(scheme)
        except ValueError:
            raise InvalidParameters(f"unknown scheme {scheme!r}") from None
        if scheme not in self.schemes:
            supported = ", ".join(s.value for s in self.schemes)
            raise InvalidParameters(
                f"{self.kind.value} does not support scheme {scheme.value!r} (supported: {supported})"
            )
        return scheme


def require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidParameters(message)


@dataclass(frozen=True)
class Path:
    """One simulated path aligned 1:1 with its grid. Arrays are read-only."""

    grid: TimeGrid
    values: np.ndarray
    kind: ProcessKind
    scheme: Scheme
    components: Mapping[str, np.ndarray] = field(default_factory=dict)
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        values = _readonly(self.values)
        if values.shape != (len(self.grid),):
            raise ValueError(
                f"path has {values.shape} values for a grid of {len(self.grid)} points"
            )
        object.__setattr__(self, "values", values)
        object.__setattr__(
            self,
            "components",
            MappingProxyType({k: _readonly(v) for k, v in self.components.items()}),
        )
        object.__setattr__(self, "diagnostics", MappingProxyType(dict(self.diagnostics)))

    @property
    def times(self) -> np.ndarray:
        return self.grid.points

    @property
    def terminal(self) -> float:
        return float(self.values[-1])

    def increments(self) -> np.ndarray:
        return np.diff(self.values)

    def __len__(self) -> int:
        return self.values.size


@dataclass(frozen=True)
class EventSequence:
    """Event times of a counting process observed on ``[grid.start, grid.end]``."""

    grid: TimeGrid
    event_times: np.ndarray
    kind: ProcessKind
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "event_times", _readonly(self.event_times))
        object.__setattr__(self, "diagnostics", MappingProxyType(dict(self.diagnostics)))

    @property
    def count(self) -> int:
        return self.event_times.size

    def counts_on(self, grid: TimeGrid | None = None) -> np.ndarray:
        """Counting process N(t) evaluated at each grid point."""
        points = (grid or self.grid).points
        return np.searchsorted(self.event_times, points, side="right").astype(float)

    def to_path(self) -> Path:
        return Path(
            grid=self.grid,
            values=self.counts_on(),
            kind=self.kind,
            scheme=Scheme.EXACT,
            diagnostics=self.diagnostics,
        )


__all__ = [
    "ProcessKind",
    "Scheme",
    "ProcessParams",
    "Path",
    "EventSequence",
    "require",
]
