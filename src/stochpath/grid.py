"""Time grids shared by simulators, estimators and ensembles."""

import numpy as np

from stochpath.errors import InvalidGrid

UNIFORM_RTOL = 1e-9


class TimeGrid:
    """Strictly increasing time points ``t0 < t1 < ... < tn`` with ``n >= 1``.

    Immutable once constructed: the points array is read-only.
    """

    __slots__ = ("_points", "_dt")

    def __init__(self, points):
        arr = np.array(points, dtype=float).ravel()
        if arr.size < 2:
            raise InvalidGrid(f"grid needs at least two points, got {arr.size}")
        if not np.all(np.isfinite(arr)):
            raise InvalidGrid("grid points must be finite")
        dt = np.diff(arr)
        if np.any(dt <= 0):
            raise InvalidGrid("grid points must be strictly increasing")
        arr.setflags(write=False)
        dt.setflags(write=False)
        self._points = arr
        self._dt = dt

    @classmethod
    def uniform(cls, start: float, end: float, steps: int) -> "TimeGrid":
        if int(steps) != steps or steps < 1:
            raise InvalidGrid(f"steps must be a positive integer, got {steps}")
        if not end > start:
            raise InvalidGrid(f"end ({end}) must exceed start ({start})")
        return cls(np.linspace(start, end, int(steps) + 1))

    @property
    def points(self) -> np.ndarray:
        return self._points

    @property
    def dt(self) -> np.ndarray:
        return self._dt

    @property
    def steps(self) -> int:
        return self._dt.size

    @property
    def start(self) -> float:
        return float(self._points[0])

    @property
    def end(self) -> float:
        return float(self._points[-1])

    @property
    def horizon(self) -> float:
        return self.end - self.start

    @property
    def is_uniform(self) -> bool:
        return bool(np.allclose(self._dt, self._dt[0], rtol=UNIFORM_RTOL, atol=0.0))

    @property
    def step_size(self) -> float:
        """Common step size of a uniform grid."""
        if not self.is_uniform:
            raise InvalidGrid("grid is not uniform")
        return self.horizon / self.steps

    def __len__(self) -> int:
        return self._points.size

    def __eq__(self, other) -> bool:
        if not isinstance(other, TimeGrid):
            return NotImplemented
        return self._points.shape == other._points.shape and bool(
            np.array_equal(self._points, other._points)
        )

    def __hash__(self) -> int:
        return hash(self._points.tobytes())

    def __repr__(self) -> str:
        return f"TimeGrid(start={self.start}, end={self.end}, steps={self.steps})"


def as_grid(grid) -> TimeGrid:
    """Accept a ``TimeGrid`` or an array of time points."""
    if isinstance(grid, TimeGrid):
        return grid
    if grid is None:
        raise InvalidGrid("grid is required")
    return TimeGrid(grid)
