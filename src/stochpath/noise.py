"""Noise generators: independent, correlated and fractional Gaussian increments.

Factorisations (Cholesky factors, circulant eigenvalues) are computed once
per generator and stored read-only, so one generator can be shared by every
worker of an ensemble while each worker draws from its own ``NoiseStream``.
"""

import logging
from enum import Enum

import numpy as np
from scipy import linalg

from stochpath.errors import (
    InvalidCorrelationMatrix,
    InvalidGrid,
    InvalidParameters,
    NonPositiveDefiniteCovariance,
)
from stochpath.grid import TimeGrid
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)

# Negative circulant eigenvalues with |λ| <= EIGENVALUE_TOLERANCE * max(λ)
# are floating-point artefacts: clamp to zero and warn instead of failing.
EIGENVALUE_TOLERANCE = 1e-8
CHOLESKY_MAX_STEPS = 512
PSD_TOLERANCE = 1e-10


# ---------------------------------------------------------------------------
# Independent Gaussian increments
# ---------------------------------------------------------------------------


def gaussian_increments(stream: NoiseStream, grid: TimeGrid) -> np.ndarray:
    """Brownian increments ``Z·√Δt``, one per grid step."""
    return stream.normals(grid.steps) * np.sqrt(grid.dt)


class IncrementSequence:
    """Finite lazy sequence of Brownian increments bound to one stream.

    One-shot: once exhausted it stays exhausted. Restart by building a new
    sequence over a freshly seeded stream.
    """

    def __init__(self, stream: NoiseStream, grid: TimeGrid):
        self._stream = stream
        self._sqrt_dt = np.sqrt(grid.dt)
        self._index = 0

    def __iter__(self):
        return self

    def __next__(self) -> float:
        if self._index >= self._sqrt_dt.size:
            raise StopIteration
        value = float(self._sqrt_dt[self._index]) * self._stream.next_normal()
        self._index += 1
        return value

    def __len__(self) -> int:
        return self._sqrt_dt.size - self._index


# ---------------------------------------------------------------------------
# Correlated multi-dimensional increments
# ---------------------------------------------------------------------------


class CorrelatedIncrements:
    """Correlated Brownian increments ``L·Z·√Δt`` for a correlation matrix ρ."""

    def __init__(self, correlation):
        corr = np.array(correlation, dtype=float)
        if corr.ndim != 2 or corr.shape[0] != corr.shape[1] or corr.shape[0] == 0:
            raise InvalidCorrelationMatrix(f"correlation matrix must be square, got shape {corr.shape}")
        if not np.all(np.isfinite(corr)):
            raise InvalidCorrelationMatrix("correlation matrix has non-finite entries")
        if not np.allclose(corr, corr.T, atol=1e-12):
            raise InvalidCorrelationMatrix("correlation matrix must be symmetric")
        if not np.allclose(np.diag(corr), 1.0):
            raise InvalidCorrelationMatrix("correlation matrix must have a unit diagonal")
        if np.any(np.abs(corr) > 1.0 + 1e-12):
            raise InvalidCorrelationMatrix("correlations must lie in [-1, 1]")

        try:
            factor = linalg.cholesky(corr, lower=True)
        except np.linalg.LinAlgError:
            # Singular but PSD matrices (e.g. |ρ| = 1) still admit a square root.
            eigenvalues, eigenvectors = np.linalg.eigh(corr)
            if eigenvalues.min() < -PSD_TOLERANCE * max(1.0, eigenvalues.max()):
                raise InvalidCorrelationMatrix(
                    f"correlation matrix is not positive semi-definite "
                    f"(min eigenvalue {eigenvalues.min():.3e})"
                ) from None
            factor = eigenvectors * np.sqrt(np.clip(eigenvalues, 0.0, None))
            logger.debug("Correlation matrix singular, using eigen-factor")

        corr.setflags(write=False)
        factor.setflags(write=False)
        self.correlation = corr
        self.factor = factor

    @property
    def dimension(self) -> int:
        return self.factor.shape[0]

    def sample(self, stream: NoiseStream, grid: TimeGrid) -> np.ndarray:
        """Return an ``(n_steps, d)`` array of correlated increments."""
        z = stream.normals((grid.steps, self.dimension))
        return (z @ self.factor.T) * np.sqrt(grid.dt)[:, None]


# ---------------------------------------------------------------------------
# Fractional Gaussian noise
# ---------------------------------------------------------------------------


class FgnMethod(str, Enum):
    AUTO = "auto"
    CHOLESKY = "cholesky"
    CIRCULANT = "circulant"


def fgn_autocovariance(hurst: float, lags) -> np.ndarray:
    """γ(k) = ½(|k+1|^{2H} − 2|k|^{2H} + |k−1|^{2H}) for unit-step fGn."""
    k = np.abs(np.asarray(lags, dtype=float))
    h2 = 2.0 * hurst
    return 0.5 * (np.abs(k + 1.0) ** h2 - 2.0 * k**h2 + np.abs(k - 1.0) ** h2)


class FractionalGaussianNoise:
    """Increments of fractional Brownian motion on a time grid.

    Cholesky factorisation is exact and handles non-uniform grids but costs
    O(n³); circulant embedding (Davies-Harte) is O(n log n) and needs a
    uniform grid. ``FgnMethod.AUTO`` picks Cholesky up to
    ``cholesky_max_steps`` steps or on non-uniform grids.
    """

    def __init__(
        self,
        hurst: float,
        grid: TimeGrid,
        method: FgnMethod | str = FgnMethod.AUTO,
        cholesky_max_steps: int = CHOLESKY_MAX_STEPS,
        eigenvalue_tolerance: float = EIGENVALUE_TOLERANCE,
    ):
        if not 0.0 < hurst < 1.0:
            raise InvalidParameters(f"hurst must be in (0, 1), got {hurst}")

        method = FgnMethod(method)
        uniform = grid.is_uniform
        if method is FgnMethod.AUTO:
            if uniform and grid.steps > cholesky_max_steps:
                method = FgnMethod.CIRCULANT
            else:
                method = FgnMethod.CHOLESKY
        if method is FgnMethod.CIRCULANT and not uniform:
            raise InvalidGrid("circulant embedding requires a uniform grid")

        self.hurst = float(hurst)
        self.grid = grid
        self.method = method
        self.eigenvalue_tolerance = eigenvalue_tolerance
        self.clamped_eigenvalues = 0
        self._uniform = uniform
        self._factor = None
        self._sqrt_eigenvalues = None

        if method is FgnMethod.CHOLESKY:
            self._factor = self._cholesky_factor()
        else:
            self._sqrt_eigenvalues = self._circulant_sqrt_eigenvalues()

        logger.debug(
            "fGn generator: H=%.4f, n=%d, method=%s", self.hurst, grid.steps, method.value
        )

    @property
    def size(self) -> int:
        return self.grid.steps

    def _cholesky_factor(self) -> np.ndarray:
        n = self.grid.steps
        h2 = 2.0 * self.hurst
        if self._uniform:
            # Toeplitz covariance of the increments themselves
            cov = linalg.toeplitz(fgn_autocovariance(self.hurst, np.arange(n)))
            cov *= self.grid.step_size**h2
        else:
            # Covariance of fBM levels; increments are taken after sampling
            s = self.grid.points[1:] - self.grid.start
            cov = 0.5 * (
                s[:, None] ** h2 + s[None, :] ** h2 - np.abs(s[:, None] - s[None, :]) ** h2
            )
        try:
            factor = linalg.cholesky(cov, lower=True)
        except np.linalg.LinAlgError as exc:
            raise NonPositiveDefiniteCovariance(
                f"fGn covariance is not positive definite for H={self.hurst}, n={n}; "
                f"use the circulant method"
            ) from exc
        factor.setflags(write=False)
        return factor

    def _circulant_sqrt_eigenvalues(self) -> np.ndarray:
        n = self.grid.steps
        m = 1 << (n - 1).bit_length()
        gamma = fgn_autocovariance(self.hurst, np.arange(m + 1))
        row = np.concatenate([gamma, gamma[m - 1:0:-1]])
        eigenvalues = np.fft.fft(row).real

        negative = eigenvalues < 0
        if np.any(negative):
            worst = float(-eigenvalues.min())
            if worst > self.eigenvalue_tolerance * float(eigenvalues.max()):
                raise NonPositiveDefiniteCovariance(
                    f"circulant eigenvalue {-worst:.3e} below tolerance for H={self.hurst}"
                )
            self.clamped_eigenvalues = int(negative.sum())
            logger.warning(
                "fGn: clamped %d negative circulant eigenvalues (min %.3e) for H=%.4f",
                self.clamped_eigenvalues, -worst, self.hurst,
            )
            eigenvalues = np.where(negative, 0.0, eigenvalues)

        sqrt_eigenvalues = np.sqrt(eigenvalues / (2 * m))
        sqrt_eigenvalues.setflags(write=False)
        return sqrt_eigenvalues

    def sample(self, stream: NoiseStream) -> np.ndarray:
        """Draw one fGn increment vector aligned with the grid steps."""
        n = self.grid.steps
        if self._factor is not None:
            draws = self._factor @ stream.normals(n)
            if self._uniform:
                return draws
            return np.diff(draws, prepend=0.0)

        size = self._sqrt_eigenvalues.size
        z = stream.normals(size) + 1j * stream.normals(size)
        w = np.fft.fft(self._sqrt_eigenvalues * z)
        return w.real[:n] * self.grid.step_size**self.hurst
