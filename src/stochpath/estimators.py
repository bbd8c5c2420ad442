"""Statistical estimators for simulated and observed series.

Pure computation functions: Hurst-exponent estimation by log-log regression,
online moment accumulation, and realized volatility.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy import stats

from stochpath.errors import InsufficientData, InvalidParameters

logger = logging.getLogger(__name__)

MIN_HURST_SAMPLES = 64


class HurstMethod(str, Enum):
    RESCALED_RANGE = "rs"
    AGGREGATED_VARIANCE = "aggvar"
    VARIOGRAM = "variogram"


@dataclass(frozen=True)
class HurstEstimate:
    """Result of a log-log Hurst regression.

    ``windows`` are the block sizes (or lags) and ``statistics`` the
    per-window statistic that was regressed.
    """

    hurst: float
    r_squared: float
    method: HurstMethod
    windows: tuple[int, ...]
    statistics: tuple[float, ...]


def _as_series(values, name: str = "series") -> np.ndarray:
    series = np.asarray(values, dtype=float)
    if series.ndim != 1:
        raise InvalidParameters(f"{name} must be one-dimensional, got shape {series.shape}")
    if not np.all(np.isfinite(series)):
        raise InvalidParameters(f"{name} contains non-finite values")
    return series


def _dyadic_windows(low: int, high: int) -> list[int]:
    windows = []
    w = max(1, int(low))
    while w <= high:
        windows.append(w)
        w *= 2
    return windows


def _rescaled_range(series: np.ndarray, window: int) -> float:
    blocks = series[: window * (series.size // window)].reshape(-1, window)
    deviations = np.cumsum(blocks - blocks.mean(axis=1, keepdims=True), axis=1)
    ranges = deviations.max(axis=1) - deviations.min(axis=1)
    scales = blocks.std(axis=1)
    valid = scales > 0
    if not valid.any():
        return np.nan
    return float(np.mean(ranges[valid] / scales[valid]))


def _aggregated_variance(series: np.ndarray, window: int) -> float:
    blocks = series[: window * (series.size // window)].reshape(-1, window)
    return float(np.var(blocks.mean(axis=1), ddof=1))


def _variogram(path: np.ndarray, lag: int) -> float:
    return float(np.mean((path[lag:] - path[:-lag]) ** 2))


def estimate_hurst(
    series,
    method: HurstMethod | str = HurstMethod.RESCALED_RANGE,
    min_window: int | None = None,
    max_window: int | None = None,
    min_samples: int = MIN_HURST_SAMPLES,
) -> HurstEstimate:
    """Estimate the Hurst exponent of ``series``.

    R/S and aggregated variance expect increments (an fGn-like series);
    the variogram expects the path itself.

    Args:
        series: Observations in chronological order.
        method: Estimator to use.
        min_window: Smallest block size or lag (method default when None).
        max_window: Largest block size or lag (method default when None).
        min_samples: Minimum accepted series length.

    Returns:
        HurstEstimate with the fitted exponent and regression R².

    Raises:
        InsufficientData: Series shorter than ``min_samples`` or fewer than
            two usable windows.
    """
    method = HurstMethod(method)
    series = _as_series(series)
    n = series.size
    if n < min_samples:
        raise InsufficientData(f"Hurst estimation needs at least {min_samples} samples, got {n}")

    if method is HurstMethod.RESCALED_RANGE:
        low, high, statistic = 8, n // 2, _rescaled_range
    elif method is HurstMethod.AGGREGATED_VARIANCE:
        low, high, statistic = 1, n // 8, _aggregated_variance
    else:
        low, high, statistic = 1, n // 4, _variogram

    low = low if min_window is None else min_window
    high = high if max_window is None else min(max_window, high)

    windows, values = [], []
    for w in _dyadic_windows(low, high):
        value = statistic(series, w)
        if np.isfinite(value) and value > 0:
            windows.append(w)
            values.append(value)
    if len(windows) < 2:
        raise InsufficientData(
            f"{method.value}: fewer than two usable windows in [{low}, {high}] for {n} samples"
        )

    fit = stats.linregress(np.log(windows), np.log(values))
    if method is HurstMethod.RESCALED_RANGE:
        hurst = fit.slope
    elif method is HurstMethod.AGGREGATED_VARIANCE:
        # Var(block mean of size m) ~ m^(2H - 2)
        hurst = 1.0 + fit.slope / 2.0
    else:
        # E|X(t + k) - X(t)|^2 ~ k^(2H)
        hurst = fit.slope / 2.0

    logger.debug("Hurst %s over %d windows: H=%.4f (R²=%.4f)", method.value, len(windows), hurst, fit.rvalue**2)
    return HurstEstimate(
        hurst=float(hurst),
        r_squared=float(fit.rvalue**2),
        method=method,
        windows=tuple(windows),
        statistics=tuple(values),
    )


# ---------------------------------------------------------------------------
# Moments
# ---------------------------------------------------------------------------


class RunningMoments:
    """Online mean, variance, skewness and kurtosis.

    Single values use the Welford/Terriberry update; batches and partial
    accumulators are combined with the pairwise merge formulas, so results
    do not depend on how the data was split.
    """

    __slots__ = ("count", "mean", "_m2", "_m3", "_m4")

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self._m2 = 0.0
        self._m3 = 0.0
        self._m4 = 0.0

    @classmethod
    def from_values(cls, values) -> "RunningMoments":
        data = np.asarray(values, dtype=float).ravel()
        acc = cls()
        if data.size == 0:
            return acc
        centered = data - data.mean()
        acc.count = int(data.size)
        acc.mean = float(data.mean())
        acc._m2 = float(np.sum(centered**2))
        acc._m3 = float(np.sum(centered**3))
        acc._m4 = float(np.sum(centered**4))
        return acc

    def update(self, x: float) -> None:
        x = float(x)
        n1 = self.count
        self.count += 1
        n = self.count
        delta = x - self.mean
        delta_n = delta / n
        delta_n2 = delta_n * delta_n
        term1 = delta * delta_n * n1
        self.mean += delta_n
        self._m4 += term1 * delta_n2 * (n * n - 3 * n + 3) + 6 * delta_n2 * self._m2 - 4 * delta_n * self._m3
        self._m3 += term1 * delta_n * (n - 2) - 3 * delta_n * self._m2
        self._m2 += term1

    def update_many(self, values) -> None:
        self.merge(RunningMoments.from_values(values))

    def merge(self, other: "RunningMoments") -> None:
        """Fold ``other`` into this accumulator in place."""
        if other.count == 0:
            return
        if self.count == 0:
            self.count, self.mean = other.count, other.mean
            self._m2, self._m3, self._m4 = other._m2, other._m3, other._m4
            return

        na, nb = self.count, other.count
        n = na + nb
        delta = other.mean - self.mean
        d2 = delta * delta
        m2 = self._m2 + other._m2 + d2 * na * nb / n
        m3 = (
            self._m3
            + other._m3
            + d2 * delta * na * nb * (na - nb) / n**2
            + 3.0 * delta * (na * other._m2 - nb * self._m2) / n
        )
        m4 = (
            self._m4
            + other._m4
            + d2 * d2 * na * nb * (na * na - na * nb + nb * nb) / n**3
            + 6.0 * d2 * (na * na * other._m2 + nb * nb * self._m2) / n**2
            + 4.0 * delta * (na * other._m3 - nb * self._m3) / n
        )
        self.count = n
        self.mean += delta * nb / n
        self._m2, self._m3, self._m4 = m2, m3, m4

    def variance(self, ddof: int = 1) -> float:
        if self.count <= ddof:
            raise InsufficientData(f"variance with ddof={ddof} needs more than {ddof} samples, got {self.count}")
        return self._m2 / (self.count - ddof)

    def std(self, ddof: int = 1) -> float:
        return float(np.sqrt(self.variance(ddof)))

    def skewness(self) -> float:
        """Population skewness; NaN for a constant sample."""
        if self.count < 2:
            raise InsufficientData(f"skewness needs at least 2 samples, got {self.count}")
        if self._m2 == 0.0:
            return float("nan")
        return float(np.sqrt(self.count) * self._m3 / self._m2**1.5)

    def excess_kurtosis(self) -> float:
        """Population excess kurtosis; NaN for a constant sample."""
        if self.count < 2:
            raise InsufficientData(f"kurtosis needs at least 2 samples, got {self.count}")
        if self._m2 == 0.0:
            return float("nan")
        return float(self.count * self._m4 / self._m2**2 - 3.0)

    def __repr__(self):
        return f"RunningMoments(count={self.count}, mean={self.mean:.6g})"


@dataclass(frozen=True)
class MomentSummary:
    count: int
    mean: float
    variance: float
    std: float
    skewness: float
    excess_kurtosis: float
    minimum: float
    maximum: float


def sample_moments(values) -> MomentSummary:
    data = _as_series(np.ravel(values), "values")
    if data.size < 2:
        raise InsufficientData(f"sample moments need at least 2 values, got {data.size}")
    acc = RunningMoments.from_values(data)
    return MomentSummary(
        count=acc.count,
        mean=acc.mean,
        variance=acc.variance(),
        std=acc.std(),
        skewness=acc.skewness(),
        excess_kurtosis=acc.excess_kurtosis(),
        minimum=float(data.min()),
        maximum=float(data.max()),
    )


# ---------------------------------------------------------------------------
# Returns and realized volatility
# ---------------------------------------------------------------------------


def log_returns(values) -> np.ndarray:
    """Log returns of a strictly positive series."""
    series = _as_series(values, "values")
    if series.size < 2:
        raise InsufficientData(f"returns need at least 2 values, got {series.size}")
    if np.any(series <= 0):
        raise InvalidParameters("log returns require strictly positive values")
    return np.diff(np.log(series))


def _returns(values, log: bool) -> np.ndarray:
    if log:
        return log_returns(values)
    series = _as_series(values, "values")
    if series.size < 2:
        raise InsufficientData(f"returns need at least 2 values, got {series.size}")
    return np.diff(series)


def realized_variance(values, log: bool = True) -> float:
    """Sum of squared returns (log returns unless ``log`` is False)."""
    return float(np.sum(_returns(values, log) ** 2))


def realized_volatility(values, dt: float, log: bool = True) -> float:
    """Realized volatility per unit time: sqrt(Σr² / (n·dt))."""
    if not dt > 0:
        raise InvalidParameters(f"dt must be positive, got {dt}")
    returns = _returns(values, log)
    return float(np.sqrt(np.sum(returns**2) / (returns.size * dt)))
