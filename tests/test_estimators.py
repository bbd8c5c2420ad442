"""Tests for Hurst estimation, running moments and realized volatility."""

import numpy as np
import pytest
from scipy import stats

from stochpath.errors import InsufficientData, InvalidParameters
from stochpath.estimators import (
    HurstMethod,
    MIN_HURST_SAMPLES,
    RunningMoments,
    estimate_hurst,
    log_returns,
    realized_variance,
    realized_volatility,
    sample_moments,
)
from stochpath.grid import TimeGrid
from stochpath.noise import FgnMethod, FractionalGaussianNoise
from stochpath.random import NoiseStream


@pytest.fixture
def fgn_sample():
    """Unit-step fractional Gaussian noise with H = 0.7."""
    grid = TimeGrid.uniform(0.0, 8192.0, 8192)
    return FractionalGaussianNoise(0.7, grid, method=FgnMethod.CIRCULANT).sample(NoiseStream(21))


# ---------------------------------------------------------------------------
# Hurst exponent
# ---------------------------------------------------------------------------

class TestHurst:
    def test_white_noise_rescaled_range(self):
        noise = np.random.default_rng(0).standard_normal(8192)
        estimate = estimate_hurst(noise, HurstMethod.RESCALED_RANGE)
        # R/S is biased upward on short windows
        assert 0.4 <= estimate.hurst <= 0.7
        assert estimate.method is HurstMethod.RESCALED_RANGE
        assert len(estimate.windows) == len(estimate.statistics)

    def test_aggregated_variance_on_fgn(self, fgn_sample):
        estimate = estimate_hurst(fgn_sample, "aggvar", max_window=256)
        assert estimate.hurst == pytest.approx(0.7, abs=0.1)
        assert estimate.r_squared > 0.9

    def test_variogram_on_fbm_path(self, fgn_sample):
        path = np.cumsum(fgn_sample)
        estimate = estimate_hurst(path, HurstMethod.VARIOGRAM, max_window=64)
        assert estimate.hurst == pytest.approx(0.7, abs=0.05)

    def test_persistent_above_antipersistent(self):
        grid = TimeGrid.uniform(0.0, 4096.0, 4096)
        low = FractionalGaussianNoise(0.3, grid).sample(NoiseStream(1))
        high = FractionalGaussianNoise(0.8, grid).sample(NoiseStream(1))
        assert estimate_hurst(low).hurst < estimate_hurst(high).hurst

    def test_minimum_samples(self):
        with pytest.raises(InsufficientData):
            estimate_hurst(np.ones(MIN_HURST_SAMPLES - 1))

    def test_constant_series_has_no_usable_windows(self):
        with pytest.raises(InsufficientData):
            estimate_hurst(np.ones(256), HurstMethod.RESCALED_RANGE)

    def test_non_finite_rejected(self):
        series = np.zeros(128)
        series[5] = np.inf
        with pytest.raises(InvalidParameters):
            estimate_hurst(series)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            estimate_hurst(np.zeros(128), "dfa")


# ---------------------------------------------------------------------------
# Moments
# ---------------------------------------------------------------------------

class TestRunningMoments:
    @pytest.fixture
    def data(self):
        return np.random.default_rng(3).gamma(2.0, 1.5, 5000)

    def test_online_matches_batch(self, data):
        acc = RunningMoments()
        for x in data:
            acc.update(x)
        assert acc.count == data.size
        assert acc.mean == pytest.approx(np.mean(data))
        assert acc.variance() == pytest.approx(np.var(data, ddof=1))
        assert acc.skewness() == pytest.approx(stats.skew(data), rel=1e-8)
        assert acc.excess_kurtosis() == pytest.approx(stats.kurtosis(data), rel=1e-8)

    def test_merge_matches_single_pass(self, data):
        left, right = RunningMoments(), RunningMoments()
        left.update_many(data[:1234])
        for x in data[1234:]:
            right.update(x)
        left.merge(right)
        whole = RunningMoments.from_values(data)
        assert left.count == whole.count
        assert left.mean == pytest.approx(whole.mean)
        assert left.variance() == pytest.approx(whole.variance())
        assert left.skewness() == pytest.approx(whole.skewness())
        assert left.excess_kurtosis() == pytest.approx(whole.excess_kurtosis())

    def test_merge_into_empty(self, data):
        acc = RunningMoments()
        acc.merge(RunningMoments.from_values(data))
        assert acc.std() == pytest.approx(np.std(data, ddof=1))

    def test_insufficient_samples(self):
        acc = RunningMoments()
        acc.update(1.0)
        with pytest.raises(InsufficientData):
            acc.variance()
        assert acc.variance(ddof=0) == 0.0

    def test_constant_sample_shape_is_nan(self):
        acc = RunningMoments.from_values([2.0, 2.0, 2.0])
        assert np.isnan(acc.skewness())
        assert np.isnan(acc.excess_kurtosis())

    def test_sample_moments(self, data):
        summary = sample_moments(data)
        assert summary.count == data.size
        assert summary.minimum == data.min()
        assert summary.maximum == data.max()
        assert summary.std == pytest.approx(np.std(data, ddof=1))
        with pytest.raises(InsufficientData):
            sample_moments([1.0])


# ---------------------------------------------------------------------------
# Returns and volatility
# ---------------------------------------------------------------------------

class TestRealized:
    def test_log_returns(self):
        np.testing.assert_allclose(log_returns([1.0, np.e, 1.0]), [1.0, -1.0])

    def test_log_returns_require_positive(self):
        with pytest.raises(InvalidParameters):
            log_returns([1.0, 0.0, 2.0])
        with pytest.raises(InsufficientData):
            log_returns([1.0])

    def test_realized_variance(self):
        assert realized_variance([1.0, np.e, 1.0]) == pytest.approx(2.0)
        assert realized_variance([0.0, 1.0, -1.0], log=False) == pytest.approx(5.0)

    def test_realized_volatility_recovers_sigma(self, gbm_prices):
        assert realized_volatility(gbm_prices, 1 / 252) == pytest.approx(0.2, rel=0.01)

    def test_realized_volatility_requires_positive_dt(self, gbm_prices):
        with pytest.raises(InvalidParameters):
            realized_volatility(gbm_prices, 0.0)
