"""Tests for correlated and fractional Gaussian noise generators."""

import logging

import numpy as np
import pytest

from stochpath.errors import (
    InvalidCorrelationMatrix,
    InvalidGrid,
    InvalidParameters,
    NonPositiveDefiniteCovariance,
)
from stochpath.grid import TimeGrid
from stochpath.noise import (
    EIGENVALUE_TOLERANCE,
    CorrelatedIncrements,
    FgnMethod,
    FractionalGaussianNoise,
    fgn_autocovariance,
)
from stochpath.random import NoiseStream


def _sample_autocovariance(x: np.ndarray, lag: int) -> float:
    if lag == 0:
        return float(np.mean(x * x))
    return float(np.mean(x[:-lag] * x[lag:]))


# ---------------------------------------------------------------------------
# Correlated increments
# ---------------------------------------------------------------------------

class TestCorrelatedIncrements:
    def test_sample_correlation(self, stream):
        grid = TimeGrid.uniform(0.0, 1.0, 20_000)
        noise = CorrelatedIncrements([[1.0, -0.7], [-0.7, 1.0]])
        dw = noise.sample(stream, grid)
        assert dw.shape == (20_000, 2)
        assert np.corrcoef(dw.T)[0, 1] == pytest.approx(-0.7, abs=0.03)
        assert np.var(dw[:, 0]) == pytest.approx(grid.step_size, rel=0.05)

    def test_perfect_correlation_uses_eigen_factor(self, stream):
        grid = TimeGrid.uniform(0.0, 1.0, 1000)
        noise = CorrelatedIncrements([[1.0, 1.0], [1.0, 1.0]])
        dw = noise.sample(stream, grid)
        np.testing.assert_allclose(np.abs(dw[:, 0]), np.abs(dw[:, 1]), atol=1e-12)
        assert np.corrcoef(dw.T)[0, 1] == pytest.approx(1.0, abs=1e-9)

    @pytest.mark.parametrize(
        "matrix",
        [
            [[1.0, 0.5], [0.4, 1.0]],
            [[2.0, 0.0], [0.0, 1.0]],
            [[1.0, 1.5], [1.5, 1.0]],
            [[1.0, 0.9, 0.9], [0.9, 1.0, -0.9], [0.9, -0.9, 1.0]],
            [[1.0, np.nan], [np.nan, 1.0]],
            [1.0, 0.5],
        ],
    )
    def test_invalid_matrices_rejected(self, matrix):
        with pytest.raises(InvalidCorrelationMatrix):
            CorrelatedIncrements(matrix)

    def test_factor_is_read_only(self):
        noise = CorrelatedIncrements(np.eye(3))
        assert noise.dimension == 3
        with pytest.raises(ValueError):
            noise.factor[0, 0] = 2.0


# ---------------------------------------------------------------------------
# Fractional Gaussian noise
# ---------------------------------------------------------------------------

class TestFgnAutocovariance:
    def test_standard_brownian_is_white(self):
        np.testing.assert_allclose(fgn_autocovariance(0.5, [0, 1, 2, 5]), [1.0, 0.0, 0.0, 0.0], atol=1e-12)

    def test_persistent_noise_positively_correlated(self):
        gamma = fgn_autocovariance(0.8, np.arange(1, 6))
        assert np.all(gamma > 0)
        assert np.all(np.diff(gamma) < 0)

    def test_antipersistent_noise_negatively_correlated(self):
        assert fgn_autocovariance(0.2, [1])[0] < 0


class TestFractionalGaussianNoise:
    def test_auto_method_selection(self):
        small = FractionalGaussianNoise(0.7, TimeGrid.uniform(0.0, 1.0, 64))
        large = FractionalGaussianNoise(0.7, TimeGrid.uniform(0.0, 1.0, 1024))
        assert small.method is FgnMethod.CHOLESKY
        assert large.method is FgnMethod.CIRCULANT

    def test_auto_uses_cholesky_on_uneven_grid(self, uneven_grid):
        assert FractionalGaussianNoise(0.3, uneven_grid).method is FgnMethod.CHOLESKY

    def test_circulant_requires_uniform_grid(self, uneven_grid):
        with pytest.raises(InvalidGrid):
            FractionalGaussianNoise(0.7, uneven_grid, method=FgnMethod.CIRCULANT)

    @pytest.mark.parametrize("hurst", [0.0, 1.0, -0.2, 1.5])
    def test_hurst_domain(self, hurst):
        with pytest.raises(InvalidParameters):
            FractionalGaussianNoise(hurst, TimeGrid.uniform(0.0, 1.0, 16))

    def test_sample_shape(self, daily_grid, stream):
        fgn = FractionalGaussianNoise(0.7, daily_grid)
        assert fgn.sample(stream).shape == (daily_grid.steps,)

    def test_circulant_autocovariance_converges(self):
        hurst = 0.7
        grid = TimeGrid.uniform(0.0, 4096.0, 4096)
        fgn = FractionalGaussianNoise(hurst, grid, method=FgnMethod.CIRCULANT)
        assert fgn.clamped_eigenvalues == 0

        samples = [fgn.sample(NoiseStream(seed)) for seed in range(40)]
        expected = fgn_autocovariance(hurst, np.arange(4))
        for lag in range(4):
            estimate = np.mean([_sample_autocovariance(x, lag) for x in samples])
            assert estimate == pytest.approx(expected[lag], abs=0.05)

    def test_cholesky_variance_scales_with_step(self):
        hurst = 0.3
        grid = TimeGrid.uniform(0.0, 1.0, 64)
        fgn = FractionalGaussianNoise(hurst, grid, method=FgnMethod.CHOLESKY)
        draws = np.array([fgn.sample(NoiseStream(seed)) for seed in range(2000)])
        assert np.var(draws) == pytest.approx(grid.step_size ** (2 * hurst), rel=0.05)

    def test_methods_agree_in_distribution(self):
        hurst = 0.6
        grid = TimeGrid.uniform(0.0, 1.0, 128)
        chol = FractionalGaussianNoise(hurst, grid, method=FgnMethod.CHOLESKY)
        circ = FractionalGaussianNoise(hurst, grid, method=FgnMethod.CIRCULANT)
        lag1 = []
        for fgn in (chol, circ):
            draws = [fgn.sample(NoiseStream(seed)) for seed in range(500)]
            lag1.append(np.mean([_sample_autocovariance(x, 1) for x in draws]))
        scale = grid.step_size ** (2 * hurst)
        assert lag1[0] / scale == pytest.approx(lag1[1] / scale, abs=0.05)

    def test_uneven_grid_terminal_variance(self, uneven_grid):
        hurst = 0.3
        fgn = FractionalGaussianNoise(hurst, uneven_grid)
        terminal = np.array([fgn.sample(NoiseStream(seed)).sum() for seed in range(4000)])
        assert np.var(terminal) == pytest.approx(uneven_grid.horizon ** (2 * hurst), rel=0.08)

    @staticmethod
    def _inject_negative_eigenvalue(monkeypatch, fraction):
        """Replace one circulant eigenvalue with ``-fraction * tolerance * max``."""
        original = np.fft.fft

        def fft(row):
            eigenvalues = original(row).real.copy()
            eigenvalues[3] = -fraction * EIGENVALUE_TOLERANCE * eigenvalues.max()
            return eigenvalues

        monkeypatch.setattr(np.fft, "fft", fft)

    def test_small_negative_eigenvalue_clamped(self, monkeypatch, caplog):
        monkeypatch.setattr(logging.getLogger("stochpath"), "propagate", True)
        self._inject_negative_eigenvalue(monkeypatch, 0.5)
        grid = TimeGrid.uniform(0.0, 1024.0, 1024)
        with caplog.at_level(logging.WARNING, logger="stochpath.noise"):
            fgn = FractionalGaussianNoise(0.7, grid, method=FgnMethod.CIRCULANT)
        assert fgn.clamped_eigenvalues == 1
        assert "clamped 1 negative circulant eigenvalues" in caplog.text

    def test_large_negative_eigenvalue_raises(self, monkeypatch):
        self._inject_negative_eigenvalue(monkeypatch, 10.0)
        grid = TimeGrid.uniform(0.0, 1024.0, 1024)
        with pytest.raises(NonPositiveDefiniteCovariance):
            FractionalGaussianNoise(0.7, grid, method=FgnMethod.CIRCULANT)
