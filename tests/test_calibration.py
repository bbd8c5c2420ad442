"""Tests for the Levenberg-Marquardt calibrator and parameter fitters."""

import numpy as np
import pytest

from stochpath.calibration import (
    BOUND_POLICY,
    CalibrationStatus,
    calibrate,
    fit_cir,
    fit_gbm,
    fit_hurst,
    fit_ou,
    simulated_statistics_objective,
)
from stochpath.ensemble import simulate_ensemble
from stochpath.errors import CalibrationError, InsufficientData, InvalidParameters, SingularJacobian
from stochpath.grid import TimeGrid
from stochpath.noise import FgnMethod, FractionalGaussianNoise
from stochpath.processes.brownian import BrownianParams, GBMParams
from stochpath.processes.cir import CIRParams, simulate_cir
from stochpath.processes.ou import OUParams, simulate_ou
from stochpath.random import NoiseStream


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def line_data():
    """Noisy observations of y = 2.5 x - 1."""
    rng = np.random.default_rng(0)
    x = np.linspace(0.0, 10.0, 50)
    y = 2.5 * x - 1.0 + rng.normal(0.0, 0.3, x.size)
    return x, y


def line_residuals(x, y):
    def residuals(p):
        return p["a"] * x + p["b"] - y
    return residuals


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

class TestLevenbergMarquardt:
    @pytest.mark.parametrize("start", [(0.0, 0.0), (10.0, -10.0), (-5.0, 50.0), (1e3, 1e3)])
    def test_linear_closed_form_optimum(self, line_data, start):
        x, y = line_data
        slope, intercept = np.polyfit(x, y, 1)
        result = calibrate(line_residuals(x, y), {"a": start[0], "b": start[1]})
        assert result.status is CalibrationStatus.CONVERGED
        assert result.values["a"] == pytest.approx(slope, abs=1e-6)
        assert result.values["b"] == pytest.approx(intercept, abs=1e-6)

    def test_nonlinear_exponential_fit(self):
        t = np.linspace(0.0, 4.0, 40)
        y = 3.0 * np.exp(-0.7 * t)
        result = calibrate(lambda p: p["amp"] * np.exp(-p["rate"] * t) - y, {"amp": 1.0, "rate": 0.1})
        assert result.converged
        assert result.values["amp"] == pytest.approx(3.0, rel=1e-6)
        assert result.values["rate"] == pytest.approx(0.7, rel=1e-6)
        assert result.rss < 1e-12

    def test_analytic_jacobian(self, line_data):
        x, y = line_data

        def jacobian(p):
            return np.column_stack([x, np.ones_like(x)])

        result = calibrate(line_residuals(x, y), {"a": 0.0, "b": 0.0}, jacobian=jacobian)
        slope, intercept = np.polyfit(x, y, 1)
        assert result.values["a"] == pytest.approx(slope, abs=1e-6)
        assert result.values["b"] == pytest.approx(intercept, abs=1e-6)

    def test_parallel_jacobian_matches_serial(self, line_data):
        x, y = line_data
        serial = calibrate(line_residuals(x, y), {"a": 1.0, "b": 1.0}, max_workers=1)
        parallel = calibrate(line_residuals(x, y), {"a": 1.0, "b": 1.0}, max_workers=2)
        assert serial.values == parallel.values

    def test_covariance_matches_ols(self, line_data):
        x, y = line_data
        result = calibrate(line_residuals(x, y), {"a": 0.0, "b": 0.0})
        design = np.column_stack([x, np.ones_like(x)])
        s2 = result.rss / (x.size - 2)
        expected = s2 * np.linalg.inv(design.T @ design)
        np.testing.assert_allclose(result.covariance, expected, rtol=1e-4)
        assert set(result.standard_errors) == {"a", "b"}

    def test_projection_onto_bound(self, line_data):
        x, y = line_data
        assert BOUND_POLICY == "project"
        result = calibrate(line_residuals(x, y), {"a": 0.0, "b": 0.0}, bounds={"a": (None, 2.0)})
        assert result.status is CalibrationStatus.CONVERGED
        assert result.values["a"] == pytest.approx(2.0)
        # With a pinned at its bound, b is the least-squares intercept for that slope
        assert result.values["b"] == pytest.approx(np.mean(y - 2.0 * x), abs=1e-4)

    def test_degenerate_bound_pins_parameter(self, line_data):
        x, y = line_data
        result = calibrate(line_residuals(x, y), {"a": 2.0, "b": 0.0}, bounds={"a": (2.0, 2.0)})
        assert result.status is CalibrationStatus.CONVERGED
        assert result.values["a"] == 2.0
        assert result.values["b"] == pytest.approx(np.mean(y - 2.0 * x), abs=1e-4)

    def test_initial_point_projected(self, line_data):
        x, y = line_data
        result = calibrate(line_residuals(x, y), {"a": 50.0, "b": 0.0}, bounds={"a": (0.0, 3.0)})
        assert 0.0 <= result.values["a"] <= 3.0

    def test_max_iterations_status(self):
        t = np.linspace(0.0, 4.0, 40)
        y = 3.0 * np.exp(-0.7 * t)
        result = calibrate(
            lambda p: p["amp"] * np.exp(-p["rate"] * t) - y,
            {"amp": 1.0, "rate": 0.1},
            max_iterations=1,
        )
        assert result.status is CalibrationStatus.MAX_ITERATIONS
        assert result.iterations == 1
        with pytest.raises(CalibrationError):
            result.raise_for_status()

    def test_non_finite_start_diverges(self):
        result = calibrate(lambda p: [np.nan, 1.0], {"a": 1.0})
        assert result.status is CalibrationStatus.DIVERGED
        assert not result.converged

    def test_non_finite_jacobian_raises(self):
        with pytest.raises(SingularJacobian):
            calibrate(lambda p: [p["a"] - 1.0], {"a": 0.0}, jacobian=lambda p: [[np.inf]])

    def test_singular_jacobian_is_arithmetic_error(self):
        with pytest.raises(ArithmeticError):
            calibrate(lambda p: [p["a"] - 1.0], {"a": 0.0}, jacobian=lambda p: [[np.nan]])

    def test_fixed_parameters(self, line_data):
        x, y = line_data
        result = calibrate(line_residuals(x, y), {"a": 0.0, "b": -1.0}, free=("a",))
        assert result.names == ("a",)
        assert result.params["b"] == -1.0

    def test_dataclass_parameters(self):
        target = np.array([0.3])
        result = calibrate(
            lambda p: [p.sigma - target[0]],
            GBMParams(sigma=0.1),
            free=("sigma",),
        )
        assert isinstance(result.params, GBMParams)
        assert result.params.sigma == pytest.approx(0.3)

    def test_invalid_trial_points_are_rejected(self):
        # Unconstrained minimum sits at sigma < 0, outside the GBM domain
        result = calibrate(lambda p: [p.sigma + 0.5], GBMParams(sigma=0.4), free=("sigma",))
        assert 0.0 <= result.params.sigma < 0.4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"free": ("missing",)},
            {"bounds": {"c": (0.0, 1.0)}},
            {"bounds": {"a": (2.0, 1.0)}},
        ],
    )
    def test_malformed_problem(self, kwargs, line_data):
        x, y = line_data
        with pytest.raises(InvalidParameters):
            calibrate(line_residuals(x, y), {"a": 0.0, "b": 0.0}, **kwargs)


# ---------------------------------------------------------------------------
# Fitters
# ---------------------------------------------------------------------------

class TestFitters:
    def test_gbm_sigma_round_trip(self, gbm_prices):
        result = fit_gbm(gbm_prices, 1 / 252)
        assert result.converged
        assert isinstance(result.params, GBMParams)
        assert result.params.sigma == pytest.approx(0.2, rel=0.01)
        assert result.params.s0 == gbm_prices[0]

    def test_ou_round_trip(self):
        grid = TimeGrid.uniform(0.0, 500.0, 50_000)
        truth = OUParams(theta=2.0, mu=1.0, sigma=0.4, x0=1.0)
        path = simulate_ou(truth, grid, NoiseStream(8))
        result = fit_ou(path.values, grid.step_size)
        assert result.converged
        assert result.params.theta == pytest.approx(2.0, rel=0.15)
        assert result.params.mu == pytest.approx(1.0, abs=0.05)
        assert result.params.sigma == pytest.approx(0.4, rel=0.03)

    def test_cir_round_trip(self):
        grid = TimeGrid.uniform(0.0, 500.0, 50_000)
        truth = CIRParams(kappa=1.5, theta=0.05, sigma=0.15, x0=0.05)
        path = simulate_cir(truth, grid, NoiseStream(8))
        result = fit_cir(path.values, grid.step_size)
        assert result.converged
        assert result.params.kappa == pytest.approx(1.5, rel=0.2)
        assert result.params.theta == pytest.approx(0.05, rel=0.1)
        assert result.params.sigma == pytest.approx(0.15, rel=0.05)

    def test_fit_hurst(self):
        grid = TimeGrid.uniform(0.0, 4096.0, 4096)
        fgn = FractionalGaussianNoise(0.3, grid, method=FgnMethod.CIRCULANT).sample(NoiseStream(5))
        result = fit_hurst(np.cumsum(fgn), max_lag=32)
        assert result.converged
        assert result.params["hurst"] == pytest.approx(0.3, abs=0.05)

    def test_fitters_need_data(self):
        with pytest.raises(InsufficientData):
            fit_gbm([1.0, 1.1], 1 / 252)
        with pytest.raises(InsufficientData):
            fit_hurst(np.arange(10.0))
        with pytest.raises(InvalidParameters):
            fit_ou([1.0, 2.0, 3.0], 0.0)


class TestSimulatedObjective:
    def test_recovers_drift_with_common_random_numbers(self):
        grid = TimeGrid.uniform(0.0, 1.0, 20)
        truth = BrownianParams(mu=0.8, sigma=0.5)
        observed = simulate_ensemble("bm", truth, grid, 200, 99)
        target = [observed.terminal_values().mean()]

        objective = simulated_statistics_objective(
            "bm",
            BrownianParams(mu=0.0, sigma=0.5),
            grid,
            200,
            99,
            lambda ensemble: [ensemble.terminal_values().mean()],
            target,
        )
        np.testing.assert_array_equal(objective({"mu": 0.3}), objective({"mu": 0.3}))

        result = calibrate(objective, BrownianParams(mu=0.0, sigma=0.5), free=("mu",))
        assert result.converged
        assert result.params.mu == pytest.approx(0.8, abs=1e-6)

    def test_template_kind_must_match(self):
        grid = TimeGrid.uniform(0.0, 1.0, 5)
        with pytest.raises(InvalidParameters):
            simulated_statistics_objective("ou", GBMParams(), grid, 10, 1, lambda e: [0.0], [0.0])
