"""Parameter fitters built on the Levenberg-Marquardt calibrator.

Each fitter turns an observed series into a residual function, seeds the
solver with a closed-form or regression guess, and returns the
``CalibrationResult`` with the fitted parameter dataclass attached.
"""

import dataclasses
import logging
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from scipy import stats

from stochpath.calibration.levenberg_marquardt import CalibrationResult, calibrate
from stochpath.ensemble import PathEnsemble, simulate_ensemble
from stochpath.errors import InsufficientData, InvalidParameters
from stochpath.estimators import MIN_HURST_SAMPLES, log_returns, realized_volatility
from stochpath.grid import TimeGrid, as_grid
from stochpath.processes import ProcessKind, ProcessParams, Scheme
from stochpath.processes.brownian import GBMParams
from stochpath.processes.cir import CIRParams
from stochpath.processes.ou import OUParams, ou_transition
from stochpath.simulation import parse_kind

logger = logging.getLogger(__name__)

MIN_FIT_SAMPLES = 3


def _observations(values, dt: float) -> np.ndarray:
    series = np.asarray(values, dtype=float).ravel()
    if series.size < MIN_FIT_SAMPLES:
        raise InsufficientData(f"fitting needs at least {MIN_FIT_SAMPLES} observations, got {series.size}")
    if not np.all(np.isfinite(series)):
        raise InvalidParameters("observations contain non-finite values")
    if not dt > 0:
        raise InvalidParameters(f"dt must be positive, got {dt}")
    return series


def _ar1(series: np.ndarray) -> tuple[float, float]:
    """(slope, intercept) of X[k+1] on X[k]."""
    fit = stats.linregress(series[:-1], series[1:])
    return float(fit.slope), float(fit.intercept)


def _speed_guess(slope: float, dt: float, n: int) -> float:
    if 0.0 < slope < 1.0:
        return -np.log(slope) / dt
    return 1.0 / (n * dt)


def fit_gbm(values, dt: float, **options) -> CalibrationResult:
    """Fit GBM drift and volatility from a price series.

    Matches the first two moments of the log returns:
      E[r] = (μ − σ²/2)·dt,  E[r²] = σ²·dt + E[r]²
    seeded with the realized volatility.
    """
    series = _observations(values, dt)
    returns = log_returns(series)
    m1 = float(np.mean(returns))
    m2 = float(np.mean(returns**2))

    def residuals(p: GBMParams):
        drift = (p.mu - 0.5 * p.sigma**2) * dt
        return [
            (m1 - drift) / np.sqrt(dt),
            (m2 - p.sigma**2 * dt - drift**2) / dt,
        ]

    sigma0 = realized_volatility(series, dt)
    initial = GBMParams(mu=m1 / dt + 0.5 * sigma0**2, sigma=sigma0, s0=float(series[0]))
    return calibrate(
        residuals,
        initial,
        bounds={"sigma": (0.0, None)},
        free=("mu", "sigma"),
        **options,
    )


def fit_ou(values, dt: float, **options) -> CalibrationResult:
    """Fit OU speed and mean from exact-transition residuals.

    σ is recovered from the residual variance through the transition
    variance σ²(1 − e^{−2θΔ})/(2θ).
    """
    series = _observations(values, dt)
    x, x_next = series[:-1], series[1:]

    def residuals(p: OUParams):
        decay, shift, _ = ou_transition(p.theta, p.mu, 1.0, dt)
        return x_next - decay * x - shift

    slope, intercept = _ar1(series)
    theta0 = _speed_guess(slope, dt, series.size)
    mu0 = intercept / (1.0 - slope) if abs(1.0 - slope) > 1e-12 else float(np.mean(series))
    initial = OUParams(theta=theta0, mu=mu0, sigma=0.0, x0=float(series[0]))

    result = calibrate(
        residuals,
        initial,
        bounds={"theta": (0.0, None)},
        free=("theta", "mu"),
        **options,
    )

    fitted = result.params
    _, _, unit_std = ou_transition(fitted.theta, fitted.mu, 1.0, dt)
    eps = residuals(fitted)
    sigma = float(np.sqrt(np.mean(eps**2)) / unit_std)
    logger.debug("OU fit: theta=%.6g mu=%.6g sigma=%.6g", fitted.theta, fitted.mu, sigma)
    return dataclasses.replace(result, params=fitted.replace(sigma=sigma))


def fit_cir(values, dt: float, **options) -> CalibrationResult:
    """Fit CIR speed and mean from conditional-mean residuals.

    Residuals are scaled by √X so each transition carries comparable
    weight. σ² is the ratio of the summed squared residuals to the summed
    unit-σ conditional variances.
    """
    series = _observations(values, dt)
    if np.any(series < 0):
        raise InvalidParameters("CIR observations must be non-negative")
    x, x_next = series[:-1], series[1:]
    weight = 1.0 / np.sqrt(x + 1e-6 * np.mean(x) + np.finfo(float).tiny)

    def conditional_mean(p: CIRParams):
        decay = np.exp(-p.kappa * dt)
        return p.theta + (x - p.theta) * decay

    def residuals(p: CIRParams):
        return (x_next - conditional_mean(p)) * weight

    slope, intercept = _ar1(series)
    kappa0 = _speed_guess(slope, dt, series.size)
    theta0 = intercept / (1.0 - slope) if abs(1.0 - slope) > 1e-12 else float(np.mean(series))
    if not theta0 > 0:
        theta0 = float(np.mean(series)) or 1e-8
    initial = CIRParams(kappa=kappa0, theta=theta0, sigma=0.0, x0=float(series[0]))

    result = calibrate(
        residuals,
        initial,
        bounds={"kappa": (1e-12, None), "theta": (1e-12, None)},
        free=("kappa", "theta"),
        **options,
    )

    fitted = result.params
    decay = np.exp(-fitted.kappa * dt)
    unit_variance = (
        x * (decay - decay**2) / fitted.kappa
        + fitted.theta * (1.0 - decay) ** 2 / (2.0 * fitted.kappa)
    )
    raw = x_next - conditional_mean(fitted)
    sigma = float(np.sqrt(np.sum(raw**2) / np.sum(unit_variance)))
    logger.debug("CIR fit: kappa=%.6g theta=%.6g sigma=%.6g", fitted.kappa, fitted.theta, sigma)
    return dataclasses.replace(result, params=fitted.replace(sigma=sigma))


def fit_hurst(path, max_lag: int | None = None, **options) -> CalibrationResult:
    """Fit ``log V(k) = log c + 2H·log k`` to the empirical variogram of ``path``.

    Returns a result whose params mapping holds ``hurst`` and ``log_scale``.
    """
    series = np.asarray(path, dtype=float).ravel()
    if series.size < MIN_HURST_SAMPLES:
        raise InsufficientData(f"Hurst fit needs at least {MIN_HURST_SAMPLES} samples, got {series.size}")
    if max_lag is None:
        max_lag = min(series.size // 4, 64)
    if max_lag < 2:
        raise InsufficientData(f"max_lag must be at least 2, got {max_lag}")

    lags = np.arange(1, max_lag + 1)
    variogram = np.array([np.mean((series[k:] - series[:-k]) ** 2) for k in lags])
    keep = variogram > 0
    if keep.sum() < 2:
        raise InsufficientData("variogram is degenerate (constant path)")
    log_lags = np.log(lags[keep])
    log_variogram = np.log(variogram[keep])

    def residuals(p: Mapping[str, float]):
        return log_variogram - (p["log_scale"] + 2.0 * p["hurst"] * log_lags)

    def jacobian(p: Mapping[str, float]):
        return np.column_stack([-2.0 * log_lags, -np.ones_like(log_lags)])

    return calibrate(
        residuals,
        {"hurst": 0.5, "log_scale": float(log_variogram[0])},
        bounds={"hurst": (1e-6, 1.0 - 1e-6)},
        jacobian=jacobian,
        **options,
    )


def simulated_statistics_objective(
    kind: ProcessKind | str,
    template_params: ProcessParams,
    grid: TimeGrid,
    n_paths: int,
    base_seed,
    statistic: Callable[[PathEnsemble], Sequence[float]],
    targets: Sequence[float],
    *,
    scheme: Scheme | str | None = None,
    max_workers: int = 1,
) -> Callable[[Any], np.ndarray]:
    """Objective comparing ensemble statistics with ``targets``.

    Every evaluation reuses ``base_seed`` (common random numbers), so the
    objective is a deterministic, smooth-enough function of the parameters.
    The returned callable accepts a parameter dataclass or a mapping of
    overrides applied to ``template_params``.
    """
    kind = parse_kind(kind)
    if template_params.kind is not kind:
        raise InvalidParameters(f"template parameters do not describe a {kind.value} process")
    grid = as_grid(grid)
    target = np.asarray(targets, dtype=float).ravel()

    def objective(params) -> np.ndarray:
        if isinstance(params, Mapping):
            params = template_params.replace(**params)
        ensemble = simulate_ensemble(
            kind, params, grid, n_paths, base_seed, scheme=scheme, max_workers=max_workers
        )
        value = np.asarray(statistic(ensemble), dtype=float).ravel()
        if value.shape != target.shape:
            raise InvalidParameters(f"statistic returned shape {value.shape}, expected {target.shape}")
        return value - target

    return objective
