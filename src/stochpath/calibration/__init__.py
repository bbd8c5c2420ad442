"""
Calibration engine.

Fits process parameters by bounded Levenberg-Marquardt least squares:
- calibrate: generic solver over named parameters or a parameter dataclass
- fit_gbm / fit_ou / fit_cir: fitters for observed series
- fit_hurst: log-variogram fit of the Hurst exponent
- simulated_statistics_objective: simulation-based objective with common
  random numbers

Example:
    >>> from stochpath.calibration import fit_gbm
    >>> result = fit_gbm(prices, dt=1 / 252)
    >>> print(result.params.sigma, result.status)
"""

from .levenberg_marquardt import (
    BOUND_POLICY,
    CalibrationResult,
    CalibrationStatus,
    calibrate,
)
from .fitters import fit_cir, fit_gbm, fit_hurst, fit_ou, simulated_statistics_objective

__all__ = [
    "BOUND_POLICY",
    "CalibrationResult",
    "CalibrationStatus",
    "calibrate",
    "fit_gbm",
    "fit_ou",
    "fit_cir",
    "fit_hurst",
    "simulated_statistics_objective",
]
