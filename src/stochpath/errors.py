"""Exception taxonomy for simulation, estimation and calibration failures.

Input-domain failures subclass ``ValueError`` as well, so callers that only
know about the builtin still catch them.
"""


class StochPathError(Exception):
    """Base class for all stochpath errors."""


class InvalidParameters(StochPathError, ValueError):
    """A process parameter lies outside the domain where the process is defined."""


class InvalidGrid(StochPathError, ValueError):
    """Time grid is empty, too short, non-finite or not strictly increasing."""


class InvalidCorrelationMatrix(StochPathError, ValueError):
    """Correlation matrix is malformed or not positive semi-definite."""


class NonPositiveDefiniteCovariance(StochPathError, ValueError):
    """Noise covariance cannot be factorised within tolerance."""


class InsufficientData(StochPathError, ValueError):
    """Estimator needs more samples than were provided."""


class InvalidEnsembleSize(StochPathError, ValueError):
    """Requested number of Monte Carlo paths is not a positive integer."""


class SingularJacobian(StochPathError, ArithmeticError):
    """Normal equations cannot be solved even at maximum damping."""


class CalibrationError(StochPathError):
    """Raised by ``CalibrationResult.raise_for_status`` for non-converged fits."""
