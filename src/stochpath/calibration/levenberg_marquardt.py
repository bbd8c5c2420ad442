"""Bounded Levenberg-Marquardt least-squares calibrator.

Minimises ½‖r(p)‖² for a residual function r over named parameters:
  (JᵀJ + λI)Δp = −Jᵀr
An accepted step (lower cost) shrinks the damping λ /= 3; a rejected one
grows it λ *= 2. Trial points are projected (clipped) into the bounds, and
a parameter sitting on a bound whose gradient points outward is held fixed
for that iteration. Parameter sets that fail validation or give non-finite residuals count as
rejected steps.
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from scipy import linalg

from stochpath.errors import CalibrationError, InvalidParameters, SingularJacobian
from stochpath.processes import ProcessParams

logger = logging.getLogger(__name__)

BOUND_POLICY = "project"

DEFAULT_MAX_ITERATIONS = 200
DEFAULT_FTOL = 1e-10
DEFAULT_XTOL = 1e-10
DEFAULT_GTOL = 1e-10
DEFAULT_INITIAL_DAMPING = 1e-3

MAX_DAMPING = 1e16
MIN_DAMPING = 1e-16

# Relative finite-difference step: sqrt(machine epsilon)
FD_STEP = float(np.sqrt(np.finfo(float).eps))


class CalibrationStatus(str, Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class CalibrationResult:
    """Outcome of a calibration run.

    Attributes:
        params: Fitted parameters; a mapping, or the parameter dataclass when
            calibration started from one.
        values: Fitted values of the free parameters, by name.
        residual_norm: ‖r‖ at the fitted point.
        rss: Residual sum of squares ‖r‖².
        status: Termination status.
        iterations: Number of LM iterations performed.
        evaluations: Number of objective evaluations (Jacobian included).
        covariance: s²(JᵀJ)⁻¹ over the free parameters, when estimable.
        damping: Final damping λ.
        message: Human-readable termination reason.
    """

    params: Any
    values: Mapping[str, float]
    residual_norm: float
    rss: float
    status: CalibrationStatus
    iterations: int
    evaluations: int
    covariance: np.ndarray | None
    damping: float
    message: str = ""

    @property
    def converged(self) -> bool:
        return self.status is CalibrationStatus.CONVERGED

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.values)

    @property
    def standard_errors(self) -> dict[str, float] | None:
        if self.covariance is None:
            return None
        diag = np.diag(self.covariance)
        return {name: float(np.sqrt(v)) if v >= 0 else float("nan") for name, v in zip(self.names, diag)}

    def raise_for_status(self) -> "CalibrationResult":
        if not self.converged:
            raise CalibrationError(f"calibration {self.status.value}: {self.message}")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "values": dict(self.values),
            "residual_norm": self.residual_norm,
            "rss": self.rss,
            "status": self.status.value,
            "iterations": self.iterations,
            "evaluations": self.evaluations,
            "damping": self.damping,
            "standard_errors": self.standard_errors,
            "message": self.message,
        }


class _Problem:
    """Maps between the free-parameter vector and the caller's representation."""

    def __init__(self, objective, initial_params, free, bounds):
        self.objective = objective
        self.template = initial_params if isinstance(initial_params, ProcessParams) else None

        if self.template is not None:
            start = {
                f.name: getattr(initial_params, f.name)
                for f in dataclasses.fields(initial_params)
            }
        elif isinstance(initial_params, Mapping):
            start = dict(initial_params)
        else:
            raise InvalidParameters(
                f"initial_params must be a mapping or process parameters, got {type(initial_params).__name__}"
            )

        names = tuple(start) if free is None else tuple(free)
        unknown = [name for name in names if name not in start]
        if unknown:
            raise InvalidParameters(f"unknown free parameters: {', '.join(unknown)}")
        if not names:
            raise InvalidParameters("no free parameters to calibrate")
        self.names = names
        self.fixed = {k: v for k, v in start.items() if k not in names}

        x0 = np.array([float(start[name]) for name in names])
        if not np.all(np.isfinite(x0)):
            raise InvalidParameters("initial parameters must be finite")

        self.lower = np.full(len(names), -np.inf)
        self.upper = np.full(len(names), np.inf)
        for name, (lo, hi) in (bounds or {}).items():
            if name not in names:
                raise InvalidParameters(f"bounds given for unknown parameter {name!r}")
            j = names.index(name)
            self.lower[j] = -np.inf if lo is None else float(lo)
            self.upper[j] = np.inf if hi is None else float(hi)
            if self.lower[j] > self.upper[j]:
                raise InvalidParameters(f"empty bounds for {name}: ({lo}, {hi})")

        self.x0 = self.project(x0)
        self._lock = threading.Lock()
        self.evaluations = 0

    def project(self, x: np.ndarray) -> np.ndarray:
        return np.clip(x, self.lower, self.upper)

    def build(self, x: np.ndarray):
        values = dict(self.fixed)
        values.update({name: float(v) for name, v in zip(self.names, x)})
        if self.template is not None:
            return self.template.replace(**values)
        return values

    def residuals(self, x: np.ndarray) -> np.ndarray:
        with self._lock:
            self.evaluations += 1
        r = np.asarray(self.objective(self.build(x)), dtype=float).ravel()
        return r

    def trial(self, x: np.ndarray) -> np.ndarray | None:
        """Residuals at ``x``, or None where the point is infeasible."""
        try:
            r = self.residuals(x)
        except InvalidParameters as exc:
            logger.debug("Rejected trial point %s: %s", x, exc)
            return None
        if not np.all(np.isfinite(r)):
            return None
        return r


def _fd_column(problem: _Problem, x: np.ndarray, r: np.ndarray, j: int) -> np.ndarray:
    if problem.lower[j] == problem.upper[j]:
        # Pinned by its bounds
        return np.zeros_like(r)
    h = FD_STEP * max(abs(x[j]), 1.0)
    # Backward difference where a forward step would leave the box
    for step in ((h, -h) if x[j] + h <= problem.upper[j] else (-h, h)):
        shifted = x.copy()
        shifted[j] += step
        if not problem.lower[j] <= shifted[j] <= problem.upper[j]:
            continue
        r_shift = problem.trial(shifted)
        if r_shift is not None:
            return (r_shift - r) / step
    raise SingularJacobian(f"no feasible finite-difference step for {problem.names[j]}")


def _finite_difference_jacobian(problem: _Problem, x: np.ndarray, r: np.ndarray, max_workers: int) -> np.ndarray:
    n = x.size
    if max_workers > 1 and n > 1:
        with ThreadPoolExecutor(max_workers=min(max_workers, n)) as executor:
            columns = list(executor.map(lambda j: _fd_column(problem, x, r, j), range(n)))
    else:
        columns = [_fd_column(problem, x, r, j) for j in range(n)]
    return np.column_stack(columns)


def _jacobian(problem, jacobian, x, r, max_workers) -> np.ndarray:
    if jacobian is None:
        J = _finite_difference_jacobian(problem, x, r, max_workers)
    else:
        J = np.atleast_2d(np.asarray(jacobian(problem.build(x)), dtype=float))
    if J.shape != (r.size, x.size):
        raise InvalidParameters(f"jacobian has shape {J.shape}, expected {(r.size, x.size)}")
    if not np.all(np.isfinite(J)):
        raise SingularJacobian("jacobian contains non-finite entries")
    return J


def _covariance(J: np.ndarray, rss: float) -> np.ndarray | None:
    m, n = J.shape
    if m <= n:
        return None
    try:
        inv = linalg.inv(J.T @ J)
    except (linalg.LinAlgError, ValueError):
        return None
    cov = rss / (m - n) * inv
    cov.setflags(write=False)
    return cov


def calibrate(
    objective: Callable[[Any], Sequence[float]],
    initial_params,
    bounds: Mapping[str, tuple[float | None, float | None]] | None = None,
    *,
    free: Sequence[str] | None = None,
    jacobian: Callable[[Any], Any] | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ftol: float = DEFAULT_FTOL,
    xtol: float = DEFAULT_XTOL,
    gtol: float = DEFAULT_GTOL,
    initial_damping: float = DEFAULT_INITIAL_DAMPING,
    max_workers: int = 1,
) -> CalibrationResult:
    """Fit parameters by bounded Levenberg-Marquardt.

    Args:
        objective: Residual function; receives a mapping of parameter values
            or, when ``initial_params`` is a parameter dataclass, the rebuilt
            dataclass.
        initial_params: Starting point (mapping name -> value, or ProcessParams).
        bounds: ``{name: (lower, upper)}``; ``None`` leaves a side unbounded.
        free: Names to vary (default: all); the rest stay fixed.
        jacobian: Analytic Jacobian with the same argument as ``objective``;
            finite differences when None.
        max_iterations: Iteration cap (status MAX_ITERATIONS when reached).
        ftol: Residual-norm and relative cost-reduction tolerance.
        xtol: Relative step-norm tolerance.
        gtol: Gradient infinity-norm tolerance.
        initial_damping: Starting λ.
        max_workers: Threads for finite-difference columns.

    Raises:
        SingularJacobian: Non-finite Jacobian, or normal equations unsolvable
            even at maximum damping.
        InvalidParameters: Malformed parameters or bounds.
    """
    problem = _Problem(objective, initial_params, free, bounds)
    x = problem.x0
    lam = float(initial_damping)
    iterations = 0

    def result(status: CalibrationStatus, r, J, message: str) -> CalibrationResult:
        rss = float(r @ r) if r is not None else float("inf")
        logger.info(
            "Calibration %s after %d iterations (%d evaluations): rss=%.6g",
            status.value, iterations, problem.evaluations, rss,
        )
        return CalibrationResult(
            params=problem.build(x),
            values={name: float(v) for name, v in zip(problem.names, x)},
            residual_norm=float(np.sqrt(rss)),
            rss=rss,
            status=status,
            iterations=iterations,
            evaluations=problem.evaluations,
            covariance=_covariance(J, rss) if J is not None and r is not None else None,
            damping=lam,
            message=message,
        )

    r = problem.residuals(x)
    if not np.all(np.isfinite(r)):
        return result(CalibrationStatus.DIVERGED, None, None, "non-finite residuals at the starting point")
    cost = 0.5 * float(r @ r)
    J = None

    while True:
        J = _jacobian(problem, jacobian, x, r, max_workers)
        if np.sqrt(2.0 * cost) < ftol:
            return result(CalibrationStatus.CONVERGED, r, J, "residual norm below ftol")
        g = J.T @ r
        # Parameters pinned at a bound with descent pointing outward stay fixed
        active = ((x <= problem.lower) & (g > 0)) | ((x >= problem.upper) & (g < 0))
        free = ~active
        if not free.any() or np.max(np.abs(g[free])) < gtol:
            return result(CalibrationStatus.CONVERGED, r, J, "projected gradient below gtol")
        if iterations >= max_iterations:
            return result(CalibrationStatus.MAX_ITERATIONS, r, J, f"reached {max_iterations} iterations")

        iterations += 1
        A = (J.T @ J)[np.ix_(free, free)]
        identity = np.eye(A.shape[0])
        while True:
            delta = np.zeros_like(x)
            try:
                delta[free] = linalg.solve(A + lam * identity, -g[free], assume_a="sym")
            except (linalg.LinAlgError, ValueError):
                delta = None
            if delta is None or not np.all(np.isfinite(delta)):
                if lam >= MAX_DAMPING:
                    raise SingularJacobian(f"normal equations singular at damping {lam:.3g}")
                lam = min(lam * 2.0, MAX_DAMPING)
                continue

            x_new = problem.project(x + delta)
            step = x_new - x
            if np.linalg.norm(step) <= xtol * (np.linalg.norm(x) + xtol):
                return result(CalibrationStatus.CONVERGED, r, J, "step norm below xtol")

            r_new = problem.trial(x_new)
            cost_new = 0.5 * float(r_new @ r_new) if r_new is not None else np.inf
            if cost_new < cost:
                reduction = (cost - cost_new) / cost
                x, r, cost = x_new, r_new, cost_new
                lam = max(lam / 3.0, MIN_DAMPING)
                if reduction < ftol:
                    J = _jacobian(problem, jacobian, x, r, max_workers)
                    return result(CalibrationStatus.CONVERGED, r, J, "relative cost reduction below ftol")
                break

            lam *= 2.0
            if lam > MAX_DAMPING:
                logger.warning("Calibration damping saturated at %.3g without an acceptable step", lam)
                return result(CalibrationStatus.DIVERGED, r, J, "damping saturated")
