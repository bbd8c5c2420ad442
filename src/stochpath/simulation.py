"""Single-path simulation entry point.

Dispatches on the closed ``ProcessKind`` set to the per-variant simulators
and builds the shared, read-only noise factors an ensemble reuses.
"""

import logging
from typing import Any

import numpy as np

from stochpath.errors import InvalidParameters
from stochpath.grid import TimeGrid, as_grid
from stochpath.noise import (
    CHOLESKY_MAX_STEPS,
    EIGENVALUE_TOLERANCE,
    CorrelatedIncrements,
    FgnMethod,
    FractionalGaussianNoise,
)
from stochpath.processes import EventSequence, Path, ProcessKind, ProcessParams, Scheme
from stochpath.processes.brownian import BrownianParams, GBMParams, simulate_bm, simulate_gbm
from stochpath.processes.cir import CIRParams, simulate_cir
from stochpath.processes.counting import HawkesParams, PoissonParams, simulate_hawkes, simulate_poisson
from stochpath.processes.fractional import (
    FBMParams,
    FJacobiParams,
    FOUParams,
    JumpFOUParams,
    simulate_fbm,
    simulate_fjacobi,
    simulate_fou,
    simulate_jump_fou,
)
from stochpath.processes.heston import HestonParams, heston_noise, simulate_heston
from stochpath.processes.jump import KouParams, MertonParams, simulate_kou, simulate_merton
from stochpath.processes.ou import OUParams, simulate_ou
from stochpath.random import NoiseStream

logger = logging.getLogger(__name__)

SIMULATORS = {
    ProcessKind.BM: simulate_bm,
    ProcessKind.GBM: simulate_gbm,
    ProcessKind.OU: simulate_ou,
    ProcessKind.CIR: simulate_cir,
    ProcessKind.HESTON: simulate_heston,
    ProcessKind.MERTON: simulate_merton,
    ProcessKind.KOU: simulate_kou,
    ProcessKind.FBM: simulate_fbm,
    ProcessKind.FOU: simulate_fou,
    ProcessKind.FJACOBI: simulate_fjacobi,
    ProcessKind.JUMP_FOU: simulate_jump_fou,
    ProcessKind.POISSON: simulate_poisson,
    ProcessKind.HAWKES: simulate_hawkes,
}

PARAMETER_TYPES: dict[ProcessKind, type[ProcessParams]] = {
    ProcessKind.BM: BrownianParams,
    ProcessKind.GBM: GBMParams,
    ProcessKind.OU: OUParams,
    ProcessKind.CIR: CIRParams,
    ProcessKind.HESTON: HestonParams,
    ProcessKind.MERTON: MertonParams,
    ProcessKind.KOU: KouParams,
    ProcessKind.FBM: FBMParams,
    ProcessKind.FOU: FOUParams,
    ProcessKind.FJACOBI: FJacobiParams,
    ProcessKind.JUMP_FOU: JumpFOUParams,
    ProcessKind.POISSON: PoissonParams,
    ProcessKind.HAWKES: HawkesParams,
}

FRACTIONAL_KINDS = (ProcessKind.FBM, ProcessKind.FOU, ProcessKind.FJACOBI, ProcessKind.JUMP_FOU)
COUNTING_KINDS = (ProcessKind.POISSON, ProcessKind.HAWKES)


def parse_kind(value: ProcessKind | str) -> ProcessKind:
    try:
        return ProcessKind(value)
    except ValueError:
        known = ", ".join(k.value for k in ProcessKind)
        raise InvalidParameters(f"unknown process kind {value!r} (known: {known})") from None


def make_params(kind: ProcessKind | str, **values: float) -> ProcessParams:
    """Build the parameter set for ``kind``; unknown fields are rejected."""
    cls = PARAMETER_TYPES[parse_kind(kind)]
    try:
        return cls(**values)
    except TypeError as exc:
        raise InvalidParameters(str(exc)) from None


def prepare_noise(
    params: ProcessParams,
    grid: TimeGrid,
    fgn_method: FgnMethod | str = FgnMethod.AUTO,
    cholesky_max_steps: int = CHOLESKY_MAX_STEPS,
    eigenvalue_tolerance: float = EIGENVALUE_TOLERANCE,
) -> Any:
    """Shared noise factor for ``params`` on ``grid``, or None if not needed."""
    grid = as_grid(grid)
    if params.kind in FRACTIONAL_KINDS:
        return FractionalGaussianNoise(
            params.hurst,
            grid,
            method=fgn_method,
            cholesky_max_steps=cholesky_max_steps,
            eigenvalue_tolerance=eigenvalue_tolerance,
        )
    if params.kind is ProcessKind.HESTON:
        return heston_noise(params)
    return None


def check_noise(params: ProcessParams, grid: TimeGrid, noise: Any) -> None:
    """Reject a prebuilt noise factor that does not fit ``params`` on ``grid``."""
    if noise is None:
        return
    if params.kind in FRACTIONAL_KINDS:
        if not isinstance(noise, FractionalGaussianNoise):
            raise InvalidParameters(f"expected FractionalGaussianNoise, got {type(noise).__name__}")
        if noise.hurst != params.hurst or noise.grid != as_grid(grid):
            raise InvalidParameters("fractional noise was built for a different hurst or grid")
    elif params.kind is ProcessKind.HESTON:
        if not isinstance(noise, CorrelatedIncrements) or not np.allclose(
            noise.correlation, params.correlation()
        ):
            raise InvalidParameters("noise does not match the Heston correlation")
    else:
        raise InvalidParameters(f"{params.kind.value} takes no prebuilt noise")


def simulate(
    params: ProcessParams,
    grid: TimeGrid,
    stream: NoiseStream,
    scheme: Scheme | str | None = None,
    noise: Any = None,
) -> Path | EventSequence:
    """Simulate one path of the process described by ``params``."""
    if not isinstance(params, ProcessParams):
        raise InvalidParameters(f"expected a process parameter set, got {type(params).__name__}")
    return SIMULATORS[params.kind](params, grid, stream, scheme=scheme, noise=noise)
