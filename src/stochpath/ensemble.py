"""Monte Carlo ensemble engine.

Fans one simulator out over ``n_paths`` independently seeded noise streams.
Per-path seeds are derived from ``(base_seed, index)`` and results are
written into the ensemble matrix by index, so the output is bit-identical
for any worker count or completion order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np
import pandas as pd

from stochpath.errors import InvalidEnsembleSize, InvalidParameters
from stochpath.grid import TimeGrid, as_grid
from stochpath.processes import EventSequence, ProcessKind, ProcessParams, Scheme
from stochpath.random import NoiseStream, derive_seed
from stochpath.simulation import check_noise, parse_kind, prepare_noise, simulate

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class PathEnsemble:
    """``n_paths × (n + 1)`` row-major matrix of paths on one grid."""

    grid: TimeGrid
    paths: np.ndarray
    kind: ProcessKind
    scheme: Scheme
    base_seed: Any
    seeds: tuple[int, ...]
    diagnostics: Mapping[str, int]

    @property
    def n_paths(self) -> int:
        return self.paths.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        return self.paths.shape

    def row(self, index: int) -> np.ndarray:
        return self.paths[index]

    def terminal_values(self) -> np.ndarray:
        return self.paths[:, -1]

    def to_frame(self) -> pd.DataFrame:
        """One row per path, one column per grid time."""
        return pd.DataFrame(
            self.paths,
            columns=pd.Index(self.grid.points, name="t"),
            index=pd.RangeIndex(self.n_paths, name="path"),
        )


def _check_size(n_paths) -> int:
    if isinstance(n_paths, bool) or not isinstance(n_paths, (int, np.integer)):
        raise InvalidEnsembleSize(f"n_paths must be an integer, got {n_paths!r}")
    if n_paths < 1:
        raise InvalidEnsembleSize(f"n_paths must be at least 1, got {n_paths}")
    return int(n_paths)


def _row(result) -> np.ndarray:
    if isinstance(result, EventSequence):
        return result.counts_on()
    return result.values


# Diagnostics that mark a path as degraded; counts such as jump_count do not.
WARNING_DIAGNOSTICS = ("feller_violated", "clamped_steps", "floored_steps", "nonpositive_values", "absorbed_at")


def _flagged(result) -> list[str]:
    flags = []
    for key in WARNING_DIAGNOSTICS:
        value = result.diagnostics.get(key)
        if value is None or value is False:
            continue
        if value is True or not isinstance(value, (int, np.integer)) or key == "absorbed_at" or value > 0:
            flags.append(key)
    return flags


def simulate_ensemble(
    simulator: ProcessKind | str,
    params: ProcessParams,
    grid: TimeGrid,
    n_paths: int,
    base_seed,
    *,
    scheme: Scheme | str | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    noise: Any = None,
) -> PathEnsemble:
    """Simulate ``n_paths`` independent paths of ``params`` on ``grid``.

    Args:
        simulator: Process kind; must match ``params.kind``.
        params: Validated parameter set shared by every path.
        grid: Time grid shared by every path.
        n_paths: Number of paths (>= 1).
        base_seed: Root seed; path ``i`` uses ``derive_seed(base_seed, i)``.
        scheme: Discretisation scheme (default: the variant's default).
        max_workers: Thread-pool size; 1 runs inline.
        noise: Prebuilt shared noise factor (default: built once here).

    Returns:
        PathEnsemble with rows ordered by path index. Counting processes
        contribute their counting path N(t).
    """
    # --- Eager validation: nothing is dispatched on bad input ------------
    n_paths = _check_size(n_paths)
    kind = parse_kind(simulator)
    if not isinstance(params, ProcessParams) or params.kind is not kind:
        raise InvalidParameters(
            f"parameters {type(params).__name__} do not describe a {kind.value} process"
        )
    grid = as_grid(grid)
    scheme = params.resolve_scheme(scheme)
    if noise is None:
        noise = prepare_noise(params, grid)
    else:
        check_noise(params, grid, noise)

    seeds = tuple(derive_seed(base_seed, i) for i in range(n_paths))
    paths = np.empty((n_paths, len(grid)))
    flag_counts: dict[str, int] = {}

    def run(index: int):
        return simulate(params, grid, NoiseStream(seeds[index]), scheme=scheme, noise=noise)

    def store(index: int, result) -> None:
        paths[index] = _row(result)
        for flag in _flagged(result):
            flag_counts[flag] = flag_counts.get(flag, 0) + 1

    workers = max(1, min(int(max_workers or 1), n_paths))
    logger.debug(
        "Simulating %d %s paths (%d steps, scheme=%s) with %d workers",
        n_paths, kind.value, grid.steps, scheme.value, workers,
    )

    if workers == 1:
        for i in range(n_paths):
            store(i, run(i))
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(run, i): i for i in range(n_paths)}
            try:
                for future in as_completed(futures):
                    store(futures[future], future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    if flag_counts:
        logger.warning(
            "Ensemble %s: %s",
            kind.value,
            ", ".join(f"{name} on {count}/{n_paths} paths" for name, count in sorted(flag_counts.items())),
        )

    paths.setflags(write=False)
    return PathEnsemble(
        grid=grid,
        paths=paths,
        kind=kind,
        scheme=scheme,
        base_seed=base_seed,
        seeds=seeds,
        diagnostics=MappingProxyType(dict(sorted(flag_counts.items()))),
    )


def ensemble_moments(ensemble: PathEnsemble) -> tuple[np.ndarray, np.ndarray]:
    """Cross-sectional mean and unbiased variance at each grid time."""
    ddof = 1 if ensemble.n_paths > 1 else 0
    return ensemble.paths.mean(axis=0), ensemble.paths.var(axis=0, ddof=ddof)
