import logging
import sys

import click
import numpy as np

from stochpath.config import Settings
from stochpath.errors import StochPathError
from stochpath.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _parse_param(values: tuple[str, ...]) -> dict[str, float]:
    params = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got {item!r}", param_hint="--param")
        try:
            params[name.strip()] = float(raw)
        except ValueError:
            raise click.BadParameter(f"{name} must be numeric, got {raw!r}", param_hint="--param") from None
    return params


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """stochpath - stochastic process simulation and calibration"""
    settings = Settings()
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_file)
    ctx.obj = settings


@cli.command()
@click.argument("kind")
@click.option("--steps", "-n", type=int, default=252, show_default=True, help="Number of time steps")
@click.option("--horizon", "-T", type=float, default=1.0, show_default=True, help="Time horizon")
@click.option("--paths", "-m", "n_paths", type=int, default=1000, show_default=True, help="Number of paths")
@click.option("--seed", "-s", type=int, default=None, help="Base seed (default: from settings)")
@click.option("--scheme", type=click.Choice(["euler", "milstein", "exact"]), default=None,
              help="Discretisation scheme (default: per process)")
@click.option("--param", "-p", "raw_params", multiple=True, help="Process parameter as name=value")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write the ensemble to this CSV file")
@click.pass_obj
def simulate(settings: Settings, kind: str, steps: int, horizon: float, n_paths: int, seed: int | None,
             scheme: str | None, raw_params: tuple[str, ...], output: str | None):
    """Simulate an ensemble of KIND paths and summarise terminal values."""
    from stochpath.ensemble import simulate_ensemble
    from stochpath.estimators import sample_moments
    from stochpath.grid import TimeGrid
    from stochpath.simulation import make_params, prepare_noise

    base_seed = settings.simulation_default_seed if seed is None else seed
    try:
        params = make_params(kind, **_parse_param(raw_params))
        grid = TimeGrid.uniform(0.0, horizon, steps)
        noise = prepare_noise(
            params,
            grid,
            cholesky_max_steps=settings.fgn_cholesky_max_steps,
            eigenvalue_tolerance=settings.fgn_eigenvalue_tolerance,
        )
        ensemble = simulate_ensemble(
            params.kind, params, grid, n_paths, base_seed,
            scheme=scheme, max_workers=settings.simulation_max_workers, noise=noise,
        )
    except StochPathError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"{params.kind.value}: {n_paths} paths x {steps} steps, horizon {horizon}, seed {base_seed}")
    click.echo(f"  scheme: {ensemble.scheme.value}")
    terminal = ensemble.terminal_values()
    if terminal.size > 1:
        summary = sample_moments(terminal)
        click.echo(f"  terminal mean: {summary.mean:.6g}")
        click.echo(f"  terminal std:  {summary.std:.6g}")
        click.echo(f"  terminal min:  {summary.minimum:.6g}")
        click.echo(f"  terminal max:  {summary.maximum:.6g}")
    else:
        click.echo(f"  terminal value: {terminal[0]:.6g}")
    for name, count in sorted(ensemble.diagnostics.items()):
        click.echo(f"  {name}: {count}/{n_paths} paths")

    if output:
        ensemble.to_frame().to_csv(output)
        click.echo(f"Wrote {output}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--column", "-c", default=None, help="Value column (default: first numeric)")
@click.option("--method", type=click.Choice(["rs", "aggvar", "variogram"]), default="rs",
              show_default=True, help="Hurst estimator")
@click.pass_obj
def hurst(settings: Settings, file: str, column: str | None, method: str):
    """Estimate the Hurst exponent of a series in FILE."""
    from stochpath.data import CsvPriceSource
    from stochpath.estimators import estimate_hurst

    try:
        values = CsvPriceSource(file, column=column).load_values()
        estimate = estimate_hurst(values, method=method, min_samples=settings.hurst_min_samples)
    except StochPathError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"H = {estimate.hurst:.4f} (R² = {estimate.r_squared:.4f}, {len(estimate.windows)} windows, "
               f"method {estimate.method.value})")


@cli.command()
@click.argument("model", type=click.Choice(["gbm", "ou", "cir"]))
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--column", "-c", default=None, help="Value column (default: first numeric)")
@click.option("--dt", type=float, default=1 / 252, show_default=True, help="Sampling interval")
@click.pass_obj
def fit(settings: Settings, model: str, file: str, column: str | None, dt: float):
    """Calibrate MODEL parameters to the series in FILE."""
    from stochpath.calibration import fit_cir, fit_gbm, fit_ou
    from stochpath.data import CsvPriceSource

    fitters = {"gbm": fit_gbm, "ou": fit_ou, "cir": fit_cir}
    try:
        values = CsvPriceSource(file, column=column).load_values()
        result = fitters[model](values, dt, **settings.calibration_options())
    except StochPathError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"{model}: {result.status.value} after {result.iterations} iterations "
               f"({result.evaluations} evaluations)")
    errors = result.standard_errors or {}
    for name, value in result.params.to_dict().items():
        line = f"  {name}: {value:.6g}"
        if name in errors and np.isfinite(errors[name]):
            line += f" ± {errors[name]:.2g}"
        click.echo(line)
    click.echo(f"  residual norm: {result.residual_norm:.6g}")
    if not result.converged:
        sys.exit(2)


if __name__ == "__main__":
    cli()
