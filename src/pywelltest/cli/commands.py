"""CLI commands for pywelltest."""

import logging
import math
import queue
from pathlib import Path
from typing import Annotated, Optional

import typer
from tqdm import tqdm

from ..config import WellTestConfig, generate_default_config

app = typer.Typer(
    name="pywelltest",
    help="Composite shale-oil fractured horizontal well test analysis",
    add_completion=False,
)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option(
            "-v", "--verbose",
            help="Show progress log messages",
        )
    ] = False,
) -> None:
    """Type curves and automatic matching for fractured horizontal wells."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


def _load_config(config: Path | None) -> WellTestConfig:
    """Load a config file or return defaults, exiting on invalid values."""
    if config is None:
        return WellTestConfig()
    typer.echo(f"Loading config from {config}")
    try:
        return WellTestConfig.from_yaml(config)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_variant(value: str):
    from ..core.models import ModelVariant

    try:
        return ModelVariant.parse(value)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_assignments(items: list[str] | None) -> dict[str, float]:
    """Parse ['kf=0.01', 'S=2'] into a dict."""
    values: dict[str, float] = {}
    for item in items or []:
        name, sep, text = item.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected name=value, got '{item}'")
        try:
            values[name.strip()] = float(text)
        except ValueError:
            raise typer.BadParameter(f"Invalid number in '{item}'") from None
    return values


def _parse_sweep(item: str) -> tuple[str, list[float]]:
    """Parse 'kf=0.001,0.01,0.1' into a name and a value list."""
    name, sep, text = item.partition("=")
    if not sep or not name.strip():
        raise typer.BadParameter(f"Expected name=v1,v2,..., got '{item}'")
    try:
        values = [float(v) for v in text.split(",") if v.strip()]
    except ValueError:
        raise typer.BadParameter(f"Invalid number in '{item}'") from None
    if not values:
        raise typer.BadParameter(f"No values given in '{item}'")
    return name.strip(), values


def _check_names(names, variant) -> None:
    unknown = [n for n in names if n not in variant.active_parameters]
    if unknown:
        typer.echo(
            f"Error: Unknown parameter(s) for {variant.value}: {', '.join(unknown)}. "
            f"Valid: {', '.join(variant.active_parameters)}",
            err=True,
        )
        raise typer.Exit(1)


@app.command()
def init(
    output: Annotated[
        Path,
        typer.Option(
            "-o", "--output",
            help="Output file path",
        )
    ] = Path("pywelltest.yaml"),
) -> None:
    """Generate a default configuration file.

    Creates a YAML config file with all available settings and their defaults.

    Examples:
        pywelltest init -o my_config.yaml
    """
    if output.exists():
        overwrite = typer.confirm(f"{output} already exists. Overwrite?")
        if not overwrite:
            raise typer.Exit(0)

    generate_default_config(output)
    typer.echo(f"Config file created: {output}")
    typer.echo("\nEdit this file to customize settings, then use:")
    typer.echo(f"  pywelltest fit data.csv model_2 --config {output}")


@app.command()
def models(
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file (reservoir defaults)",
            exists=True,
        )
    ] = None,
) -> None:
    """List model variants and their default parameters."""
    from ..core.models import ModelVariant, default_fit_parameters

    wt_config = _load_config(config)

    for variant in ModelVariant:
        typer.echo(f"{variant.value}: {variant.display_name}")
        for param in default_fit_parameters(variant, wt_config.reservoir):
            flag = "*" if param.is_fit else " "
            unit = f" {param.unit}" if param.unit else ""
            typer.echo(
                f"  {flag} {param.name:<8} {param.value:<10g}{unit:<8} "
                f"[{param.min_value:g}, {param.max_value:g}]  {param.label}"
            )
        typer.echo("")

    typer.echo("* = fitted by default")


@app.command()
def curve(
    variant: Annotated[
        str,
        typer.Argument(help="Model variant: model_1 .. model_6 (or 1 .. 6)"),
    ],
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file",
            exists=True,
        )
    ] = None,
    set_values: Annotated[
        Optional[list[str]],
        typer.Option(
            "--set",
            help="Parameter override name=value (repeatable)",
        )
    ] = None,
    vary: Annotated[
        Optional[str],
        typer.Option(
            "--vary",
            help="Sensitivity sweep name=v1,v2,...",
        )
    ] = None,
    points: Annotated[
        int,
        typer.Option(
            "-n", "--points",
            help="Number of time points (at least 5)",
        )
    ] = 100,
    max_time: Annotated[
        float,
        typer.Option(
            "--max-time",
            help="Last time of the grid in hours",
        )
    ] = 1000.0,
    fast: Annotated[
        bool,
        typer.Option(
            "--fast",
            help="Use the fast Stehfest setting",
        )
    ] = False,
    workers: Annotated[
        Optional[int],
        typer.Option(
            "-w", "--workers",
            help="Parallel workers for --vary (default: auto)",
        )
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "-o", "--output",
            help="Write the curve(s) to this CSV file",
        )
    ] = None,
) -> None:
    """Compute a theoretical pressure / derivative curve.

    Examples:
        pywelltest curve model_2 --set kf=0.01 --set S=2
        pywelltest curve 4 --vary reD=5,10,20 -o sweep.csv
    """
    from ..batch.sensitivity import SensitivityAnalyzer, SensitivityConfig
    from ..core.forward import CompositeWellModel
    from ..core.models import default_parameters, sync_dependent_parameters
    from ..export import save_curves

    wt_config = _load_config(config)
    model_variant = _parse_variant(variant)

    overrides = _parse_assignments(set_values)
    _check_names(overrides, model_variant)
    params = default_parameters(model_variant, wt_config.reservoir)
    params.update(overrides)
    params = sync_dependent_parameters(params)

    sweep_name, sweep_values = _parse_sweep(vary) if vary else (None, None)
    if sweep_name is not None:
        _check_names([sweep_name], model_variant)

    sens_config = SensitivityConfig(
        points=points,
        max_time=max_time,
        workers=workers,
        high_precision=not fast,
    )
    analyzer = SensitivityAnalyzer(sens_config, wt_config.solver)

    typer.echo(f"Computing {model_variant.display_name}")
    if sweep_name is None:
        model = CompositeWellModel(wt_config.solver)
        curves = {
            "model": model.compute_curve(
                model_variant, params, sens_config.time_grid(), high_precision=not fast
            )
        }
    else:
        typer.echo(f"Sensitivity parameter: {sweep_name}")
        result = analyzer.run(model_variant, sweep_name, sweep_values, base=params)
        for value, error in result.errors:
            typer.echo(f"  Error at {value:g}: {error}", err=True)
        curves = {
            result.label(i): c for i, c in enumerate(result.curves) if c is not None
        }
        if not curves:
            raise typer.Exit(1)

    last_label, last_curve = list(curves.items())[-1]
    if sweep_name is not None:
        typer.echo(f"\n{last_label}")
    typer.echo("t(h)\t\tDp(MPa)\t\tdDp(MPa)")
    for t, p, d in zip(*last_curve):
        typer.echo(f"{t:.4e}\t{p:.4e}\t{d:.4e}")

    if output:
        save_curves(curves, output)
        typer.echo(f"\nCurve(s) saved to: {output}")


@app.command()
def fit(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Observed data file (CSV or whitespace-delimited text)",
            exists=True,
        )
    ],
    variant: Annotated[
        str,
        typer.Argument(help="Model variant: model_1 .. model_6 (or 1 .. 6)"),
    ],
    config: Annotated[
        Optional[Path],
        typer.Option(
            "-c", "--config",
            help="YAML config file",
            exists=True,
        )
    ] = None,
    set_values: Annotated[
        Optional[list[str]],
        typer.Option(
            "--set",
            help="Initial value override name=value (repeatable)",
        )
    ] = None,
    fit_names: Annotated[
        Optional[list[str]],
        typer.Option(
            "--fit",
            help="Parameter to fit (repeatable; replaces the default selection)",
        )
    ] = None,
    weight: Annotated[
        Optional[float],
        typer.Option(
            "--weight",
            help="Pressure weight 0..1; derivative gets 1 - weight (overrides config)",
        )
    ] = None,
    test_type: Annotated[
        Optional[str],
        typer.Option(
            "--test-type",
            help="drawdown or buildup (overrides config)",
        )
    ] = None,
    initial_pressure: Annotated[
        Optional[float],
        typer.Option(
            "--pi",
            help="Initial reservoir pressure for drawdown tests, MPa (overrides config)",
        )
    ] = None,
    skip_rows: Annotated[
        Optional[int],
        typer.Option(
            "--skip-rows",
            help="Header rows to skip (overrides config)",
        )
    ] = None,
    max_iterations: Annotated[
        Optional[int],
        typer.Option(
            "--max-iterations",
            help="Iteration cap (overrides config)",
        )
    ] = None,
    cancel_after: Annotated[
        Optional[int],
        typer.Option(
            "--cancel-after",
            help="Cancel the fit after this many accepted iterations",
        )
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "-o", "--output",
            help="Write the fit result to this JSON file",
        )
    ] = None,
    params_output: Annotated[
        Optional[Path],
        typer.Option(
            "--params-out",
            help="Write fitted parameters to this file (.csv or text)",
        )
    ] = None,
) -> None:
    """Fit a model to observed pressure test data.

    Example:
        pywelltest fit buildup.csv model_2 --test-type buildup --fit kf --fit S
    """
    from ..core.fitting import FitProgress, FittingConfig, IterationUpdate
    from ..core.forward import CompositeWellModel
    from ..core.models import default_fit_parameters
    from ..core.session import FitCompleted, FitSession
    from ..data import load_observed_data
    from ..export import FitResultJsonExporter, ParameterExporter

    wt_config = _load_config(config)
    model_variant = _parse_variant(variant)

    if test_type is not None:
        if test_type not in ("drawdown", "buildup"):
            typer.echo(f"Error: Invalid test type '{test_type}'. Must be drawdown or buildup.", err=True)
            raise typer.Exit(1)
        wt_config.observed.test_type = test_type  # type: ignore
    if initial_pressure is not None:
        wt_config.observed.initial_pressure = initial_pressure
    if skip_rows is not None:
        wt_config.observed.skip_rows = skip_rows
    if max_iterations is not None:
        wt_config.fitting.max_iterations = max_iterations
    if weight is not None:
        wt_config.fitting.weight = weight

    typer.echo(f"Loading data from {input_file}...")
    try:
        observed = load_observed_data(input_file, wt_config.observed)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"  {len(observed)} points, t = {observed.time.min():g} .. {observed.time.max():g} h")

    overrides = _parse_assignments(set_values)
    _check_names(overrides, model_variant)
    if fit_names:
        _check_names(fit_names, model_variant)

    fit_parameters = []
    for param in default_fit_parameters(model_variant, wt_config.reservoir):
        if param.name in overrides:
            param = param.with_value(overrides[param.name])
        if fit_names:
            param.is_fit = param.name in fit_names
        fit_parameters.append(param)

    session = FitSession(
        CompositeWellModel(wt_config.solver),
        FittingConfig.from_welltest_config(wt_config),
    )
    session.set_observed_data(observed)

    names = [p.name for p in fit_parameters if p.is_fit]
    typer.echo(f"Fitting {model_variant.display_name}: {', '.join(names) or '(nothing)'}")

    validation = session.start_fit(model_variant, fit_parameters, wt_config.fitting.weight)
    for issue in validation.issues:
        typer.echo(f"  {issue}", err=issue.severity.name == "ERROR")
    if validation.has_errors and not all(i.code == "FV004" for i in validation.errors()):
        raise typer.Exit(1)

    completed = None
    accepted = 0
    with tqdm(total=wt_config.fitting.max_iterations, desc="Fitting", unit="it") as bar:
        while completed is None:
            try:
                event = session.next_event(timeout=0.5)
            except queue.Empty:
                continue
            if isinstance(event, FitProgress):
                bar.n = event.iteration
                bar.set_postfix(mse=f"{event.mse:.3e}")
                bar.refresh()
            elif isinstance(event, IterationUpdate) and not event.is_final and event.iteration > 0:
                accepted += 1
                if cancel_after is not None and accepted >= cancel_after:
                    session.cancel()
            elif isinstance(event, FitCompleted):
                completed = event
    session.shutdown()

    if completed.result is None:
        typer.echo(f"Error: Fit failed: {completed.error}", err=True)
        raise typer.Exit(1)

    result = completed.result
    typer.echo("\nFit Results:")
    typer.echo(f"  Outcome: {result.outcome.value}")
    typer.echo(f"  Iterations: {result.iterations}")
    if not math.isnan(result.mse):
        typer.echo(f"  MSE: {result.mse:.4e}")
    for param in result.parameters:
        if param.is_fit:
            unit = f" {param.unit}" if param.unit else ""
            typer.echo(f"  {param.name}: {param.value:.6g}{unit}")

    if output:
        FitResultJsonExporter(wt_config).save(result, output)
        typer.echo(f"\nResult saved to: {output}")
    if params_output:
        ParameterExporter().save(result.parameters, params_output)
        typer.echo(f"Parameters saved to: {params_output}")
