"""CLI entry point for rtcast."""

import os

# Prevent JAX from pre-allocating 75% of GPU memory.
# Allocate on demand instead, allowing other processes to share the GPU.
os.environ.setdefault("XLA_PYTHON_CLIENT_PREALLOCATE", "false")

import logging
import math
from pathlib import Path

import click


def _setup_logging(log_file: str | None, verbose: bool) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=handlers,
    )


def _model_options(f):
    """Options shared by the estimate and regional commands."""
    options = [
        click.option("--gt-mean", type=float, default=3.6, help="Generation time mean (days)."),
        click.option("--gt-sd", type=float, default=3.1, help="Generation time sd (days)."),
        click.option("--gt-max", type=int, default=15, help="Generation time max (days)."),
        click.option("--incubation-mean", type=float, default=None,
                     help="Incubation period mean (days); omit for none."),
        click.option("--incubation-sd", type=float, default=1.5, help="Incubation period sd."),
        click.option("--incubation-max", type=int, default=15, help="Incubation period max."),
        click.option("--delay-mean", type=float, default=None,
                     help="Reporting delay mean (days); omit for none."),
        click.option("--delay-sd", type=float, default=2.0, help="Reporting delay sd."),
        click.option("--delay-max", type=int, default=15, help="Reporting delay max."),
        click.option("--rt-process", type=click.Choice(["gp", "rw", "breakpoints", "fixed"]),
                     default="gp", help="Rt process variant."),
        click.option("--rt-mean", type=float, default=1.0, help="Initial Rt prior mean."),
        click.option("--rt-sd", type=float, default=1.0, help="Initial Rt prior sd."),
        click.option("--future", type=str, default="latest",
                     help="Forecast Rt policy: project, latest or days before last data."),
        click.option("--population", type=float, default=None,
                     help="Population for susceptible depletion."),
        click.option("--backcalc", is_flag=True, help="Use backcalculation instead of Rt."),
        click.option("--horizon", type=int, default=7, help="Forecast days."),
        click.option("--family", type=click.Choice(["negbin", "poisson"]), default="negbin",
                     help="Observation family."),
        click.option("--no-week-effect", is_flag=True, help="Disable day-of-week effects."),
        click.option("--method", type=click.Choice(["sampling", "vb", "laplace"]),
                     default="sampling", help="Posterior method."),
        click.option("--samples", type=int, default=2000, help="Total posterior draws."),
        click.option("--warmup", type=int, default=250, help="Warm-up iterations per chain."),
        click.option("--chains", type=int, default=4, help="Number of chains."),
        click.option("--cores", type=int, default=1, help="Processes for chains."),
        click.option("--max-time", type=float, default=math.inf,
                     help="Wall-clock limit (seconds)."),
        click.option("--seed", type=int, default=0, help="Random seed."),
        click.option("--output-dir", type=click.Path(), default="output",
                     help="Output directory."),
        click.option("--run-date", type=str, default=None,
                     help="Run date subdirectory (default: today)."),
        click.option("--return-samples", is_flag=True, help="Also write individual draws."),
        click.option("--log-file", type=click.Path(), default=None, help="Also log to file."),
        click.option("--verbose", is_flag=True, help="Debug logging."),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _estimate_kwargs(opts: dict) -> dict:
    """Map CLI options onto estimate() keyword arguments."""
    from rtcast.config import (
        Breakpoints, Fixed, GaussianProcess, ObservationConfig, RandomWalk,
        RtConfig, RtPrior, SamplerConfig,
    )
    from rtcast.delays.distributions import DelaySpec, DelayStage

    generation_time = DelaySpec((
        DelayStage.gamma_from_mean_sd(opts["gt_mean"], opts["gt_sd"], opts["gt_max"]),
    ))
    stages = []
    if opts["incubation_mean"] is not None:
        stages.append(DelayStage.lognormal_from_mean_sd(
            opts["incubation_mean"], opts["incubation_sd"], opts["incubation_max"]
        ))
    if opts["delay_mean"] is not None:
        stages.append(DelayStage.lognormal_from_mean_sd(
            opts["delay_mean"], opts["delay_sd"], opts["delay_max"]
        ))

    rt = None
    if not opts["backcalc"]:
        process = {
            "gp": GaussianProcess,
            "rw": RandomWalk,
            "breakpoints": Breakpoints,
            "fixed": Fixed,
        }[opts["rt_process"]]()
        future = opts["future"]
        rt = RtConfig(
            prior=RtPrior(opts["rt_mean"], opts["rt_sd"]),
            process=process,
            future=int(future) if future.isdigit() else future,
            population=opts["population"],
        )

    return {
        "generation_time": generation_time,
        "delays": DelaySpec(tuple(stages)),
        "rt": rt,
        "observation": ObservationConfig(
            family=opts["family"], week_effect=not opts["no_week_effect"]
        ),
        "horizon": 0 if opts["backcalc"] else opts["horizon"],
        "sampler": SamplerConfig(
            method=opts["method"],
            samples=opts["samples"],
            warmup=opts["warmup"],
            chains=opts["chains"],
            cores=opts["cores"],
            max_execution_time=opts["max_time"],
            seed=opts["seed"],
        ),
        "return_samples": opts["return_samples"],
    }


@click.group()
def main():
    """rtcast: Rt and infection estimation from reported cases."""
    pass


@main.command()
@click.argument("cases_csv", type=click.Path(exists=True))
@_model_options
def estimate(cases_csv, **opts):
    """Estimate a single case series (CSV with date, confirm columns)."""
    from rtcast.errors import ConfigurationError, DataError, SamplingFailure
    from rtcast.io.reader import read_cases
    from rtcast.io.writer import write_estimate
    from rtcast.pipeline import estimate as run_estimate

    _setup_logging(opts["log_file"], opts["verbose"])
    try:
        kwargs = _estimate_kwargs(opts)
        result = run_estimate(read_cases(Path(cases_csv)), **kwargs)
    except (ConfigurationError, DataError, SamplingFailure) as e:
        raise click.ClickException(str(e)) from e

    out_dir = write_estimate(result, Path(opts["output_dir"]), opts["run_date"])
    click.echo(f"Wrote estimate to {out_dir}")
    for message in result.diagnostics.warnings:
        click.echo(f"warning: {message}", err=True)


@main.command()
@click.argument("cases_csv", type=click.Path(exists=True))
@click.option("--region-col", type=str, default="region", help="Region column name.")
@click.option("--workers", type=int, default=1, help="Regions estimated at once.")
@click.option("--dask", is_flag=True, help="Use Dask distributed processing.")
@_model_options
def regional(cases_csv, region_col, workers, dask, **opts):
    """Estimate every region in a CSV with a region column."""
    from rtcast.errors import ConfigurationError
    from rtcast.distributed.orchestrator import regional_estimate
    from rtcast.io.reader import read_cases
    from rtcast.io.writer import write_regional

    _setup_logging(opts["log_file"], opts["verbose"])
    try:
        kwargs = _estimate_kwargs(opts)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    results = regional_estimate(
        read_cases(Path(cases_csv), region_col=region_col),
        region_col=region_col,
        max_workers=workers,
        use_dask=dask,
        **kwargs,
    )
    out_dir = write_regional(results, Path(opts["output_dir"]), opts["run_date"])
    click.echo(
        f"{len(results.succeeded)} regions succeeded, {len(results.failed)} failed; "
        f"summary in {out_dir}"
    )
    for region in results.failed:
        click.echo(f"failed: {region}: {results.outcomes[region].error}", err=True)


@main.command()
@click.argument("summary_path", type=click.Path(exists=True))
@click.option("--variable", type=str, default="R", help="Variable to show.")
@click.option("--tail", type=int, default=14, help="Number of most recent dates.")
def inspect(summary_path, variable, tail):
    """Print the latest rows of a written summary."""
    from rtcast.io.reader import read_summary

    summary = read_summary(Path(summary_path))
    rows = summary[summary["variable"] == variable]
    if rows.empty:
        raise click.ClickException(
            f"No rows for {variable!r}; available: "
            f"{', '.join(sorted(summary['variable'].unique()))}"
        )
    columns = [c for c in ["region", "date", "type", "median", "lower_90", "upper_90"]
               if c in rows.columns]
    click.echo(rows[columns].tail(tail).to_string(index=False))


if __name__ == "__main__":
    main()
