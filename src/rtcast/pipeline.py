"""Single-series estimation.

Three phases:
  Phase A: validate configuration and clean the case series
  Phase B: fit the joint model with the sampling engine
  Phase C: diagnostics and posterior summaries
"""

import logging
import math
import time
from collections.abc import Sequence

import numpy as np
import pandas as pd

from rtcast.config import (
    DEFAULT_CRIS,
    BackcalcConfig,
    DiagnosticThresholds,
    ObservationConfig,
    RtConfig,
    SamplerConfig,
)
from rtcast.data.cases import create_clean_reported_cases
from rtcast.delays.distributions import DelaySpec
from rtcast.errors import ConfigurationError, SamplingFailure
from rtcast.inference.diagnostics import compute_diagnostics
from rtcast.inference.engine import SamplingEngine, engine_for
from rtcast.inference.summary import (
    date_types,
    draws_table,
    flatten_chains,
    posterior_draws,
    summarise_draws,
    validate_credible_levels,
)
from rtcast.model import build_model_inputs, epi_model
from rtcast.types import EstimationResult

log = logging.getLogger(__name__)

DEFAULT_RT = RtConfig()


def validate_options(
    generation_time: DelaySpec,
    delays: DelaySpec,
    rt: RtConfig | None,
    observation: ObservationConfig,
    backcalc: BackcalcConfig | None,
    horizon: int,
    sampler: SamplerConfig,
) -> None:
    """Fail fast on invalid or incompatible options.

    Raises:
        ConfigurationError: On any invalid option or combination.
    """
    if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)) or horizon < 0:
        raise ConfigurationError(f"horizon must be a non-negative integer, got {horizon!r}")
    if rt is not None and backcalc is not None:
        raise ConfigurationError(
            "An Rt configuration cannot be combined with backcalculation; "
            "pass rt=None to use backcalculation"
        )
    if rt is None and horizon > 0:
        raise ConfigurationError(
            f"Backcalculation cannot forecast; horizon must be 0, got {horizon}"
        )
    for name, spec in [("generation_time", generation_time), ("delays", delays)]:
        if not isinstance(spec, DelaySpec):
            raise ConfigurationError(f"{name} must be a DelaySpec, got {type(spec).__name__}")
    if rt is not None:
        rt.validate()
        if generation_time.max_delay < 1:
            raise ConfigurationError(
                "Generation time needs support beyond lag 0 (max >= 1)"
            )
    if backcalc is not None:
        backcalc.validate()
    observation.validate()
    sampler.validate()


def estimate(
    reported_cases: pd.DataFrame,
    generation_time: DelaySpec,
    delays: DelaySpec | None = None,
    rt: RtConfig | None = DEFAULT_RT,
    observation: ObservationConfig | None = None,
    backcalc: BackcalcConfig | None = None,
    horizon: int = 7,
    sampler: SamplerConfig | None = None,
    engine: SamplingEngine | None = None,
    credible_levels: Sequence[float] = DEFAULT_CRIS,
    return_samples: bool = False,
    thresholds: DiagnosticThresholds | None = None,
    filter_leading_zeros: bool = True,
    zero_threshold: float = math.inf,
) -> EstimationResult:
    """Estimate Rt and infections from a reported case series.

    Args:
        reported_cases: Table with date, confirm and optional breakpoint
            columns.
        generation_time: Generation-time distribution (renewal mode).
        delays: Infection-to-report delay; None for no delay.
        rt: Rt configuration. None selects backcalculation.
        observation: Observation model configuration.
        backcalc: Backcalculation configuration (only with rt=None).
        horizon: Forecast days (must be 0 for backcalculation).
        sampler: Sampling configuration.
        engine: Posterior sampling engine; chosen from sampler.method if
            None.
        credible_levels: Interval widths in the summary table.
        return_samples: Also return a long table of individual draws.
        thresholds: Convergence warning thresholds.
        filter_leading_zeros: Drop leading days without positive counts.
        zero_threshold: Treat zeros after a 7-day mean above this as
            missing.

    Returns:
        EstimationResult with summary tables, draws and diagnostics.

    Raises:
        ConfigurationError: Invalid options, raised before sampling.
        DataError: Malformed case series, raised before sampling.
        SamplingFailure: The engine returned no usable draws.
    """
    t_start = time.time()
    delays = delays if delays is not None else DelaySpec()
    observation = observation or ObservationConfig()
    sampler = sampler or SamplerConfig()
    levels = validate_credible_levels(credible_levels)

    validate_options(generation_time, delays, rt, observation, backcalc, horizon, sampler)
    if rt is None:
        backcalc = backcalc or BackcalcConfig()
        backcalc.validate()
    mode = "renewal" if rt is not None else "backcalc"

    # Phase A: data
    observations = create_clean_reported_cases(
        reported_cases,
        horizon=horizon,
        filter_leading_zeros=filter_leading_zeros,
        zero_threshold=zero_threshold,
    )
    spec, data = build_model_inputs(
        observations, horizon, generation_time, delays, observation, rt, backcalc
    )
    layout = spec.layout
    log.info(
        f"Estimating {mode} model: {layout.n_obs} observed days, "
        f"{layout.n_horizon} forecast days, method={sampler.method}"
    )

    # Phase B: sampling
    engine = engine or engine_for(sampler)
    output = engine.run(epi_model, {"spec": spec, "data": data}, sampler)
    if output.n_chains == 0:
        raise SamplingFailure(
            f"No usable draws: 0 of {output.n_chains_requested} chains completed"
            + (" before the execution time limit" if output.timed_out else "")
        )

    # Phase C: diagnostics and summaries
    t_summary = time.time()
    diagnostics = compute_diagnostics(output, sampler.max_tree_depth, thresholds)

    rng = np.random.default_rng(sampler.seed)
    draws = posterior_draws(flatten_chains(output.samples), layout, rng)
    dates = pd.DatetimeIndex(observations["date"])
    types = date_types(layout.n_obs, layout.n_days, int(round(delays.mean())))
    summary = summarise_draws(draws, dates, types, levels)
    samples = draws_table(draws, dates) if return_samples else None
    summary_time = time.time() - t_summary

    timing = {
        "warmup": output.timing.warmup,
        "sampling": output.timing.sampling,
        "summary": summary_time,
        "total": time.time() - t_start,
    }
    log.info(
        f"Estimate complete in {timing['total']:.1f}s "
        f"({diagnostics.n_draws} draws, {len(diagnostics.warnings)} warnings)"
    )
    return EstimationResult(
        summary=summary,
        samples=samples,
        draws=draws,
        diagnostics=diagnostics,
        timing=timing,
        observations=observations,
        mode=mode,
    )
