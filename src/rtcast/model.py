"""Joint generative model for reported cases.

Renewal mode:
    log Rt process -> renewal infections (seeded) -> delay convolution
    -> reporting scale -> day-of-week effect -> truncation -> likelihood

Backcalculation mode:
    smoothed prior curve * exp(deviation) -> delay convolution -> ...

``build_model_inputs`` splits everything the model needs into a hashable
``ModelSpec`` (configuration, shapes) and ``ModelData`` (arrays), which
are passed to ``epi_model`` as keyword arguments by the sampling engines.
"""

import logging
from dataclasses import dataclass
from typing import NamedTuple

import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
import pandas as pd

from rtcast.config import BackcalcConfig, ObservationConfig, RtConfig
from rtcast.delays.convolve import sample_delay_pmf
from rtcast.delays.distributions import DelaySpec
from rtcast.infections.backcalc import backcalc_infections, backcalc_prior_curve
from rtcast.infections.renewal import renewal_infections, sample_seed_infections
from rtcast.observation.likelihood import report_likelihood
from rtcast.observation.reports import (
    convolve_to_reports,
    day_of_week_effect,
    truncate_reports,
)
from rtcast.rt.process import sample_deviation, sample_log_rt
from rtcast.types import TimeLayout

log = logging.getLogger(__name__)

# Sites computed from other sites; excluded from convergence diagnostics
DETERMINISTIC_SITES = ("R", "R_effective", "infections", "expected_reports")


@dataclass(frozen=True)
class ModelSpec:
    """Static model structure."""
    layout: TimeLayout
    mode: str  # "renewal" or "backcalc"
    generation_time: DelaySpec
    delays: DelaySpec
    observation: ObservationConfig
    rt: RtConfig | None = None
    backcalc: BackcalcConfig | None = None
    breakpoints: tuple[int, ...] = ()


class ModelData(NamedTuple):
    """Array inputs to the model.

    observed: (n_obs,) counts, 0 where missing
    mask: (n_obs,) True where a count was observed
    day_of_week: (n_days,) weekday index per report date
    initial_guess: scale of the first infections
    prior_curve: (n_total,) backcalculation prior, or None
    """
    observed: np.ndarray
    mask: np.ndarray
    day_of_week: np.ndarray
    initial_guess: float
    prior_curve: np.ndarray | None = None


def seeding_days(
    delays: DelaySpec,
    generation_time: DelaySpec | None = None,
) -> int:
    """Days of infections needed before the first report date."""
    n_seed = max(delays.kernel_length - 1, 1)
    if generation_time is not None:
        n_seed = max(n_seed, generation_time.kernel_length - 1)
    return n_seed


def build_model_inputs(
    observations: pd.DataFrame,
    horizon: int,
    generation_time: DelaySpec,
    delays: DelaySpec,
    observation: ObservationConfig,
    rt: RtConfig | None = None,
    backcalc: BackcalcConfig | None = None,
) -> tuple[ModelSpec, ModelData]:
    """Derive the static spec and data arrays from a cleaned case table.

    Args:
        observations: Output of create_clean_reported_cases, horizon rows
            included.
        horizon: Forecast days at the end of observations.
        generation_time: Generation-time distribution (renewal mode).
        delays: Infection-to-report delay.
        observation: Observation model configuration.
        rt: Rt configuration; None selects backcalculation.
        backcalc: Backcalculation configuration.
    """
    mode = "renewal" if rt is not None else "backcalc"
    n_days = len(observations)
    n_obs = n_days - horizon
    if mode == "renewal":
        n_seed = seeding_days(delays, generation_time)
    else:
        n_seed = seeding_days(delays)
    layout = TimeLayout(n_seed=n_seed, n_obs=n_obs, n_horizon=horizon)

    confirm = observations["confirm"].to_numpy(dtype=float)[:n_obs]
    mask = ~np.isnan(confirm)
    observed = np.where(mask, confirm, 0.0)

    first_week = confirm[:7]
    if np.isnan(first_week).all():
        first_week = confirm
    initial_guess = max(float(np.nanmean(first_week)) / observation.scale_mean, 0.1)

    prior_curve = None
    if mode == "backcalc":
        shift = int(round(delays.mean()))
        prior_curve = backcalc_prior_curve(confirm, shift, n_seed, backcalc.prior_window)

    spec = ModelSpec(
        layout=layout,
        mode=mode,
        generation_time=generation_time,
        delays=delays,
        observation=observation,
        rt=rt,
        backcalc=backcalc,
        breakpoints=tuple(int(b) for b in observations["breakpoint"]),
    )
    data = ModelData(
        observed=observed,
        mask=mask,
        day_of_week=pd.DatetimeIndex(observations["date"]).dayofweek.to_numpy(),
        initial_guess=initial_guess,
        prior_curve=prior_curve,
    )
    log.debug(
        f"Model layout: {n_seed} seeding, {n_obs} observed, {horizon} forecast days "
        f"({int(mask.sum())} observed counts, mode={mode})"
    )
    return spec, data


def _reporting_scale(observation: ObservationConfig):
    if observation.scale_sd == 0:
        return observation.scale_mean
    return numpyro.sample(
        "fraction_observed",
        dist.TruncatedNormal(observation.scale_mean, observation.scale_sd, low=0.0),
    )


def epi_model(spec: ModelSpec, data: ModelData) -> None:
    """numpyro model for reported cases."""
    layout = spec.layout
    obs_config = spec.observation
    delay_pmf = sample_delay_pmf(spec.delays, "delay")

    if spec.mode == "renewal":
        rt_config = spec.rt
        gt_pmf = sample_delay_pmf(spec.generation_time, "gt")
        log_rt = sample_log_rt(rt_config, layout, np.asarray(spec.breakpoints))
        rt = jnp.exp(log_rt)
        seeds = sample_seed_infections(layout.n_seed, data.initial_guess)

        noise = None
        if rt_config.infection_noise_sd > 0:
            z = numpyro.sample(
                "infection_noise",
                dist.Normal(0.0, 1.0).expand([layout.n_days]).to_event(1),
            )
            noise = rt_config.infection_noise_sd * z

        forecast_mask = jnp.arange(layout.n_days) >= layout.n_obs
        infections, r_eff = renewal_infections(
            rt, gt_pmf, seeds, noise, rt_config.population, forecast_mask
        )
        numpyro.deterministic("R", rt)
        if rt_config.population is not None:
            numpyro.deterministic("R_effective", r_eff)
    else:
        deviation = sample_deviation(
            spec.backcalc.process, layout.n_total, None, "infections"
        )
        infections = backcalc_infections(data.prior_curve, deviation)

    numpyro.deterministic("infections", infections)

    reports = convolve_to_reports(infections, delay_pmf, layout.n_seed, layout.n_days)
    reports = reports * _reporting_scale(obs_config)
    if obs_config.week_effect:
        simplex = numpyro.sample("day_of_week_simplex", dist.Dirichlet(jnp.ones(7)))
        reports = day_of_week_effect(reports, simplex, data.day_of_week)
    numpyro.deterministic("expected_reports", reports)

    if obs_config.truncation is not None:
        trunc_pmf = sample_delay_pmf(obs_config.truncation, "truncation")
        reports = truncate_reports(reports, trunc_pmf, layout.n_obs)

    report_likelihood(
        reports[: layout.n_obs],
        data.observed,
        data.mask,
        family=obs_config.family,
        dispersion_sd=obs_config.dispersion_sd,
        weight=obs_config.weight,
    )
