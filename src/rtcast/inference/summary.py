"""Posterior summaries on the report date axis."""

import warnings
from collections.abc import Sequence

import numpy as np
import pandas as pd

from rtcast.config import DEFAULT_CRIS
from rtcast.errors import ConfigurationError
from rtcast.observation.likelihood import predictive_reports
from rtcast.types import TimeLayout

ESTIMATE = "estimate"
PARTIAL = "estimate based on partial data"
FORECAST = "forecast"


def validate_credible_levels(levels: Sequence[float]) -> tuple[float, ...]:
    """Sorted unique credible levels, each strictly between 0 and 1."""
    levels = tuple(sorted({float(level) for level in levels}))
    if not levels or any(not 0 < level < 1 for level in levels):
        raise ConfigurationError(
            f"Credible levels must be non-empty and in (0, 1), got {levels}"
        )
    return levels


def growth_rate(infections: np.ndarray, n_seed: int) -> np.ndarray:
    """Daily growth rate r_t = log I_t - log I_{t-1} per draw.

    Args:
        infections: (S, n_seed + n_days) infections, seeding prefix first.
        n_seed: Seeding days (>= 1), so the first report date has a value.

    Returns:
        (S, n_days) growth rates.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.diff(np.log(infections), axis=1)
    return r[:, n_seed - 1:]


def doubling_time(r: np.ndarray) -> np.ndarray:
    """log(2) / r: positive doubling times, negative halving times.

    A growth rate of exactly 0 gives inf rather than an error.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.log(2) / np.asarray(r, dtype=float)


def date_types(n_obs: int, n_days: int, partial_days: int) -> np.ndarray:
    """Row type per date: estimate, partial-data estimate or forecast."""
    types = np.full(n_days, ESTIMATE, dtype=object)
    types[max(n_obs - partial_days, 0): n_obs] = PARTIAL
    types[n_obs:] = FORECAST
    return types


def summarise_draws(
    draws: dict[str, np.ndarray],
    dates: pd.DatetimeIndex,
    types: np.ndarray,
    credible_levels: Sequence[float] = DEFAULT_CRIS,
) -> pd.DataFrame:
    """Long summary table, one row per (variable, date).

    Columns: date, variable, type, median, mean, sd, lower_<level>...,
    upper_<level>... with the widest interval outermost. Missing values in
    draws (e.g. infinite doubling times mixed with finite ones) are
    ignored per date.
    """
    levels = validate_credible_levels(credible_levels)
    frames = []
    for variable, values in draws.items():
        values = np.asarray(values, dtype=float)
        with warnings.catch_warnings(), np.errstate(invalid="ignore"):
            warnings.simplefilter("ignore", RuntimeWarning)
            frame = pd.DataFrame({
                "date": dates,
                "variable": variable,
                "type": types,
                "median": np.nanmedian(values, axis=0),
                "mean": np.nanmean(values, axis=0),
                "sd": np.nanstd(values, axis=0),
            })
            for level in reversed(levels):
                frame[f"lower_{round(level * 100)}"] = np.nanquantile(
                    values, (1 - level) / 2, axis=0
                )
            for level in levels:
                frame[f"upper_{round(level * 100)}"] = np.nanquantile(
                    values, (1 + level) / 2, axis=0
                )
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def draws_table(draws: dict[str, np.ndarray], dates: pd.DatetimeIndex) -> pd.DataFrame:
    """Long table of individual draws: date, variable, sample, value."""
    frames = []
    for variable, values in draws.items():
        n_samples, n_days = values.shape
        frames.append(pd.DataFrame({
            "date": np.tile(dates, n_samples),
            "variable": variable,
            "sample": np.repeat(np.arange(1, n_samples + 1), n_days),
            "value": np.ravel(values),
        }))
    return pd.concat(frames, ignore_index=True)


def flatten_chains(samples: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
    """(C, S, ...) -> (C * S, ...) for every site."""
    return {k: v.reshape((-1,) + v.shape[2:]) for k, v in samples.items()}


def posterior_draws(
    samples: dict[str, np.ndarray],
    layout: TimeLayout,
    rng: np.random.Generator,
) -> dict[str, np.ndarray]:
    """Derived per-draw trajectories on the report date axis.

    Args:
        samples: site -> (S, ...) flattened draws.
        layout: Model time layout.
        rng: Generator for posterior predictive counts.

    Returns:
        variable -> (S, n_days) draws for R (renewal mode only), infections,
        expected_reports, reported_cases, growth_rate and doubling_time.
    """
    n_seed = layout.n_seed
    draws = {}
    for name in ("R", "R_effective"):
        if name in samples:
            draws[name] = np.asarray(samples[name], dtype=float)
    infections = np.asarray(samples["infections"], dtype=float)
    draws["infections"] = infections[:, n_seed:]
    draws["expected_reports"] = np.asarray(samples["expected_reports"], dtype=float)
    draws["reported_cases"] = predictive_reports(
        rng, draws["expected_reports"], samples.get("dispersion")
    )
    draws["growth_rate"] = growth_rate(infections, n_seed)
    draws["doubling_time"] = doubling_time(draws["growth_rate"])
    return draws
