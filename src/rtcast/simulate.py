"""Forward simulation of reported cases from infection estimates.

Each infection sample is pushed through the delay distribution (re-drawn
per sample when its parameters are uncertain) to give reports by date:

    type="sample": infections on each day are allocated to report days
        with a multinomial draw over the delay PMF
    type="median": the expected convolution, no sampling noise

Reports falling after the last input date are dropped. An optional
7-value reporting effect (mean 1, Monday first) scales reports by weekday;
in sample mode the scaled counts are Poisson distributed.
"""

import logging
from collections.abc import Sequence
from typing import NamedTuple

import numpy as np
import pandas as pd

from rtcast.config import DEFAULT_CRIS
from rtcast.delays.distributions import DelaySpec
from rtcast.errors import ConfigurationError, DataError
from rtcast.inference.summary import ESTIMATE, summarise_draws

log = logging.getLogger(__name__)

REPORT_TYPES = ("sample", "median")


class ReportedCases(NamedTuple):
    """Simulated reports.

    samples: long table (date, sample, cases)
    summarised: one row per date with median, mean, sd and credible bounds
    """
    samples: pd.DataFrame
    summarised: pd.DataFrame


def _allocate(infections: np.ndarray, pmf: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Multinomial allocation of whole infections across report delays."""
    n_days = infections.shape[0]
    reports = np.zeros(n_days + pmf.shape[0] - 1)
    counts = np.round(np.nan_to_num(infections)).astype(np.int64)
    for day in np.flatnonzero(counts > 0):
        reports[day: day + pmf.shape[0]] += rng.multinomial(counts[day], pmf)
    return reports[:n_days]


def report_cases(
    case_estimates: pd.DataFrame,
    delays: DelaySpec,
    reporting_effect: Sequence[float] | None = None,
    type: str = "sample",
    seed: int | None = None,
    credible_levels: Sequence[float] = DEFAULT_CRIS,
) -> ReportedCases:
    """Simulate reported cases from sampled infections.

    Args:
        case_estimates: Table with date, sample and cases columns.
        delays: Infection-to-report delay.
        reporting_effect: Optional 7 weekday multipliers, Monday first.
        type: "sample" or "median".
        seed: Random seed.
        credible_levels: Interval widths in the summary table.

    Returns:
        ReportedCases with per-sample reports and a per-date summary.
    """
    if type not in REPORT_TYPES:
        raise ConfigurationError(f"type must be one of {REPORT_TYPES}, got {type!r}")
    missing = {"date", "sample", "cases"} - set(case_estimates.columns)
    if missing:
        raise DataError(f"Case estimates are missing column(s): {', '.join(sorted(missing))}")

    effect = None
    if reporting_effect is not None:
        effect = np.asarray(reporting_effect, dtype=float)
        if effect.shape != (7,) or np.any(effect < 0):
            raise ConfigurationError("reporting_effect needs 7 non-negative values")
        effect = effect / effect.mean()

    rng = np.random.default_rng(seed)
    wide = case_estimates.assign(date=pd.to_datetime(case_estimates["date"])).pivot_table(
        index="date", columns="sample", values="cases", aggfunc="sum"
    )
    wide = wide.asfreq("D")
    dates = pd.DatetimeIndex(wide.index)
    infections = wide.to_numpy(dtype=float).T  # (S, T)
    day_of_week = dates.dayofweek.to_numpy()

    fixed_pmf = None if delays.uncertain else delays.fixed_pmf().astype(float)
    reports = np.empty_like(infections)
    for s in range(infections.shape[0]):
        pmf = fixed_pmf if fixed_pmf is not None else delays.draw_pmf(rng).astype(float)
        pmf = pmf / pmf.sum()
        if type == "sample":
            reports[s] = _allocate(infections[s], pmf, rng)
        else:
            reports[s] = np.convolve(np.nan_to_num(infections[s]), pmf)[: len(dates)]
        if effect is not None:
            reports[s] *= effect[day_of_week]
            if type == "sample":
                reports[s] = rng.poisson(reports[s])

    log.debug(f"Simulated reports for {infections.shape[0]} samples over {len(dates)} days")

    samples = pd.DataFrame({
        "date": np.tile(dates, reports.shape[0]),
        "sample": np.repeat(wide.columns.to_numpy(), len(dates)),
        "cases": np.ravel(reports),
    })
    types = np.full(len(dates), ESTIMATE, dtype=object)
    summarised = summarise_draws({"cases": reports}, dates, types, credible_levels)
    summarised = summarised.drop(columns=["variable", "type"])
    if type == "median":
        samples = samples.groupby("date", as_index=False)["cases"].median()
    return ReportedCases(samples=samples, summarised=summarised)
