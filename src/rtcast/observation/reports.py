"""Mapping from latent infections to expected reports by report date."""

import jax.numpy as jnp

from rtcast.types import Array


def convolve_to_reports(
    infections: Array,
    delay_pmf: Array,
    n_seed: int,
    n_days: int,
) -> Array:
    """Expected reports from infections and a delay kernel.

    reports[t] = sum_d infections[n_seed + t - d] * delay_pmf[d]

    Args:
        infections: (n_seed + n_days,) infections, seeding prefix first.
        delay_pmf: (D,) delay kernel with D - 1 <= n_seed.
        n_seed: Seeding days.
        n_days: Report days to return.

    Returns:
        (n_days,) expected reports.
    """
    full = jnp.convolve(infections, delay_pmf, mode="full")
    return full[n_seed: n_seed + n_days]


def day_of_week_effect(reports: Array, effect_simplex: Array, day_of_week) -> Array:
    """Apply weekly multipliers 7 * simplex, which average 1 over a week.

    Args:
        reports: (n,) expected reports.
        effect_simplex: (7,) non-negative weights summing to 1.
        day_of_week: (n,) integer weekday per date (Monday = 0).
    """
    return reports * 7.0 * effect_simplex[jnp.asarray(day_of_week)]


def truncate_reports(reports: Array, trunc_pmf: Array, n_obs: int) -> Array:
    """Scale recent observed days by the cumulative truncation distribution.

    The last observed day is multiplied by P(delay <= 0), the day before by
    P(delay <= 1), and so on. Forecast days are left unchanged.

    Args:
        reports: (n_days,) expected complete reports.
        trunc_pmf: (D,) truncation delay PMF.
        n_obs: Observed days.

    Returns:
        (n_days,) expected reports as of the last observation date.
    """
    cdf = jnp.cumsum(trunc_pmf)
    n_trunc = min(cdf.shape[0], n_obs)
    multiplier = jnp.ones(reports.shape[0])
    multiplier = multiplier.at[n_obs - n_trunc: n_obs].set(cdf[:n_trunc][::-1])
    return reports * multiplier
