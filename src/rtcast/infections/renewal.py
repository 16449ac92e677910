"""Renewal-equation infection process using jax.lax.scan.

New infections on day t are

    I_t = R_eff(t) * sum_{s >= 1} I_{t-s} g_s * exp(noise_t)

where g is the generation-time PMF with its lag-0 mass removed and
renormalised. The scan carries a buffer of the last G - 1 infections and
the cumulative infection count (seeding included).

Susceptible depletion is a crude deterministic correction, not a
compartmental model: on forecast days only,

    R_eff(t) = R(t) * clip(1 - C_{t-1} / N, 0, 1)

with C the cumulative infections so far and N the population. Fitted
days are never adjusted.
"""

import jax.numpy as jnp
import numpyro
import numpyro.distributions as dist
from jax import lax

from rtcast.types import Array


def prepare_generation_time(gt_pmf: Array) -> Array:
    """Remove lag-0 mass from a generation-time PMF and renormalise."""
    gt_pmf = jnp.asarray(gt_pmf)
    gt_pmf = gt_pmf.at[0].set(0.0)
    return gt_pmf / jnp.sum(gt_pmf)


def seed_infections(log_i0: Array, growth: Array, n_seed: int) -> Array:
    """Exponential seeding curve ending at exp(log_i0) on the last seed day."""
    offsets = jnp.arange(n_seed, dtype=jnp.result_type(float)) - (n_seed - 1)
    return jnp.exp(log_i0 + growth * offsets)


def sample_seed_infections(n_seed: int, initial_guess: float) -> Array:
    """Sample seeding parameters and return the (n_seed,) seeding curve."""
    log_i0 = numpyro.sample("log_I0", dist.Normal(jnp.log(initial_guess), 1.0))
    growth = numpyro.sample("initial_growth", dist.Normal(0.0, 0.1))
    return seed_infections(log_i0, growth, n_seed)


def renewal_infections(
    rt: Array,
    gt_pmf: Array,
    seeds: Array,
    noise: Array | None = None,
    population: float | None = None,
    forecast_mask: Array | None = None,
) -> tuple[Array, Array]:
    """Run the renewal recursion.

    Args:
        rt: (n_days,) reproduction number per day.
        gt_pmf: (G,) generation-time PMF over lags 0..G-1, G >= 2.
        seeds: (n_seed,) infections before the first modelled day.
        noise: (n_days,) log-scale process noise, or None.
        population: Population size for susceptible depletion, or None.
        forecast_mask: (n_days,) bool, True on forecast days.

    Returns:
        infections: (n_seed + n_days,) seeds followed by new infections.
        r_eff: (n_days,) reproduction number after depletion.
    """
    n_days = rt.shape[0]
    weights = prepare_generation_time(gt_pmf)[1:][::-1]
    n_hist = weights.shape[0]
    n_seed = seeds.shape[0]

    if n_seed >= n_hist:
        history = seeds[n_seed - n_hist:]
    else:
        history = jnp.concatenate([jnp.zeros(n_hist - n_seed), seeds])

    if noise is None:
        noise = jnp.zeros(n_days)
    if forecast_mask is None:
        forecast_mask = jnp.zeros(n_days, dtype=bool)

    def scan_fn(carry, inputs):
        history, cumulative = carry
        r, eps, is_forecast = inputs
        if population is None:
            r_eff = r
        else:
            susceptible = jnp.clip(1.0 - cumulative / population, 0.0, 1.0)
            r_eff = jnp.where(is_forecast, r * susceptible, r)
        new = r_eff * jnp.dot(history, weights) * jnp.exp(eps)
        history = jnp.concatenate([history[1:], new[None]])
        return (history, cumulative + new), (new, r_eff)

    _, (infections, r_eff) = lax.scan(
        scan_fn, (history, jnp.sum(seeds)), (rt, noise, forecast_mask)
    )
    return jnp.concatenate([seeds, infections]), r_eff
