"""Rt process variants.

Each variant maps sampled innovations to a log-scale deviation from the
initial Rt through one evaluator function. Evaluators share the signature

    evaluator(process, n_days, breakpoints, name) -> (n_days,) deviation

and are looked up by variant type, so the renewal model never needs to
know which variant produced the trajectory. Random walks and breakpoints
share the piecewise "segment index + normal innovations" representation.
"""

import math

import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist

from rtcast.config import Breakpoints, Fixed, GaussianProcess, RandomWalk, RtConfig
from rtcast.errors import ConfigurationError
from rtcast.rt.gaussian_process import sample_gp
from rtcast.types import Array, TimeLayout


def lognormal_params(mean: float, sd: float) -> tuple[float, float]:
    """(meanlog, sdlog) of a log-normal with the given natural-scale mean and sd."""
    sdlog = math.sqrt(math.log1p(sd**2 / mean**2))
    return math.log(mean) - sdlog**2 / 2, sdlog


def breakpoint_index(breakpoints) -> np.ndarray:
    """Segment index per day from 0/1 breakpoint flags.

    A flag on day 0 does not open a new segment.
    """
    flags = np.asarray(breakpoints, dtype=int).copy()
    if flags.size:
        flags[0] = 0
    return np.cumsum(flags)


def piecewise_index(n_days: int, step_length: int) -> np.ndarray:
    """Segment index per day for a random walk stepping every step_length days."""
    return np.arange(n_days) // step_length


def piecewise_trajectory(innovations: Array, index) -> Array:
    """Piecewise-constant trajectory from segment innovations.

    Args:
        innovations: (K,) log-scale changes at the start of segments 1..K.
        index: (n,) segment index per day, values in 0..K.

    Returns:
        (n,) cumulative deviation; segment 0 is 0.
    """
    levels = jnp.concatenate([jnp.zeros(1), jnp.cumsum(innovations)])
    return levels[jnp.asarray(index)]


def apply_future_policy(log_rt: Array, n_obs: int, n_days: int, future) -> Array:
    """Fill forecast days according to the future policy.

    Args:
        log_rt: log Rt over at least n_obs days (n_days when projecting).
        n_obs: Observed days.
        n_days: Observed plus forecast days.
        future: "project", "latest" or int k >= 0.

    Returns:
        (n_days,) log Rt. For "latest" and k every day after index
        n_obs - 1 - k carries the value at that index.
    """
    if future == "project":
        return log_rt[:n_days]
    k = 0 if future == "latest" else int(future)
    fix_from = max(n_obs - 1 - k, 0)
    head = log_rt[: fix_from + 1]
    tail = jnp.full((n_days - fix_from - 1,), log_rt[fix_from])
    return jnp.concatenate([head, tail])


def _gaussian_process(process: GaussianProcess, n_days, breakpoints, name):
    if process.gp_on == "r0":
        return sample_gp(process, n_days, name)
    if n_days <= 1:
        return jnp.zeros(n_days)
    increments = sample_gp(process, n_days - 1, name)
    return jnp.concatenate([jnp.zeros(1), jnp.cumsum(increments)])


def _piecewise(index: np.ndarray, sd_prior: float, name: str) -> Array:
    n_steps = int(index[-1]) if index.size else 0
    if n_steps == 0:
        return jnp.zeros(index.shape[0])
    sd = numpyro.sample(f"{name}_step_sd", dist.HalfNormal(sd_prior))
    innovations = numpyro.sample(
        f"{name}_steps", dist.Normal(0.0, 1.0).expand([n_steps]).to_event(1)
    )
    return piecewise_trajectory(sd * innovations, index)


def _random_walk(process: RandomWalk, n_days, breakpoints, name):
    return _piecewise(piecewise_index(n_days, process.step_length), process.sd_prior, name)


def _breakpoints(process: Breakpoints, n_days, breakpoints, name):
    if breakpoints is None:
        raise ConfigurationError("Breakpoint Rt process needs a breakpoint column")
    return _piecewise(breakpoint_index(breakpoints[:n_days]), process.sd_prior, name)


def _fixed(process: Fixed, n_days, breakpoints, name):
    return jnp.zeros(n_days)


_EVALUATORS = {
    GaussianProcess: _gaussian_process,
    RandomWalk: _random_walk,
    Breakpoints: _breakpoints,
    Fixed: _fixed,
}


def sample_deviation(process, n_days: int, breakpoints, name: str) -> Array:
    """Sample a log-scale deviation trajectory for any process variant."""
    try:
        evaluator = _EVALUATORS[type(process)]
    except KeyError:
        raise ConfigurationError(f"Unknown process {process!r}") from None
    return evaluator(process, n_days, breakpoints, name)


def sample_log_rt(config: RtConfig, layout: TimeLayout, breakpoints=None) -> Array:
    """Sample log Rt over observed and forecast days.

    The initial value has a log-normal prior (fixed when its sd is 0).
    Unless the future policy is "project", the process is only evaluated
    over the observed days and then held constant.

    Args:
        config: Rt configuration.
        layout: Model time layout.
        breakpoints: (n_days,) 0/1 flags for the breakpoint variant.

    Returns:
        (n_days,) log Rt.
    """
    prior = config.prior
    if prior.sd == 0:
        log_r0 = jnp.log(prior.mean)
    else:
        meanlog, sdlog = lognormal_params(prior.mean, prior.sd)
        log_r0 = numpyro.sample("log_R0", dist.Normal(meanlog, sdlog))

    n_eval = layout.n_days if config.future == "project" else layout.n_obs
    deviation = sample_deviation(config.process, n_eval, breakpoints, "R")
    return apply_future_policy(log_r0 + deviation, layout.n_obs, layout.n_days, config.future)
