"""Composition of discrete delay distributions.

Stage PMFs are convolved in full and truncated once at the end, so the
combined kernel does not depend on stage order. Truncation renormalises,
i.e. the kernel is the delay distribution conditional on delay <= max.
"""

from collections.abc import Sequence

import jax.numpy as jnp
import numpyro
import numpyro.distributions as dist

from rtcast.errors import ConfigurationError
from rtcast.types import Array


def truncate_pmf(pmf: Array, max_delay: int) -> Array:
    """Truncate a PMF at max_delay and renormalise.

    Args:
        pmf: (D,) probability mass over delays 0..D-1.
        max_delay: Largest delay kept (inclusive).

    Returns:
        (min(D, max_delay + 1),) PMF summing to 1.
    """
    if max_delay < 0:
        raise ConfigurationError(f"max_delay must be >= 0, got {max_delay}")
    pmf = jnp.asarray(pmf)[: max_delay + 1]
    return pmf / jnp.sum(pmf)


def convolve_pmfs(pmfs: Sequence[Array], max_delay: int | None = None) -> Array:
    """Combine stage PMFs into a single delay kernel.

    An empty sequence gives the identity kernel (all mass at delay 0).

    Args:
        pmfs: Stage PMFs, each over delays 0..max_i.
        max_delay: Optional truncation of the combined delay.

    Returns:
        (sum(max_i) + 1,) combined PMF, or shorter if truncated.
    """
    kernel = jnp.ones(1)
    for pmf in pmfs:
        kernel = jnp.convolve(kernel, jnp.asarray(pmf, dtype=kernel.dtype))
    if max_delay is None:
        max_delay = kernel.shape[0] - 1
    return truncate_pmf(kernel, max_delay)


def sample_delay_pmf(spec, name: str) -> Array:
    """Build the combined kernel of a DelaySpec for the current draw.

    Uncertain stage parameters are sampled as numpyro sites named
    ``{name}_{stage}_{param}``. Positive parameters use priors truncated at
    zero so invalid draws are excluded by the sampler rather than clamped.
    Known stages contribute their PMF at the prior means. Must be called inside a
    numpyro model; nothing is cached between draws.

    Args:
        spec: DelaySpec to realise.
        name: Site name prefix.

    Returns:
        (spec.kernel_length,) combined PMF.
    """
    pmfs = []
    for i, stage in enumerate(spec.stages):
        if not stage.uncertain:
            pmfs.append(stage.mean_pmf())
            continue

        params = []
        for param, mean, sd in zip(stage.param_names, stage.mean, stage.sd):
            if sd == 0:
                params.append(jnp.asarray(mean))
                continue
            if param in stage.positive_params:
                prior = dist.TruncatedNormal(mean, sd, low=0.0)
            else:
                prior = dist.Normal(mean, sd)
            params.append(numpyro.sample(f"{name}_{i}_{param}", prior))
        pmfs.append(stage.pmf_from(jnp.stack(params)))

    return convolve_pmfs(pmfs, spec.max_delay)
