"""Count likelihood for observed reports.

Negative binomial counts use the mean / concentration parameterisation
with phi = 1 / dispersion^2 and a half-normal prior on the dispersion, so
dispersion -> 0 recovers the Poisson limit. Missing days are masked out
of the likelihood but still have expected reports.
"""

import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
from numpyro import handlers

from rtcast.types import Array

# Lower bound on the expected count passed to the likelihood
MIN_MEAN = 1e-8


def report_likelihood(
    expected: Array,
    observed: Array | None,
    mask: Array,
    family: str = "negbin",
    dispersion_sd: float = 1.0,
    weight: float = 1.0,
    name: str = "reports_obs",
) -> None:
    """Add the observation sample site to the current numpyro model.

    Args:
        expected: (n_obs,) expected reports.
        observed: (n_obs,) counts with missing days filled by any value,
            or None to sample predictive counts.
        mask: (n_obs,) bool, False on missing days.
        family: "negbin" or "poisson".
        dispersion_sd: Half-normal prior sd of the dispersion.
        weight: Multiplier on the log-likelihood.
        name: Observation site name.
    """
    mean = jnp.clip(expected, MIN_MEAN)
    if family == "negbin":
        dispersion = numpyro.sample("dispersion", dist.HalfNormal(dispersion_sd))
        likelihood = dist.NegativeBinomial2(mean, 1.0 / dispersion**2)
    else:
        likelihood = dist.Poisson(mean)

    with handlers.scale(scale=weight), handlers.mask(mask=mask):
        numpyro.sample(name, likelihood, obs=observed)


def predictive_reports(
    rng: np.random.Generator,
    expected: np.ndarray,
    dispersion: np.ndarray | None = None,
) -> np.ndarray:
    """Posterior predictive counts via a gamma-Poisson mixture.

    Args:
        rng: Random generator.
        expected: (S, n) expected reports per draw.
        dispersion: (S,) dispersion per draw, or None for Poisson counts.

    Returns:
        (S, n) simulated counts.
    """
    mean = np.maximum(np.asarray(expected, dtype=float), MIN_MEAN)
    if dispersion is None:
        return rng.poisson(mean).astype(float)
    phi = 1.0 / np.asarray(dispersion, dtype=float)[:, None] ** 2
    rate = rng.gamma(shape=phi, scale=mean / phi)
    return rng.poisson(rate).astype(float)
