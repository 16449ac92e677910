"""Backcalculation (non-parametric) infection process.

Infections are a smoothed prior curve scaled by exp of a Gaussian-process
or random-walk deviation. There is no Rt or generation time in this mode,
and no mechanism to project the curve past the last observation.
"""

import jax.numpy as jnp
import numpy as np
import pandas as pd

from rtcast.types import Array

# Floor on the prior curve so log-scale deviations stay defined
MIN_PRIOR_INFECTIONS = 0.1


def backcalc_prior_curve(
    reports: np.ndarray,
    shift: int,
    n_seed: int,
    window: int,
) -> np.ndarray:
    """Prior infection curve from reports shifted back by the mean delay.

    Day d of the infection axis (seeding prefix included) takes the report
    from day d - n_seed + shift, clamped to the observed range. The shifted
    series is smoothed with a centred rolling mean that skips missing
    values.

    Args:
        reports: (n_obs,) observed counts, NaN where missing.
        shift: Mean delay in whole days.
        n_seed: Seeding days before the first report.
        window: Rolling-mean window in days.

    Returns:
        (n_seed + n_obs,) prior curve, at least MIN_PRIOR_INFECTIONS.
    """
    n_obs = reports.shape[0]
    index = np.clip(np.arange(n_seed + n_obs) - n_seed + shift, 0, n_obs - 1)
    shifted = pd.Series(reports[index], dtype=float)
    smoothed = shifted.rolling(window, center=True, min_periods=1).mean()
    smoothed = smoothed.ffill().bfill().fillna(MIN_PRIOR_INFECTIONS)
    return np.maximum(smoothed.to_numpy(), MIN_PRIOR_INFECTIONS)


def backcalc_infections(prior_curve: Array, log_deviation: Array) -> Array:
    """Infections = prior curve * exp(deviation)."""
    return jnp.asarray(prior_curve) * jnp.exp(log_deviation)
