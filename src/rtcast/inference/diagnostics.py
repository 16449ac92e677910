"""Convergence diagnostics for sampler output.

Breaches never raise: each one is emitted as a ConvergenceWarning, logged
and recorded on the returned Diagnostics.
"""

import logging
import math
import warnings

import numpy as np
from numpyro.diagnostics import effective_sample_size, split_gelman_rubin

from rtcast.config import DiagnosticThresholds
from rtcast.errors import ConvergenceWarning
from rtcast.model import DETERMINISTIC_SITES
from rtcast.types import Diagnostics, SamplerOutput

log = logging.getLogger(__name__)

# Draws per chain needed before R-hat and ESS are computed
MIN_DRAWS_FOR_RHAT = 4


def _latent_sites(samples: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
    return {k: v for k, v in samples.items() if k not in DETERMINISTIC_SITES}


def rhat_and_ess(samples: dict[str, np.ndarray]) -> tuple[float, float]:
    """Max split R-hat and min bulk ESS over latent sites.

    Args:
        samples: site -> (C, S, ...) chain-grouped draws.

    Returns:
        (max_rhat, min_ess); NaN when there is nothing to assess.
    """
    rhats, esses = [], []
    for name, draws in _latent_sites(samples).items():
        if draws.shape[1] < MIN_DRAWS_FOR_RHAT:
            continue
        draws = np.asarray(draws, dtype=float)
        with np.errstate(invalid="ignore", divide="ignore"):
            rhats.append(np.ravel(split_gelman_rubin(draws)))
            esses.append(np.ravel(effective_sample_size(draws)))
    if not rhats:
        return math.nan, math.nan
    rhat = np.concatenate(rhats)
    ess = np.concatenate(esses)
    max_rhat = float(np.nanmax(rhat)) if np.any(np.isfinite(rhat)) else math.nan
    min_ess = float(np.nanmin(ess)) if np.any(np.isfinite(ess)) else math.nan
    return max_rhat, min_ess


def _warn(messages: list[str], message: str) -> None:
    warnings.warn(message, ConvergenceWarning, stacklevel=3)
    log.warning(message)
    messages.append(message)


def compute_diagnostics(
    output: SamplerOutput,
    max_tree_depth: int,
    thresholds: DiagnosticThresholds | None = None,
) -> Diagnostics:
    """Summarise sampler output and warn about threshold breaches."""
    thresholds = thresholds or DiagnosticThresholds()
    messages: list[str] = []
    n_draws = output.n_draws

    divergent = 0
    saturated = 0
    if "diverging" in output.extra:
        divergent = int(np.sum(output.extra["diverging"]))
    if "num_steps" in output.extra:
        saturated = int(np.sum(output.extra["num_steps"] >= 2**max_tree_depth - 1))

    if output.method == "sampling":
        max_rhat, min_ess = rhat_and_ess(output.samples)
    else:
        max_rhat, min_ess = math.nan, math.nan

    if n_draws and divergent / n_draws > thresholds.max_divergent_fraction:
        _warn(messages, f"{divergent} of {n_draws} transitions were divergent")
    if n_draws and saturated / n_draws > thresholds.max_treedepth_fraction:
        _warn(
            messages,
            f"{saturated} of {n_draws} transitions hit the maximum tree depth "
            f"({max_tree_depth})",
        )
    if max_rhat > thresholds.max_rhat:
        _warn(messages, f"Max R-hat {max_rhat:.3f} exceeds {thresholds.max_rhat}")
    if min_ess < thresholds.min_ess:
        _warn(
            messages,
            f"Min effective sample size {min_ess:.0f} is below {thresholds.min_ess:.0f}",
        )
    if output.timed_out:
        _warn(
            messages,
            f"Execution time limit reached: {output.n_chains} of "
            f"{output.n_chains_requested} chains completed ({n_draws} draws)",
        )

    return Diagnostics(
        method=output.method,
        n_chains=output.n_chains,
        n_chains_requested=output.n_chains_requested,
        n_draws=n_draws,
        divergent_transitions=divergent,
        treedepth_saturated=saturated,
        max_rhat=max_rhat,
        min_ess=min_ess,
        timed_out=output.timed_out,
        warnings=tuple(messages),
    )
