"""Type aliases and named tuples for rtcast."""

from typing import NamedTuple

import jax.numpy as jnp
import numpy as np
import pandas as pd

# Array type alias (JAX arrays)
Array = jnp.ndarray


class TimeLayout(NamedTuple):
    """Day layout of the model time axis.

    n_seed: days of seeding infections before the first report date
    n_obs: days with (possibly missing) observed reports
    n_horizon: forecast days after the last observation
    """
    n_seed: int
    n_obs: int
    n_horizon: int

    @property
    def n_days(self) -> int:
        """Observed plus forecast days (the Rt and report axis)."""
        return self.n_obs + self.n_horizon

    @property
    def n_total(self) -> int:
        """Seeding plus observed plus forecast days (the infection axis)."""
        return self.n_seed + self.n_days


class SamplerTiming(NamedTuple):
    """Wall-clock seconds per sampling phase."""
    warmup: float
    sampling: float
    total: float


class SamplerOutput(NamedTuple):
    """Raw output of a posterior sampling engine.

    samples: site name -> (C, S, ...) draws grouped by completed chain
    extra: field name -> (C, S) per-draw sampler statistics
        ("diverging", "num_steps"); empty for approximate methods
    n_chains_requested: chains the engine was asked to run
    timed_out: whether the execution time limit cut sampling short
    timing: per-phase wall-clock time
    method: "sampling", "vb" or "laplace"
    """
    samples: dict[str, np.ndarray]
    extra: dict[str, np.ndarray]
    n_chains_requested: int
    timed_out: bool
    timing: SamplerTiming
    method: str

    @property
    def n_chains(self) -> int:
        if not self.samples:
            return 0
        return next(iter(self.samples.values())).shape[0]

    @property
    def n_draws(self) -> int:
        if not self.samples:
            return 0
        first = next(iter(self.samples.values()))
        return first.shape[0] * first.shape[1]


class Diagnostics(NamedTuple):
    """Convergence diagnostics attached to an estimate."""
    method: str
    n_chains: int
    n_chains_requested: int
    n_draws: int
    divergent_transitions: int
    treedepth_saturated: int
    max_rhat: float
    min_ess: float
    timed_out: bool
    warnings: tuple[str, ...]


class EstimationResult(NamedTuple):
    """Summarised output of a single-series estimate.

    summary: long table, one row per (variable, date) with median, mean, sd
        and credible-interval bounds
    samples: long table of draws (date, variable, sample, value) or None
    draws: variable -> (S, n_days) posterior draws on the report date axis
    diagnostics: sampler diagnostics
    timing: seconds per phase ("warmup", "sampling", "summary", "total")
    observations: cleaned input series including forecast dates
    mode: "renewal" or "backcalc"
    """
    summary: pd.DataFrame
    samples: pd.DataFrame | None
    draws: dict[str, np.ndarray]
    diagnostics: Diagnostics
    timing: dict[str, float]
    observations: pd.DataFrame
    mode: str


class RegionOutcome(NamedTuple):
    """Per-region outcome of a multi-region run.

    status: "success", "partial" (time limit hit, reduced draws) or "failed"
    """
    region: str
    status: str
    result: EstimationResult | None
    error: BaseException | None
    elapsed: float


class RegionalResults(NamedTuple):
    """Outcomes of a multi-region run.

    outcomes: region -> RegionOutcome, in input order
    summary: combined summary table of every region with a result, with a
        leading region column
    """
    outcomes: dict[str, RegionOutcome]
    summary: pd.DataFrame

    @property
    def succeeded(self) -> list[str]:
        return [r for r, o in self.outcomes.items() if o.status != "failed"]

    @property
    def failed(self) -> list[str]:
        return [r for r, o in self.outcomes.items() if o.status == "failed"]
