"""Discretised delay distributions.

A delay stage is either a fixed PMF over {0, ..., max} or a parametric
family whose parameters carry independent normal priors:

    lognormal: (meanlog, sdlog)
    gamma:     (shape, rate)

Parametric stages are discretised as P(k) = F(k + 1) - F(k) for
k = 0..max and renormalised over the truncated support. A prior sd of 0
marks a parameter as known; a stage with any non-zero sd is uncertain and
is regenerated once per posterior draw.
"""

import functools
import math
from dataclasses import dataclass

import jax
import jax.numpy as jnp
import numpy as np
from jax.scipy.special import gammainc
from jax.scipy.stats import norm

from rtcast.delays.convolve import convolve_pmfs
from rtcast.errors import ConfigurationError
from rtcast.types import Array

PARAM_NAMES = {
    "lognormal": ("meanlog", "sdlog"),
    "gamma": ("shape", "rate"),
    "fixed": (),
}
POSITIVE_PARAMS = ("sdlog", "shape", "rate")

# Rejection-sampling budget for positive parameter draws outside a model
MAX_REJECTIONS = 1000

# Truncated support mass below which a discretised delay is degenerate
MIN_SUPPORT_MASS = 1e-12


def _cdf(family: str, params: Array, x: Array) -> Array:
    """Continuous CDF of a delay family evaluated at x >= 0."""
    if family == "lognormal":
        meanlog, sdlog = params[0], params[1]
        safe_x = jnp.where(x > 0, x, 1.0)
        return jnp.where(x > 0, norm.cdf((jnp.log(safe_x) - meanlog) / sdlog), 0.0)
    shape, rate = params[0], params[1]
    return gammainc(shape, rate * x)


@functools.partial(jax.jit, static_argnames=["family", "max_delay"])
def discretised_pmf(family: str, params: Array, max_delay: int) -> Array:
    """Discretise a parametric delay onto {0, ..., max_delay}.

    Pure in its parameters so it can be re-run for every posterior draw.
    If the truncated support carries (almost) no mass, e.g. a lognormal far
    beyond max_delay, the PMF falls back to uniform rather than NaN. Known
    stages reject such parameters at construction; uncertain stages can
    still hit the fallback for extreme prior draws.

    Args:
        family: "lognormal" or "gamma".
        params: (2,) distribution parameters.
        max_delay: Largest delay in the support.

    Returns:
        (max_delay + 1,) PMF summing to 1.
    """
    edges = jnp.arange(max_delay + 2, dtype=jnp.result_type(float))
    pmf = jnp.diff(_cdf(family, params, edges))
    total = jnp.sum(pmf)
    uniform = jnp.full_like(pmf, 1.0 / (max_delay + 1))
    degenerate = total <= MIN_SUPPORT_MASS
    return jnp.where(degenerate, uniform, pmf / jnp.where(degenerate, 1.0, total))


@dataclass(frozen=True)
class DelayStage:
    """A single delay stage.

    Use the ``lognormal``, ``gamma`` and ``fixed`` constructors rather than
    building instances directly. A known parametric stage must put mass on
    its truncated support; draws of an uncertain stage that do not are
    replaced by a uniform PMF (see ``discretised_pmf``).
    """
    family: str
    max: int
    mean: tuple[float, ...] = ()
    sd: tuple[float, ...] = ()
    pmf: tuple[float, ...] | None = None

    def __post_init__(self):
        if self.family not in PARAM_NAMES:
            raise ConfigurationError(
                f"Unknown delay family {self.family!r}; "
                f"expected one of {sorted(PARAM_NAMES)}"
            )
        if self.max < 0:
            raise ConfigurationError(f"Delay max must be >= 0, got {self.max}")

        if self.family == "fixed":
            if self.pmf is None or len(self.pmf) != self.max + 1:
                raise ConfigurationError("Fixed delay needs a PMF of length max + 1")
            pmf = np.asarray(self.pmf, dtype=float)
            if not np.all(np.isfinite(pmf)) or np.any(pmf < 0) or pmf.sum() <= 0:
                raise ConfigurationError(
                    "Fixed delay PMF must be finite, non-negative and not all zero"
                )
            return

        n = len(self.param_names)
        if len(self.mean) != n or len(self.sd) != n:
            raise ConfigurationError(
                f"{self.family} delay needs {n} prior means and sds"
            )
        for param, m, s in zip(self.param_names, self.mean, self.sd):
            if not (math.isfinite(m) and math.isfinite(s)) or s < 0:
                raise ConfigurationError(
                    f"Invalid prior for {self.family} {param}: mean={m}, sd={s}"
                )
            if param in POSITIVE_PARAMS and m <= 0:
                raise ConfigurationError(
                    f"{self.family} {param} prior mean must be positive, got {m}"
                )

        if not self.uncertain:
            mass = float(
                _cdf(self.family, jnp.asarray(self.mean), jnp.asarray(self.max + 1.0))
                - _cdf(self.family, jnp.asarray(self.mean), jnp.asarray(0.0))
            )
            if mass <= MIN_SUPPORT_MASS:
                raise ConfigurationError(
                    f"Known {self.family} delay {self.mean} puts no mass on "
                    f"0..{self.max}; increase max or check the parameters"
                )

    @classmethod
    def lognormal(
        cls,
        meanlog: float,
        sdlog: float,
        max: int,
        meanlog_sd: float = 0.0,
        sdlog_sd: float = 0.0,
    ) -> "DelayStage":
        return cls("lognormal", max, (meanlog, sdlog), (meanlog_sd, sdlog_sd))

    @classmethod
    def gamma(
        cls,
        shape: float,
        rate: float,
        max: int,
        shape_sd: float = 0.0,
        rate_sd: float = 0.0,
    ) -> "DelayStage":
        return cls("gamma", max, (shape, rate), (shape_sd, rate_sd))

    @classmethod
    def fixed(cls, pmf) -> "DelayStage":
        pmf = tuple(float(p) for p in pmf)
        return cls("fixed", len(pmf) - 1, pmf=pmf)

    @classmethod
    def lognormal_from_mean_sd(cls, mean: float, sd: float, max: int) -> "DelayStage":
        """Known lognormal delay from its natural-scale mean and sd."""
        if mean <= 0 or sd <= 0:
            raise ConfigurationError("Lognormal mean and sd must be positive")
        sdlog = math.sqrt(math.log1p(sd**2 / mean**2))
        return cls.lognormal(math.log(mean) - sdlog**2 / 2, sdlog, max)

    @classmethod
    def gamma_from_mean_sd(cls, mean: float, sd: float, max: int) -> "DelayStage":
        """Known gamma delay from its mean and sd."""
        if mean <= 0 or sd <= 0:
            raise ConfigurationError("Gamma mean and sd must be positive")
        return cls.gamma(mean**2 / sd**2, mean / sd**2, max)

    @property
    def param_names(self) -> tuple[str, ...]:
        return PARAM_NAMES[self.family]

    @property
    def positive_params(self) -> tuple[str, ...]:
        return POSITIVE_PARAMS

    @property
    def uncertain(self) -> bool:
        return any(s > 0 for s in self.sd)

    def pmf_from(self, params: Array) -> Array:
        """PMF for one realisation of the parameters."""
        return discretised_pmf(
            self.family, jnp.asarray(params, dtype=jnp.result_type(float)), self.max
        )

    def mean_pmf(self) -> Array:
        """PMF at the prior means as a JAX array, safe inside a traced model."""
        if self.family == "fixed":
            pmf = jnp.asarray(self.pmf)
            return pmf / jnp.sum(pmf)
        return self.pmf_from(jnp.asarray(self.mean))

    def fixed_pmf(self) -> np.ndarray:
        """PMF at the prior means (the exact PMF for known stages)."""
        if self.family == "fixed":
            pmf = np.asarray(self.pmf, dtype=float)
            return pmf / pmf.sum()
        return np.asarray(self.mean_pmf())

    def draw_params(self, rng: np.random.Generator) -> np.ndarray:
        """Draw parameters from their priors, rejecting non-positive values."""
        params = []
        for param, m, s in zip(self.param_names, self.mean, self.sd):
            value = rng.normal(m, s)
            if param in POSITIVE_PARAMS:
                for _ in range(MAX_REJECTIONS):
                    if value > 0:
                        break
                    value = rng.normal(m, s)
                else:
                    raise ConfigurationError(
                        f"Could not draw a positive {self.family} {param} from "
                        f"Normal({m}, {s})"
                    )
            params.append(value)
        return np.asarray(params)

    def __add__(self, other):
        return DelaySpec((self,)) + other


@dataclass(frozen=True)
class DelaySpec:
    """Ordered delay stages with an optional combined maximum."""
    stages: tuple[DelayStage, ...] = ()
    max: int | None = None

    def __post_init__(self):
        if self.max is not None and self.max < 0:
            raise ConfigurationError(f"Combined delay max must be >= 0, got {self.max}")

    def __add__(self, other):
        if isinstance(other, DelayStage):
            other = DelaySpec((other,))
        if not isinstance(other, DelaySpec):
            return NotImplemented
        if self.max is None or other.max is None:
            combined_max = None
        else:
            combined_max = self.max + other.max
        return DelaySpec(self.stages + other.stages, combined_max)

    @property
    def max_delay(self) -> int:
        full = sum(stage.max for stage in self.stages)
        return full if self.max is None else min(self.max, full)

    @property
    def kernel_length(self) -> int:
        return self.max_delay + 1

    @property
    def uncertain(self) -> bool:
        return any(stage.uncertain for stage in self.stages)

    def fixed_pmf(self) -> np.ndarray:
        """Combined PMF with every stage at its prior means."""
        pmfs = [stage.fixed_pmf() for stage in self.stages]
        return np.asarray(convolve_pmfs(pmfs, self.max_delay))

    def draw_pmf(self, rng: np.random.Generator) -> np.ndarray:
        """Combined PMF for one prior draw of the uncertain parameters."""
        pmfs = []
        for stage in self.stages:
            if stage.uncertain:
                pmfs.append(stage.pmf_from(stage.draw_params(rng)))
            else:
                pmfs.append(stage.fixed_pmf())
        return np.asarray(convolve_pmfs(pmfs, self.max_delay))

    def mean(self) -> float:
        """Mean of the combined delay at the prior means."""
        pmf = self.fixed_pmf()
        return float(np.sum(np.arange(pmf.shape[0]) * pmf))
