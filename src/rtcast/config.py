"""Configuration dataclasses for rtcast estimates."""

import math
from dataclasses import dataclass, field

from rtcast.delays.distributions import DelaySpec
from rtcast.errors import ConfigurationError

GP_KERNELS = ("se", "matern32", "matern52", "ou")
GP_ON = ("r_t-1", "r0")
FUTURE_POLICIES = ("project", "latest")
FAMILIES = ("negbin", "poisson")
METHODS = ("sampling", "vb", "laplace")

# Credible interval widths reported in every summary table
DEFAULT_CRIS = (0.2, 0.5, 0.9)


@dataclass(frozen=True)
class GaussianProcess:
    """Low-rank approximate Gaussian process prior.

    Length scale is in days with a truncated normal prior; magnitude has a
    half-normal prior. The number of basis functions is
    ceil(basis_prop * n_days).
    """
    ls_mean: float = 21.0
    ls_sd: float = 7.0
    ls_min: float = 0.0
    ls_max: float = 60.0
    alpha_sd: float = 0.05
    basis_prop: float = 0.2
    boundary_scale: float = 1.5
    kernel: str = "matern32"
    gp_on: str = "r_t-1"  # GP on daily log-Rt changes, or "r0" around initial Rt

    def validate(self) -> None:
        if self.kernel not in GP_KERNELS:
            raise ConfigurationError(
                f"Unknown GP kernel {self.kernel!r}; expected one of {GP_KERNELS}"
            )
        if self.gp_on not in GP_ON:
            raise ConfigurationError(f"gp_on must be one of {GP_ON}, got {self.gp_on!r}")
        if not 0 < self.basis_prop <= 1:
            raise ConfigurationError(f"basis_prop must be in (0, 1], got {self.basis_prop}")
        if self.boundary_scale <= 1:
            raise ConfigurationError(
                f"boundary_scale must be > 1, got {self.boundary_scale}"
            )
        if self.ls_sd <= 0 or self.alpha_sd <= 0:
            raise ConfigurationError("GP prior sds must be positive")
        if not 0 <= self.ls_min < self.ls_max:
            raise ConfigurationError(
                f"Need 0 <= ls_min < ls_max, got {self.ls_min}, {self.ls_max}"
            )


@dataclass(frozen=True)
class RandomWalk:
    """Piecewise-constant log Rt changing every step_length days."""
    step_length: int = 7
    sd_prior: float = 0.1  # Half-normal prior sd of the step size

    def validate(self) -> None:
        if self.step_length < 1:
            raise ConfigurationError(f"step_length must be >= 1, got {self.step_length}")
        if self.sd_prior <= 0:
            raise ConfigurationError("Random walk sd_prior must be positive")


@dataclass(frozen=True)
class Breakpoints:
    """Piecewise-constant log Rt changing at dates flagged in the input data."""
    sd_prior: float = 0.1

    def validate(self) -> None:
        if self.sd_prior <= 0:
            raise ConfigurationError("Breakpoint sd_prior must be positive")


@dataclass(frozen=True)
class Fixed:
    """A single constant Rt over the whole horizon."""

    def validate(self) -> None:
        pass


RtProcess = GaussianProcess | RandomWalk | Breakpoints | Fixed


@dataclass(frozen=True)
class RtPrior:
    """Log-normal prior on the initial Rt, given on the natural scale.

    An sd of 0 fixes the initial Rt at its mean.
    """
    mean: float = 1.0
    sd: float = 1.0

    def validate(self) -> None:
        if self.mean <= 0 or self.sd < 0:
            raise ConfigurationError(
                f"Rt prior needs mean > 0 and sd >= 0, got {self.mean}, {self.sd}"
            )


@dataclass(frozen=True)
class RtConfig:
    """Renewal-mode configuration.

    future: "project" extends the Rt process over the forecast horizon,
        "latest" freezes Rt at its last observed-day value, an integer k
        freezes it at the value k days before the last observation.
    population: enables the susceptible-depletion adjustment on forecast
        days when set.
    infection_noise_sd: sd of log-normal process noise on new infections;
        0 gives deterministic renewal.
    """
    prior: RtPrior = field(default_factory=RtPrior)
    process: RtProcess = field(default_factory=GaussianProcess)
    future: str | int = "latest"
    population: float | None = None
    infection_noise_sd: float = 0.0

    def validate(self) -> None:
        self.prior.validate()
        if not isinstance(self.process, (GaussianProcess, RandomWalk, Breakpoints, Fixed)):
            raise ConfigurationError(f"Unknown Rt process {self.process!r}")
        self.process.validate()
        if isinstance(self.future, bool) or not (
            self.future in FUTURE_POLICIES
            or (isinstance(self.future, int) and self.future >= 0)
        ):
            raise ConfigurationError(
                f"future must be one of {FUTURE_POLICIES} or an int >= 0, "
                f"got {self.future!r}"
            )
        if self.population is not None and self.population <= 0:
            raise ConfigurationError(f"population must be positive, got {self.population}")
        if self.infection_noise_sd < 0:
            raise ConfigurationError("infection_noise_sd must be >= 0")


@dataclass(frozen=True)
class BackcalcConfig:
    """Non-parametric (backcalculation) mode.

    Infections are the reports shifted back by the mean delay, smoothed
    with a centred rolling mean of prior_window days, times exp of a
    Gaussian-process or random-walk deviation.
    """
    prior_window: int = 14
    process: GaussianProcess | RandomWalk = field(
        default_factory=lambda: GaussianProcess(gp_on="r0")
    )

    def validate(self) -> None:
        if self.prior_window < 1:
            raise ConfigurationError(f"prior_window must be >= 1, got {self.prior_window}")
        if not isinstance(self.process, (GaussianProcess, RandomWalk)):
            raise ConfigurationError(
                "Backcalculation supports GaussianProcess or RandomWalk deviations"
            )
        self.process.validate()


@dataclass(frozen=True)
class ObservationConfig:
    """Observation model configuration."""
    family: str = "negbin"
    dispersion_sd: float = 1.0  # Half-normal prior sd of 1/sqrt(phi)
    week_effect: bool = True
    scale_mean: float = 1.0  # Reporting fraction; sd 0 fixes it
    scale_sd: float = 0.0
    weight: float = 1.0  # Likelihood weight
    truncation: DelaySpec | None = None

    def validate(self) -> None:
        if self.family not in FAMILIES:
            raise ConfigurationError(
                f"Unknown observation family {self.family!r}; expected one of {FAMILIES}"
            )
        if self.dispersion_sd <= 0:
            raise ConfigurationError("dispersion_sd must be positive")
        if self.scale_mean <= 0 or self.scale_sd < 0:
            raise ConfigurationError("Reporting scale needs mean > 0 and sd >= 0")
        if self.weight <= 0:
            raise ConfigurationError(f"Likelihood weight must be positive, got {self.weight}")


@dataclass(frozen=True)
class SamplerConfig:
    """Posterior sampling configuration.

    samples is the total number of draws across chains. max_execution_time
    (seconds) is checked between sampling batches; chains that have not
    finished by then are dropped.
    """
    method: str = "sampling"
    samples: int = 2000
    warmup: int = 250
    chains: int = 4
    cores: int = 1
    target_accept: float = 0.95
    max_tree_depth: int = 12
    max_execution_time: float = math.inf
    sampling_batches: int = 10
    vb_steps: int = 5000
    vb_learning_rate: float = 0.01
    seed: int = 0

    @property
    def samples_per_chain(self) -> int:
        return math.ceil(self.samples / self.chains)

    def validate(self) -> None:
        if self.method not in METHODS:
            raise ConfigurationError(
                f"Unknown method {self.method!r}; expected one of {METHODS}"
            )
        if self.samples < 1 or self.chains < 1 or self.cores < 1:
            raise ConfigurationError("samples, chains and cores must be >= 1")
        if self.warmup < 0:
            raise ConfigurationError(f"warmup must be >= 0, got {self.warmup}")
        if not 0 < self.target_accept < 1:
            raise ConfigurationError("target_accept must be in (0, 1)")
        if self.max_execution_time < 0:
            raise ConfigurationError("max_execution_time must be >= 0")
        if self.sampling_batches < 1 or self.vb_steps < 1:
            raise ConfigurationError("sampling_batches and vb_steps must be >= 1")


@dataclass(frozen=True)
class DiagnosticThresholds:
    """Thresholds above/below which a ConvergenceWarning is emitted."""
    max_rhat: float = 1.05
    min_ess: float = 400.0
    max_divergent_fraction: float = 0.0
    max_treedepth_fraction: float = 0.0
