"""Exception and warning taxonomy for rtcast.

Hard errors are raised before any sampling starts (configuration and data
problems) or when the sampling engine returns nothing usable. Convergence
problems are soft: they are emitted as warnings and recorded in the result
diagnostics.
"""


class ConfigurationError(ValueError):
    """Incompatible or invalid model options."""


class DataError(ValueError):
    """Malformed input case series."""


class SamplingFailure(RuntimeError):
    """The sampling engine returned zero usable draws."""


class ConvergenceWarning(UserWarning):
    """Sampling diagnostics breached a threshold; the result is still returned."""
