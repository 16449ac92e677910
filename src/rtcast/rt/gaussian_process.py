"""Hilbert-space low-rank approximation to a one-dimensional Gaussian process.

A stationary GP on time rescaled to [-1, 1] is approximated by M Laplacian
eigenfunctions on [-L, L]:

    f(x) ~= sum_j sqrt(S(sqrt_lambda_j)) * phi_j(x) * eta_j,  eta_j ~ N(0, 1)

    phi_j(x)         = sin(sqrt_lambda_j * (x + L)) / sqrt(L)
    sqrt_lambda_j    = j * pi / (2 L),  j = 1..M

where S is the spectral density of the kernel. The number of basis
functions scales with the series length, M = max(ceil(basis_prop * n), 1),
and the boundary L is ``boundary_scale``. Length scales are supplied in
days and converted to the rescaled time axis.
"""

import math

import jax.numpy as jnp
import numpyro
import numpyro.distributions as dist

from rtcast.config import GaussianProcess
from rtcast.types import Array


def n_basis_functions(n: int, basis_prop: float) -> int:
    """Number of basis functions for a series of n days."""
    return max(math.ceil(basis_prop * n), 1)


def _half_range(n: int) -> float:
    return max((n - 1) / 2, 0.5)


def basis_functions(n: int, m: int, boundary: float) -> Array:
    """Eigenfunction matrix on n equally spaced points.

    Args:
        n: Number of days.
        m: Number of basis functions.
        boundary: Boundary factor L (> 1).

    Returns:
        (n, m) basis matrix.
    """
    t = jnp.arange(n, dtype=jnp.result_type(float))
    x = (t - (n - 1) / 2) / _half_range(n)
    k = jnp.arange(1, m + 1, dtype=jnp.result_type(float))
    sqrt_lambda = k * jnp.pi / (2 * boundary)
    return jnp.sin(sqrt_lambda[None, :] * (x[:, None] + boundary)) / jnp.sqrt(boundary)


def spectral_density(kernel: str, omega: Array, rho: Array, alpha: Array) -> Array:
    """Spectral density of a 1-D stationary kernel.

    Args:
        kernel: "se", "matern32", "matern52" or "ou".
        omega: Frequencies.
        rho: Length scale on the rescaled axis.
        alpha: Marginal standard deviation.
    """
    if kernel == "se":
        return alpha**2 * jnp.sqrt(2 * jnp.pi) * rho * jnp.exp(-0.5 * (rho * omega) ** 2)
    if kernel == "matern32":
        a = jnp.sqrt(3.0) / rho
        return alpha**2 * 4 * a**3 / (a**2 + omega**2) ** 2
    if kernel == "matern52":
        a = jnp.sqrt(5.0) / rho
        return alpha**2 * (16.0 / 3.0) * a**5 / (a**2 + omega**2) ** 3
    if kernel == "ou":
        a = 1.0 / rho
        return alpha**2 * 2 * a / (a**2 + omega**2)
    raise ValueError(f"Unknown GP kernel {kernel!r}")


def gp_trajectory(
    eta: Array,
    length_scale: Array,
    alpha: Array,
    n: int,
    config: GaussianProcess,
) -> Array:
    """Map standard-normal basis weights to a GP draw over n days.

    Args:
        eta: (M,) basis weights, M = n_basis_functions(n, config.basis_prop).
        length_scale: Length scale in days.
        alpha: Marginal standard deviation.
        n: Number of days.
        config: GP configuration (kernel, boundary).

    Returns:
        (n,) approximate GP values.
    """
    m = eta.shape[0]
    rho = length_scale / _half_range(n)
    k = jnp.arange(1, m + 1, dtype=jnp.result_type(float))
    sqrt_lambda = k * jnp.pi / (2 * config.boundary_scale)
    weights = jnp.sqrt(spectral_density(config.kernel, sqrt_lambda, rho, alpha))
    return basis_functions(n, m, config.boundary_scale) @ (weights * eta)


def sample_gp(config: GaussianProcess, n: int, name: str) -> Array:
    """Sample GP hyperparameters and weights and return a draw over n days."""
    length_scale = numpyro.sample(
        f"{name}_gp_length_scale",
        dist.TruncatedNormal(
            config.ls_mean, config.ls_sd, low=config.ls_min, high=config.ls_max
        ),
    )
    alpha = numpyro.sample(f"{name}_gp_alpha", dist.HalfNormal(config.alpha_sd))
    m = n_basis_functions(n, config.basis_prop)
    eta = numpyro.sample(f"{name}_gp_eta", dist.Normal(0.0, 1.0).expand([m]).to_event(1))
    return gp_trajectory(eta, length_scale, alpha, n, config)
