"""Tests for the observation model."""

import jax.numpy as jnp
import numpy as np
from jax.scipy.stats import poisson
from numpyro.infer.util import log_density

from rtcast.observation.likelihood import predictive_reports, report_likelihood
from rtcast.observation.reports import (
    convolve_to_reports,
    day_of_week_effect,
    truncate_reports,
)


class TestConvolution:
    def test_identity_kernel(self):
        infections = jnp.arange(1.0, 8.0)
        reports = convolve_to_reports(infections, jnp.array([1.0]), 2, 5)
        assert jnp.allclose(reports, infections[2:])

    def test_one_day_delay_shifts(self):
        infections = jnp.arange(1.0, 8.0)
        reports = convolve_to_reports(infections, jnp.array([0.0, 1.0]), 2, 5)
        assert jnp.allclose(reports, infections[1:6])

    def test_mass_preserved_in_steady_state(self):
        infections = jnp.full(20, 50.0)
        reports = convolve_to_reports(infections, jnp.array([0.2, 0.5, 0.3]), 2, 18)
        assert jnp.allclose(reports, 50.0)


class TestDayOfWeek:
    def test_uniform_simplex_is_identity(self):
        reports = jnp.full(14, 10.0)
        out = day_of_week_effect(reports, jnp.full(7, 1 / 7), np.arange(14) % 7)
        assert jnp.allclose(out, 10.0)

    def test_weekly_mean_is_one(self):
        simplex = jnp.array([0.3, 0.1, 0.1, 0.1, 0.1, 0.1, 0.2])
        out = day_of_week_effect(jnp.ones(7), simplex, np.arange(7))
        assert jnp.isclose(out.mean(), 1.0)
        assert jnp.isclose(out[0], 2.1)


class TestTruncation:
    def test_recent_days_scaled_by_cdf(self):
        reports = jnp.ones(7)
        out = truncate_reports(reports, jnp.array([0.5, 0.25, 0.25]), n_obs=5)
        assert jnp.allclose(out, jnp.array([1, 1, 1, 0.75, 0.5, 1, 1.0]))

    def test_kernel_longer_than_series(self):
        out = truncate_reports(jnp.ones(2), jnp.array([0.25, 0.25, 0.25, 0.25]), n_obs=2)
        assert jnp.allclose(out, jnp.array([0.5, 0.25]))


class TestLikelihood:
    expected = jnp.array([10.0, 10.0, 10.0])
    mask = jnp.array([True, False, True])

    def _log_density(self, observed, family="negbin", weight=1.0, mask=None):
        def model(obs):
            report_likelihood(
                self.expected, obs, self.mask if mask is None else mask,
                family=family, weight=weight,
            )
        params = {"dispersion": jnp.array(0.5)} if family == "negbin" else {}
        value, _ = log_density(model, (observed,), {}, params)
        return value

    def test_missing_days_excluded(self):
        a = self._log_density(jnp.array([10.0, 0.0, 12.0]))
        b = self._log_density(jnp.array([10.0, 1000.0, 12.0]))
        assert jnp.isclose(a, b)

    def test_observed_days_included(self):
        a = self._log_density(jnp.array([10.0, 0.0, 12.0]))
        b = self._log_density(jnp.array([10.0, 0.0, 1000.0]))
        assert a > b

    def test_weight_scales_log_likelihood(self):
        obs = jnp.array([8.0, 0.0, 12.0])
        one = self._log_density(obs, family="poisson")
        two = self._log_density(obs, family="poisson", weight=2.0)
        assert jnp.isclose(two, 2 * one, rtol=1e-5)

    def test_poisson_matches_direct(self):
        obs = jnp.array([8.0, 9.0, 12.0])
        value = self._log_density(obs, family="poisson", mask=jnp.ones(3, dtype=bool))
        assert jnp.isclose(value, poisson.logpmf(obs, 10.0).sum(), rtol=1e-5)


class TestPredictive:
    def test_poisson_shape_and_mean(self):
        rng = np.random.default_rng(0)
        counts = predictive_reports(rng, np.full((4000, 3), 20.0))
        assert counts.shape == (4000, 3)
        assert np.all(counts >= 0)
        assert abs(counts.mean() - 20.0) < 0.5

    def test_overdispersed_variance(self):
        rng = np.random.default_rng(0)
        expected = np.full((20000, 1), 20.0)
        counts = predictive_reports(rng, expected, np.full(20000, 0.5))
        # NB variance is mu + mu^2 / phi with phi = 4
        assert abs(counts.var() - (20 + 400 / 4)) < 15
