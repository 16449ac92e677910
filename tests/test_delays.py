"""Tests for delay distributions and their composition."""

import itertools

import jax.numpy as jnp
import numpy as np
import pytest
from numpyro import handlers

from rtcast.delays.convolve import convolve_pmfs, sample_delay_pmf, truncate_pmf
from rtcast.delays.distributions import DelaySpec, DelayStage, discretised_pmf
from rtcast.errors import ConfigurationError


class TestDiscretisedPmf:
    @pytest.mark.parametrize("family,params", [
        ("lognormal", [1.0, 0.5]),
        ("gamma", [2.0, 0.5]),
    ])
    def test_sums_to_one(self, family, params):
        pmf = discretised_pmf(family, jnp.array(params), 20)
        assert pmf.shape == (21,)
        assert jnp.all(pmf >= 0)
        assert jnp.allclose(pmf.sum(), 1.0, atol=1e-5)

    def test_max_zero_is_degenerate(self):
        pmf = discretised_pmf("lognormal", jnp.array([1.0, 0.5]), 0)
        assert jnp.allclose(pmf, jnp.array([1.0]))

    def test_mass_far_beyond_support_is_uniform(self):
        pmf = discretised_pmf("lognormal", jnp.array([50.0, 0.1]), 4)
        assert jnp.allclose(pmf, 0.2, atol=1e-6)


class TestDelayStage:
    def test_fixed_pmf_is_renormalised(self):
        stage = DelayStage.fixed([1.0, 1.0, 2.0])
        np.testing.assert_allclose(stage.fixed_pmf(), [0.25, 0.25, 0.5])
        assert stage.max == 2

    def test_negative_max_rejected(self):
        with pytest.raises(ConfigurationError):
            DelayStage.lognormal(1.0, 0.5, max=-1)

    def test_negative_mass_rejected(self):
        with pytest.raises(ConfigurationError):
            DelayStage.fixed([0.5, -0.1, 0.6])

    def test_zero_total_rejected(self):
        with pytest.raises(ConfigurationError):
            DelayStage.fixed([0.0, 0.0])

    def test_non_finite_prior_rejected(self):
        with pytest.raises(ConfigurationError):
            DelayStage.gamma(float("nan"), 1.0, max=5)

    def test_unknown_family_rejected(self):
        with pytest.raises(ConfigurationError):
            DelayStage("weibull", 5, (1.0, 1.0), (0.0, 0.0))

    def test_uncertain_flag(self):
        assert not DelayStage.lognormal(1.0, 0.5, max=10).uncertain
        assert DelayStage.lognormal(1.0, 0.5, max=10, meanlog_sd=0.1).uncertain

    def test_gamma_from_mean_sd(self):
        stage = DelayStage.gamma_from_mean_sd(4.0, 2.0, max=40)
        pmf = stage.fixed_pmf()
        mean = np.sum(np.arange(41) * pmf)
        # Discretisation shifts the mean by about half a day
        assert 3.0 < mean < 4.5


class TestComposition:
    def _stages(self):
        return [
            DelayStage.lognormal(1.0, 0.6, max=8),
            DelayStage.gamma(3.0, 1.0, max=6),
            DelayStage.fixed([0.2, 0.5, 0.3]),
        ]

    def test_empty_is_identity(self):
        assert jnp.allclose(convolve_pmfs([]), jnp.array([1.0]))
        np.testing.assert_allclose(DelaySpec().fixed_pmf(), [1.0])

    def test_combined_sums_to_one(self):
        spec = DelaySpec(tuple(self._stages()))
        pmf = spec.fixed_pmf()
        assert pmf.shape == (8 + 6 + 2 + 1,)
        assert np.isclose(pmf.sum(), 1.0, atol=1e-5)

    def test_order_independent(self):
        stages = self._stages()
        reference = DelaySpec(tuple(stages)).fixed_pmf()
        for order in itertools.permutations(stages):
            np.testing.assert_allclose(DelaySpec(order).fixed_pmf(), reference, atol=1e-6)

    def test_truncation_renormalises(self):
        spec = DelaySpec(tuple(self._stages()), max=5)
        pmf = spec.fixed_pmf()
        assert pmf.shape == (6,)
        assert np.isclose(pmf.sum(), 1.0, atol=1e-5)

    def test_truncate_pmf(self):
        pmf = truncate_pmf(jnp.array([0.5, 0.25, 0.25]), 1)
        assert jnp.allclose(pmf, jnp.array([2 / 3, 1 / 3]))

    def test_addition(self):
        incubation = DelayStage.lognormal(1.0, 0.5, max=10)
        reporting = DelayStage.gamma(2.0, 1.0, max=5)
        spec = incubation + reporting
        assert isinstance(spec, DelaySpec)
        assert spec.stages == (incubation, reporting)
        assert spec.max_delay == 15
        assert (spec + DelayStage.fixed([1.0])).max_delay == 15

    def test_mean(self):
        spec = DelaySpec((DelayStage.fixed([0.0, 0.0, 1.0]), DelayStage.fixed([0.0, 1.0])))
        assert spec.mean() == pytest.approx(3.0)


class TestUncertainDelays:
    def _spec(self):
        return DelaySpec((
            DelayStage.lognormal(1.0, 0.5, max=10, meanlog_sd=0.2, sdlog_sd=0.1),
            DelayStage.fixed([0.5, 0.5]),
        ))

    def test_sampled_pmf_sums_to_one(self):
        spec = self._spec()
        for seed in range(5):
            with handlers.seed(rng_seed=seed):
                pmf = sample_delay_pmf(spec, "delay")
            assert pmf.shape == (spec.kernel_length,)
            assert jnp.all(pmf >= 0)
            assert jnp.allclose(pmf.sum(), 1.0, atol=1e-5)

    def test_sample_sites_only_for_uncertain_params(self):
        spec = DelaySpec((
            DelayStage.lognormal(1.0, 0.5, max=10, meanlog_sd=0.2),
            DelayStage.gamma(2.0, 1.0, max=5),
        ))
        with handlers.trace() as tr, handlers.seed(rng_seed=0):
            sample_delay_pmf(spec, "delay")
        assert set(tr) == {"delay_0_meanlog"}

    def test_positive_parameters_stay_positive(self):
        spec = DelaySpec((DelayStage.gamma(0.5, 0.5, max=10, shape_sd=2.0, rate_sd=2.0),))
        for seed in range(10):
            with handlers.trace() as tr, handlers.seed(rng_seed=seed):
                pmf = sample_delay_pmf(spec, "delay")
            assert tr["delay_0_shape"]["value"] > 0
            assert tr["delay_0_rate"]["value"] > 0
            assert jnp.all(jnp.isfinite(pmf))

    def test_draw_pmf_varies_and_normalises(self):
        spec = self._spec()
        rng = np.random.default_rng(1)
        first, second = spec.draw_pmf(rng), spec.draw_pmf(rng)
        assert np.isclose(first.sum(), 1.0, atol=1e-5)
        assert np.isclose(second.sum(), 1.0, atol=1e-5)
        assert not np.allclose(first, second)
