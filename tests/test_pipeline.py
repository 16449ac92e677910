"""Tests for the single-series estimation driver."""

import numpy as np
import pandas as pd
import pytest

from rtcast.config import (
    BackcalcConfig,
    ObservationConfig,
    RtConfig,
    SamplerConfig,
)
from rtcast.delays.distributions import DelaySpec, DelayStage
from rtcast.errors import ConfigurationError, DataError, SamplingFailure
from rtcast.inference.summary import FORECAST
from rtcast.model import build_model_inputs, seeding_days
from rtcast.pipeline import estimate


EXPECTED_VARIABLES = {
    "R", "infections", "expected_reports", "reported_cases", "growth_rate", "doubling_time",
}


class TestModelInputs:
    def test_seeding_days_cover_longest_kernel(self):
        delays = DelaySpec((DelayStage.fixed([0.2, 0.3, 0.5]),))
        gt = DelaySpec((DelayStage.fixed([0.0, 0.5, 0.25, 0.25]),))
        assert seeding_days(delays) == 2
        assert seeding_days(delays, gt) == 3
        assert seeding_days(DelaySpec()) == 1

    def test_layout_and_mask(self, case_factory, unit_generation_time):
        cases = case_factory(n_days=8)
        cases.loc[3, "confirm"] = np.nan
        cases = pd.concat([cases, pd.DataFrame({
            "date": pd.date_range("2020-03-09", periods=2), "confirm": [np.nan] * 2,
        })], ignore_index=True)
        cases["breakpoint"] = 0
        spec, data = build_model_inputs(
            cases, 2, unit_generation_time, DelaySpec(), ObservationConfig(), RtConfig()
        )
        assert spec.layout.n_obs == 8
        assert spec.layout.n_days == 10
        assert data.observed.shape == (8,)
        assert not data.mask[3]
        assert data.observed[3] == 0
        assert data.day_of_week.shape == (10,)
        assert data.initial_guess == pytest.approx(100.0)
        hash(spec)


class TestEstimateFlow:
    def test_summary_structure(self, constant_cases, unit_generation_time, fake_engine):
        result = estimate(
            constant_cases, unit_generation_time, horizon=3, engine=fake_engine
        )
        assert fake_engine.calls == 1
        assert result.mode == "renewal"
        summary = result.summary
        assert set(summary["variable"]) == EXPECTED_VARIABLES
        assert (summary.groupby("variable").size() == 13).all()
        r = summary[summary["variable"] == "R"]
        assert (r["type"] == FORECAST).sum() == 3
        assert result.samples is None
        assert set(result.timing) == {"warmup", "sampling", "summary", "total"}

    def test_constant_series_has_no_growth(
        self, constant_cases, unit_generation_time, fake_engine
    ):
        result = estimate(constant_cases, unit_generation_time, horizon=0, engine=fake_engine)
        growth = result.summary[result.summary["variable"] == "growth_rate"]
        np.testing.assert_allclose(growth["median"], 0.0, atol=1e-12)

    def test_return_samples(self, constant_cases, unit_generation_time, engine_factory):
        result = estimate(
            constant_cases, unit_generation_time, horizon=0,
            engine=engine_factory(n_draws=20), return_samples=True,
        )
        samples = result.samples
        assert list(samples.columns) == ["date", "variable", "sample", "value"]
        assert samples["sample"].max() == 20
        assert len(samples[samples["variable"] == "R"]) == 20 * 10

    def test_partial_result_flagged(self, constant_cases, unit_generation_time, engine_factory):
        result = estimate(
            constant_cases, unit_generation_time, horizon=0,
            engine=engine_factory(timed_out=True),
        )
        assert result.diagnostics.timed_out
        assert any("time limit" in w for w in result.diagnostics.warnings)

    def test_backcalculation(self, constant_cases, unit_generation_time, fake_engine):
        class NoRtEngine:
            def run(self, model, model_kwargs, config):
                output = fake_engine.run(model, model_kwargs, config)
                output.samples.pop("R")
                return output

        result = estimate(
            constant_cases, unit_generation_time, rt=None, horizon=0,
            backcalc=BackcalcConfig(), engine=NoRtEngine(),
        )
        assert result.mode == "backcalc"
        assert "R" not in set(result.summary["variable"])
        assert "infections" in set(result.summary["variable"])


class TestFailFast:
    @pytest.mark.parametrize("kwargs", [
        {"rt": RtConfig(), "backcalc": BackcalcConfig()},
        {"rt": None, "horizon": 7},
        {"horizon": -1},
        {"horizon": 1.5},
        {"credible_levels": (0.5, 1.2)},
        {"sampler": SamplerConfig(method="magic")},
        {"sampler": SamplerConfig(chains=0)},
        {"observation": ObservationConfig(family="normal")},
        {"delays": "lognormal"},
    ])
    def test_configuration_errors_before_sampling(
        self, constant_cases, unit_generation_time, failing_engine, kwargs
    ):
        with pytest.raises(ConfigurationError):
            estimate(constant_cases, unit_generation_time, engine=failing_engine, **kwargs)

    def test_generation_time_needs_positive_lag(self, constant_cases, failing_engine):
        gt = DelaySpec((DelayStage.fixed([1.0]),))
        with pytest.raises(ConfigurationError, match="Generation time"):
            estimate(constant_cases, gt, engine=failing_engine)

    def test_data_errors_before_sampling(
        self, constant_cases, unit_generation_time, failing_engine
    ):
        cases = constant_cases.copy()
        cases.loc[4, "confirm"] = -1
        with pytest.raises(DataError):
            estimate(cases, unit_generation_time, engine=failing_engine)

    def test_zero_time_limit_fails(self, constant_cases, unit_generation_time, fixed_rt):
        sampler = SamplerConfig(max_execution_time=0, chains=2, samples=10, warmup=10)
        with pytest.raises(SamplingFailure, match="0 of 2 chains"):
            estimate(constant_cases, unit_generation_time, rt=fixed_rt, horizon=0,
                     sampler=sampler)


@pytest.mark.slow
class TestEndToEnd:
    def test_nuts_recovers_constant_series(
        self, case_factory, unit_generation_time, fixed_rt, plain_observation
    ):
        cases = case_factory(n_days=10)
        sampler = SamplerConfig(samples=400, warmup=200, chains=2, sampling_batches=2)
        result = estimate(
            cases, unit_generation_time, rt=fixed_rt, observation=plain_observation,
            horizon=0, sampler=sampler,
        )
        summary = result.summary
        r = summary[summary["variable"] == "R"]
        np.testing.assert_allclose(r["median"], 1.0)
        reports = summary[summary["variable"] == "expected_reports"]
        assert reports["median"].between(90, 110).all()
        assert (reports["lower_90"] <= 100).all()
        assert (reports["upper_90"] >= 100).all()
        assert result.diagnostics.n_chains == 2
        assert result.diagnostics.n_draws == 400

    def test_variational_approximation(
        self, case_factory, unit_generation_time, fixed_rt, plain_observation
    ):
        cases = case_factory(n_days=20)
        sampler = SamplerConfig(
            method="vb", samples=200, vb_steps=1500, vb_learning_rate=0.05
        )
        result = estimate(
            cases, unit_generation_time, rt=fixed_rt, observation=plain_observation,
            horizon=0, sampler=sampler,
        )
        assert result.diagnostics.method == "vb"
        reports = result.summary[result.summary["variable"] == "expected_reports"]
        assert reports["median"].between(50, 200).all()

    def test_negative_binomial_mixes_on_poisson_counts(
        self, unit_generation_time, fixed_rt, plain_observation
    ):
        counts = np.random.default_rng(1).poisson(100, 10)
        cases = pd.DataFrame({
            "date": pd.date_range("2020-03-01", periods=10), "confirm": counts,
        })
        sampler = SamplerConfig(samples=400, warmup=300, chains=2, sampling_batches=2)
        result = estimate(
            cases, unit_generation_time, rt=fixed_rt, observation=plain_observation,
            horizon=0, sampler=sampler,
        )
        assert result.diagnostics.treedepth_saturated == 0
        assert not any("tree depth" in w for w in result.diagnostics.warnings)
        assert result.diagnostics.max_rhat < 1.2

    @pytest.mark.parametrize("method", ["sampling", "vb", "laplace"])
    def test_known_parametric_delays(self, case_factory, fixed_rt, method):
        generation_time = DelaySpec((DelayStage.gamma_from_mean_sd(3.6, 3.1, max=10),))
        delays = DelaySpec((DelayStage.lognormal_from_mean_sd(4.0, 2.0, max=10),))
        sampler = SamplerConfig(
            method=method, samples=100, warmup=100, chains=1, sampling_batches=1,
            vb_steps=300, vb_learning_rate=0.05,
        )
        result = estimate(
            case_factory(n_days=20), generation_time, delays=delays, rt=fixed_rt,
            observation=ObservationConfig(family="poisson", week_effect=False),
            horizon=0, sampler=sampler,
        )
        assert result.diagnostics.n_draws == 100
        reports = result.summary[result.summary["variable"] == "expected_reports"]
        assert len(reports) == 20
        assert np.isfinite(reports["median"]).all()
