"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure src is on the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rtcast.config import Fixed, ObservationConfig, RtConfig, RtPrior
from rtcast.delays.distributions import DelaySpec, DelayStage
from rtcast.types import SamplerOutput, SamplerTiming


class FakeEngine:
    """Sampling engine returning fixed synthetic draws without sampling."""

    def __init__(self, n_draws=50, timed_out=False):
        self.n_draws = n_draws
        self.timed_out = timed_out
        self.calls = 0

    def run(self, model, model_kwargs, config):
        self.calls += 1
        layout = model_kwargs["spec"].layout
        rng = np.random.default_rng(0)
        s = self.n_draws
        samples = {
            "R": np.ones((1, s, layout.n_days)),
            "infections": np.full((1, s, layout.n_total), 100.0),
            "expected_reports": 100.0 + rng.normal(0, 1, (1, s, layout.n_days)),
            "dispersion": np.full((1, s), 0.1),
            "log_I0": rng.normal(np.log(100), 0.01, (1, s)),
        }
        return SamplerOutput(
            samples=samples,
            extra={},
            n_chains_requested=1,
            timed_out=self.timed_out,
            timing=SamplerTiming(0.0, 0.0, 0.0),
            method="vb",
        )


class FailingEngine:
    """Sampling engine that must never be reached."""

    def run(self, model, model_kwargs, config):
        raise AssertionError("sampling engine should not have been called")


def make_cases(n_days=10, value=100.0, start="2020-03-01"):
    return pd.DataFrame({
        "date": pd.date_range(start, periods=n_days, freq="D"),
        "confirm": np.full(n_days, value),
    })


@pytest.fixture
def constant_cases():
    """Ten days of 100 reported cases."""
    return make_cases()


@pytest.fixture
def unit_generation_time():
    """Generation time concentrated on one day."""
    return DelaySpec((DelayStage.fixed([0.0, 1.0]),))


@pytest.fixture
def fixed_rt():
    """Rt fixed at exactly 1."""
    return RtConfig(prior=RtPrior(1.0, 0.0), process=Fixed())


@pytest.fixture
def plain_observation():
    return ObservationConfig(week_effect=False)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def failing_engine():
    return FailingEngine()


@pytest.fixture
def case_factory():
    """Build a case table: case_factory(n_days, value, start)."""
    return make_cases


@pytest.fixture
def engine_factory():
    """Build a FakeEngine: engine_factory(n_draws=50, timed_out=False)."""
    return FakeEngine
