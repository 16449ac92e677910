"""Tests for forward simulation of reported cases."""

import numpy as np
import pandas as pd
import pytest

from rtcast.delays.distributions import DelaySpec, DelayStage
from rtcast.errors import ConfigurationError, DataError
from rtcast.simulate import report_cases


def _estimates(n_days=10, n_samples=1, value=100.0):
    dates = pd.date_range("2020-03-01", periods=n_days)
    return pd.DataFrame({
        "date": np.tile(dates, n_samples),
        "sample": np.repeat(np.arange(1, n_samples + 1), n_days),
        "cases": value,
    })


ONE_DAY = DelaySpec((DelayStage.fixed([0.0, 1.0]),))


class TestReportCases:
    def test_incubation_and_reporting_delays(self):
        delays = DelaySpec((
            DelayStage.lognormal(1.6, 0.4, max=15),
            DelayStage.gamma_from_mean_sd(3.0, 1.5, max=10),
        ))
        reported = report_cases(_estimates(), delays, seed=1)
        assert len(reported.summarised) == 10
        assert reported.summarised["median"].dtype.kind == "f"
        assert "variable" not in reported.summarised.columns
        assert len(reported.samples) == 10
        assert (reported.samples["cases"] >= 0).all()

    def test_one_day_delay_shifts_reports(self):
        reported = report_cases(_estimates(n_days=5), ONE_DAY, seed=0)
        assert reported.samples["cases"].tolist() == [0, 100, 100, 100, 100]

    def test_sampled_reports_are_whole_counts(self):
        delays = DelaySpec((DelayStage.fixed([0.2, 0.5, 0.3]),))
        reported = report_cases(_estimates(n_samples=3), delays, seed=0)
        cases = reported.samples["cases"].to_numpy()
        np.testing.assert_array_equal(cases, np.round(cases))
        assert len(reported.samples) == 30

    def test_median_type_is_expected_convolution(self):
        delays = DelaySpec((DelayStage.fixed([0.5, 0.5]),))
        reported = report_cases(_estimates(n_days=4, n_samples=2), delays, type="median")
        assert list(reported.samples.columns) == ["date", "cases"]
        np.testing.assert_allclose(reported.samples["cases"], [50, 100, 100, 100])

    def test_reporting_effect_scales_by_weekday(self):
        effect = [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 0.0]
        reported = report_cases(
            _estimates(n_days=7), ONE_DAY, reporting_effect=effect, type="median"
        )
        by_date = reported.samples.set_index("date")["cases"]
        sunday = by_date.index.dayofweek == 6
        assert (by_date[sunday] == 0).all()
        assert by_date[~sunday].iloc[-1] == pytest.approx(100 * 7 / 6)

    @pytest.mark.parametrize("effect", [[1.0] * 6, [1.0] * 6 + [-1.0]])
    def test_invalid_reporting_effect(self, effect):
        with pytest.raises(ConfigurationError):
            report_cases(_estimates(), ONE_DAY, reporting_effect=effect)

    def test_invalid_type(self):
        with pytest.raises(ConfigurationError):
            report_cases(_estimates(), ONE_DAY, type="mean")

    def test_missing_columns(self):
        with pytest.raises(DataError, match="sample"):
            report_cases(_estimates().drop(columns="sample"), ONE_DAY)
