"""Tests for file input/output and the command-line interface."""

import json

import pandas as pd
import pytest
from click.testing import CliRunner

from rtcast.cli import main
from rtcast.distributed.orchestrator import regional_estimate
from rtcast.errors import DataError
from rtcast.io.reader import read_cases, read_summary
from rtcast.io.writer import write_estimate, write_regional
from rtcast.pipeline import estimate


@pytest.fixture
def result(constant_cases, unit_generation_time, engine_factory):
    return estimate(
        constant_cases, unit_generation_time, horizon=2,
        engine=engine_factory(n_draws=10), return_samples=True,
    )


class TestWriter:
    def test_estimate_layout(self, result, tmp_path):
        out_dir = write_estimate(result, tmp_path, run_date="2020-03-12")
        assert out_dir == tmp_path / "2020-03-12"
        assert (out_dir / "summary.csv").exists()
        assert (out_dir / "samples.csv").exists()

        with open(out_dir / "diagnostics.json") as f:
            record = json.load(f)
        assert record["mode"] == "renewal"
        assert record["n_draws"] == 10
        assert record["max_rhat"] is None
        assert set(record["timing"]) == {"warmup", "sampling", "summary", "total"}

    def test_summary_round_trip(self, result, tmp_path):
        out_dir = write_estimate(result, tmp_path, run_date="latest")
        summary = read_summary(out_dir)
        assert len(summary) == len(result.summary)
        assert summary["date"].dtype.kind == "M"
        assert summary["date"].max() == pd.Timestamp("2020-03-12")

    def test_regional_layout(self, case_factory, unit_generation_time, fake_engine, tmp_path):
        results = regional_estimate(
            {"north": case_factory(), "south": case_factory().iloc[:0]},
            generation_time=unit_generation_time,
            horizon=0,
            engine=fake_engine,
        )
        out_dir = write_regional(results, tmp_path, run_date="2020-03-10")
        assert out_dir == tmp_path / "regional" / "2020-03-10"
        assert (tmp_path / "north" / "2020-03-10" / "summary.csv").exists()
        assert not (tmp_path / "south").exists()

        with open(out_dir / "status.json") as f:
            status = json.load(f)
        assert status["north"]["status"] == "success"
        assert status["south"]["status"] == "failed"
        assert "DataError" in status["south"]["error"]
        assert set(read_summary(out_dir)["region"]) == {"north"}


class TestReader:
    def test_read_cases(self, constant_cases, tmp_path):
        path = tmp_path / "cases.csv"
        constant_cases.to_csv(path, index=False)
        df = read_cases(path)
        assert len(df) == 10
        assert df["date"].dtype.kind == "M"

    def test_missing_region_column(self, constant_cases, tmp_path):
        path = tmp_path / "cases.csv"
        constant_cases.to_csv(path, index=False)
        with pytest.raises(DataError, match="region"):
            read_cases(path, region_col="region")

    def test_missing_files(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_cases(tmp_path / "nope.csv")
        with pytest.raises(FileNotFoundError):
            read_summary(tmp_path)


class TestInspectCommand:
    def test_prints_latest_rows(self, result, tmp_path):
        out_dir = write_estimate(result, tmp_path, run_date="latest")
        runner = CliRunner()
        outcome = runner.invoke(main, ["inspect", str(out_dir), "--variable", "R", "--tail", "3"])
        assert outcome.exit_code == 0, outcome.output
        assert "2020-03-12" in outcome.output
        assert "2020-03-09" not in outcome.output

    def test_unknown_variable(self, result, tmp_path):
        out_dir = write_estimate(result, tmp_path, run_date="latest")
        outcome = CliRunner().invoke(main, ["inspect", str(out_dir), "--variable", "Q"])
        assert outcome.exit_code != 0
        assert "available" in outcome.output

    def test_help_lists_commands(self):
        outcome = CliRunner().invoke(main, ["--help"])
        assert outcome.exit_code == 0
        for command in ("estimate", "regional", "inspect"):
            assert command in outcome.output
