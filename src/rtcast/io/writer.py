"""File output for estimates.

Layout, one directory per run date:

    <target>/<run_date>/summary.csv
    <target>/<run_date>/samples.csv        (when draws were returned)
    <target>/<run_date>/diagnostics.json

Regional runs write one such directory per region plus a combined
summary and a per-region status file.
"""

import datetime
import json
import logging
import math
from pathlib import Path

from rtcast.types import EstimationResult, RegionalResults

log = logging.getLogger(__name__)


def _json_number(value: float):
    return value if math.isfinite(value) else None


def diagnostics_record(result: EstimationResult) -> dict:
    """JSON-serialisable diagnostics and timing."""
    d = result.diagnostics
    return {
        "mode": result.mode,
        "method": d.method,
        "n_chains": d.n_chains,
        "n_chains_requested": d.n_chains_requested,
        "n_draws": d.n_draws,
        "divergent_transitions": d.divergent_transitions,
        "treedepth_saturated": d.treedepth_saturated,
        "max_rhat": _json_number(d.max_rhat),
        "min_ess": _json_number(d.min_ess),
        "timed_out": d.timed_out,
        "warnings": list(d.warnings),
        "timing": {k: round(v, 3) for k, v in result.timing.items()},
    }


def write_estimate(
    result: EstimationResult,
    target_dir: Path,
    run_date: datetime.date | str | None = None,
) -> Path:
    """Write an estimate under target_dir/run_date.

    Returns:
        The run directory.
    """
    run_date = run_date or datetime.date.today()
    out_dir = Path(target_dir) / str(run_date)
    out_dir.mkdir(parents=True, exist_ok=True)

    result.summary.to_csv(out_dir / "summary.csv", index=False)
    if result.samples is not None:
        result.samples.to_csv(out_dir / "samples.csv", index=False)
    with open(out_dir / "diagnostics.json", "w") as f:
        json.dump(diagnostics_record(result), f, indent=2)

    log.info(f"Estimate written to {out_dir}")
    return out_dir


def write_regional(
    results: RegionalResults,
    target_dir: Path,
    run_date: datetime.date | str | None = None,
) -> Path:
    """Write every region's estimate plus a combined summary.

    Returns:
        The combined run directory.
    """
    run_date = run_date or datetime.date.today()
    target_dir = Path(target_dir)
    status = {}
    for region, outcome in results.outcomes.items():
        status[region] = {
            "status": outcome.status,
            "elapsed": round(outcome.elapsed, 3),
            "error": repr(outcome.error) if outcome.error is not None else None,
        }
        if outcome.result is not None:
            write_estimate(outcome.result, target_dir / region, run_date)

    out_dir = target_dir / "regional" / str(run_date)
    out_dir.mkdir(parents=True, exist_ok=True)
    results.summary.to_csv(out_dir / "summary.csv", index=False)
    with open(out_dir / "status.json", "w") as f:
        json.dump(status, f, indent=2)

    log.info(f"Regional summary written to {out_dir}")
    return out_dir
