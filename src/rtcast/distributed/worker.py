"""Per-region worker.

Runs one region's estimate and converts any failure into a RegionOutcome,
so a bad region never aborts its siblings. Designed to be called by Dask,
a process pool or directly.
"""

import logging
import time

import pandas as pd

from rtcast.pipeline import estimate
from rtcast.types import RegionOutcome

log = logging.getLogger(__name__)


def estimate_region(
    region: str,
    reported_cases: pd.DataFrame,
    **estimate_kwargs,
) -> RegionOutcome:
    """Estimate a single region.

    Args:
        region: Region name, used for logging and the outcome.
        reported_cases: The region's case table.
        **estimate_kwargs: Passed to rtcast.pipeline.estimate.

    Returns:
        RegionOutcome with status "success", "partial" (time limit hit,
        result built from the completed chains) or "failed" (error
        captured, no result).
    """
    t0 = time.time()
    log.info(f"Region {region}: starting estimate")
    try:
        result = estimate(reported_cases, **estimate_kwargs)
    except Exception as e:
        log.exception(f"Region {region}: estimate failed")
        return RegionOutcome(
            region=region,
            status="failed",
            result=None,
            error=e,
            elapsed=time.time() - t0,
        )

    status = "partial" if result.diagnostics.timed_out else "success"
    elapsed = time.time() - t0
    log.info(f"Region {region}: {status} in {elapsed:.1f}s")
    return RegionOutcome(
        region=region,
        status=status,
        result=result,
        error=None,
        elapsed=elapsed,
    )
