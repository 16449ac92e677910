"""Multi-region dispatch.

Regions are independent: each runs estimate_region with its own case
table and no shared mutable state. Three execution modes:
- Sequential: one region at a time (simple, debuggable)
- Processes: spawned worker processes, up to max_workers at once
- Dask: regions submitted to a local dask.distributed cluster

Regions never share a process concurrently because numpyro's
effect-handler stack is process-global.
"""

import logging
import multiprocessing
import time
from collections.abc import Mapping
from concurrent.futures import ProcessPoolExecutor, as_completed

import pandas as pd

from rtcast.distributed.worker import estimate_region
from rtcast.errors import DataError
from rtcast.types import RegionalResults, RegionOutcome

log = logging.getLogger(__name__)


def split_regions(
    reported_cases: pd.DataFrame | Mapping[str, pd.DataFrame],
    region_col: str = "region",
) -> dict[str, pd.DataFrame]:
    """Split input into one case table per region, in input order."""
    if isinstance(reported_cases, Mapping):
        return {str(region): df for region, df in reported_cases.items()}
    if region_col not in reported_cases.columns:
        raise DataError(f"Reported cases are missing the region column {region_col!r}")
    return {
        str(region): group.drop(columns=region_col).reset_index(drop=True)
        for region, group in reported_cases.groupby(region_col, sort=False)
    }


def regional_estimate(
    reported_cases: pd.DataFrame | Mapping[str, pd.DataFrame],
    region_col: str = "region",
    max_workers: int = 1,
    use_dask: bool = False,
    **estimate_kwargs,
) -> RegionalResults:
    """Estimate every region independently.

    Args:
        reported_cases: Table with a region column, or region -> table.
        region_col: Name of the region column.
        max_workers: Regions processed at once.
        use_dask: Dispatch regions to a dask.distributed cluster.
        **estimate_kwargs: Passed to rtcast.pipeline.estimate.

    Returns:
        RegionalResults with one outcome per region; failed regions carry
        the captured exception.
    """
    regions = split_regions(reported_cases, region_col)
    log.info(f"Estimating {len(regions)} regions")
    t0 = time.time()

    if use_dask:
        outcomes = _run_dask(regions, max_workers, estimate_kwargs)
    elif max_workers > 1 and len(regions) > 1:
        outcomes = _run_processes(regions, max_workers, estimate_kwargs)
    else:
        outcomes = _run_sequential(regions, estimate_kwargs)

    outcomes = {region: outcomes[region] for region in regions}
    summaries = [
        o.result.summary.assign(region=region)
        for region, o in outcomes.items() if o.result is not None
    ]
    if summaries:
        summary = pd.concat(summaries, ignore_index=True)
        summary = summary[["region"] + [c for c in summary.columns if c != "region"]]
    else:
        summary = pd.DataFrame()

    n_failed = sum(o.status == "failed" for o in outcomes.values())
    log.info(
        f"Regional estimates complete in {time.time() - t0:.1f}s: "
        f"{len(outcomes) - n_failed} succeeded, {n_failed} failed"
    )
    return RegionalResults(outcomes=outcomes, summary=summary)


def _run_sequential(regions, estimate_kwargs) -> dict[str, RegionOutcome]:
    return {
        region: estimate_region(region, cases, **estimate_kwargs)
        for region, cases in regions.items()
    }


def _run_processes(regions, max_workers, estimate_kwargs) -> dict[str, RegionOutcome]:
    """Regions on a spawned process pool."""
    outcomes = {}
    context = multiprocessing.get_context("spawn")
    with ProcessPoolExecutor(max_workers=max_workers, mp_context=context) as pool:
        futures = {
            pool.submit(estimate_region, region, cases, **estimate_kwargs): region
            for region, cases in regions.items()
        }
        for future in as_completed(futures):
            region = futures[future]
            try:
                outcomes[region] = future.result()
            except Exception as e:
                # Worker process died or the outcome could not be returned
                log.exception(f"Region {region}: worker failed")
                outcomes[region] = RegionOutcome(region, "failed", None, e, 0.0)
    return outcomes


def _run_dask(regions, max_workers, estimate_kwargs) -> dict[str, RegionOutcome]:
    """Regions on a local dask.distributed cluster."""
    from dask.distributed import Client, as_completed as dask_as_completed

    log.info(f"Dask mode: {max_workers} workers")
    client = Client(n_workers=max_workers, threads_per_worker=1)

    try:
        futures, regions_by_key = [], {}
        for region, cases in regions.items():
            future = client.submit(
                estimate_region, region, cases,
                key=f"region-{region}",
                **estimate_kwargs,
            )
            futures.append(future)
            regions_by_key[future.key] = region

        outcomes = {}
        for future in dask_as_completed(futures):
            region = regions_by_key[future.key]
            try:
                outcomes[region] = future.result()
            except Exception as e:
                log.exception(f"Region {region}: dask task failed")
                outcomes[region] = RegionOutcome(region, "failed", None, e, 0.0)
    finally:
        client.close()

    return outcomes
