"""CSV readers for case series and written summaries."""

import logging
from pathlib import Path

import pandas as pd

from rtcast.errors import DataError

log = logging.getLogger(__name__)


def read_cases(path: Path, region_col: str | None = None) -> pd.DataFrame:
    """Read a case series CSV.

    Args:
        path: CSV with date and confirm columns (and region_col if given).
        region_col: Region column to require, or None for a single series.

    Returns:
        Table with parsed dates.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Case file not found: {path}")
    df = pd.read_csv(path)
    if region_col is not None and region_col not in df.columns:
        raise DataError(f"{path} has no region column {region_col!r}")
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"], errors="coerce")
    log.info(f"Read {len(df)} rows from {path}")
    return df


def read_summary(path: Path) -> pd.DataFrame:
    """Read a summary.csv written by write_estimate or write_regional."""
    path = Path(path)
    if path.is_dir():
        path = path / "summary.csv"
    if not path.exists():
        raise FileNotFoundError(f"Summary not found: {path}")
    return pd.read_csv(path, parse_dates=["date"])
