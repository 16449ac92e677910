"""Validation and cleaning of reported case series.

Input is a table with one row per date:

    date        parseable date, strictly increasing, no duplicates
    confirm     non-negative count, missing allowed
    breakpoint  optional 0/1 flag opening a new Rt segment on that date

Gaps between dates are filled with missing counts, leading zeros are
dropped and forecast dates are appended with missing counts.
"""

import logging
import math

import numpy as np
import pandas as pd

from rtcast.errors import DataError

log = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "confirm")


def validate_reported_cases(df: pd.DataFrame) -> pd.DataFrame:
    """Check a raw case table and return it with parsed columns.

    Raises:
        DataError: Missing columns, unparseable or duplicate dates, dates
            out of order, non-numeric or negative counts, or no counts.
    """
    if not isinstance(df, pd.DataFrame):
        raise DataError(f"Reported cases must be a DataFrame, got {type(df).__name__}")
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise DataError(f"Reported cases are missing column(s): {', '.join(missing)}")
    if df.empty:
        raise DataError("Reported cases table is empty")

    df = df.reset_index(drop=True)
    dates = pd.to_datetime(df["date"], errors="coerce")
    bad = dates.isna()
    if bad.any():
        row = int(np.flatnonzero(bad.to_numpy())[0])
        raise DataError(f"Unparseable date {df['date'].iloc[row]!r} in row {row}")
    dates = dates.dt.normalize()

    duplicated = dates[dates.duplicated(keep=False)]
    if not duplicated.empty:
        listed = ", ".join(sorted({d.date().isoformat() for d in duplicated}))
        raise DataError(f"Duplicate dates in reported cases: {listed}")

    steps = dates.diff().dt.days.to_numpy()[1:]
    if np.any(steps < 0):
        row = int(np.flatnonzero(steps < 0)[0]) + 1
        raise DataError(
            f"Dates must be increasing: row {row} ({dates.iloc[row].date()}) "
            f"follows {dates.iloc[row - 1].date()}"
        )

    confirm = pd.to_numeric(df["confirm"], errors="coerce")
    bad = confirm.isna() & df["confirm"].notna()
    if bad.any():
        row = int(np.flatnonzero(bad.to_numpy())[0])
        raise DataError(
            f"Non-numeric count {df['confirm'].iloc[row]!r} on {dates.iloc[row].date()}"
        )
    negative = confirm < 0
    if negative.any():
        row = int(np.flatnonzero(negative.to_numpy())[0])
        raise DataError(
            f"Negative count {confirm.iloc[row]} on {dates.iloc[row].date()} (row {row})"
        )
    if confirm.isna().all():
        raise DataError("All reported counts are missing")

    if "breakpoint" in df.columns:
        breakpoint = pd.to_numeric(df["breakpoint"], errors="coerce").fillna(0)
        breakpoint = (breakpoint != 0).astype(int)
    else:
        breakpoint = pd.Series(0, index=df.index)

    return pd.DataFrame({
        "date": dates,
        "confirm": confirm.astype(float),
        "breakpoint": breakpoint.astype(int),
    })


def create_clean_reported_cases(
    df: pd.DataFrame,
    horizon: int = 0,
    filter_leading_zeros: bool = True,
    zero_threshold: float = math.inf,
) -> pd.DataFrame:
    """Validate and regularise a case series for estimation.

    Args:
        df: Raw table with date, confirm and optional breakpoint columns.
        horizon: Forecast days to append with missing counts.
        filter_leading_zeros: Drop rows before the first positive count.
        zero_threshold: Zero counts following a 7-day mean above this
            value are treated as missing.

    Returns:
        Daily table (date, confirm, breakpoint) covering the observed
        range plus horizon forecast dates.
    """
    cases = validate_reported_cases(df)

    full_range = pd.date_range(cases["date"].iloc[0], cases["date"].iloc[-1], freq="D")
    n_gaps = len(full_range) - len(cases)
    cases = cases.set_index("date").reindex(full_range)
    cases.index.name = "date"
    cases["breakpoint"] = cases["breakpoint"].fillna(0).astype(int)
    if n_gaps:
        log.info(f"Filled {n_gaps} missing dates with missing counts")

    if filter_leading_zeros:
        positive = np.flatnonzero(cases["confirm"].to_numpy() > 0)
        if positive.size and positive[0] > 0:
            log.info(f"Dropped {positive[0]} leading days without positive counts")
            cases = cases.iloc[positive[0]:]

    if math.isfinite(zero_threshold):
        trailing_mean = cases["confirm"].shift(1).rolling(7, min_periods=1).mean()
        implausible = (cases["confirm"] == 0) & (trailing_mean > zero_threshold)
        if implausible.any():
            log.info(f"Treating {int(implausible.sum())} zero counts as missing")
            cases.loc[implausible, "confirm"] = np.nan

    if horizon > 0:
        future = pd.date_range(
            cases.index[-1] + pd.Timedelta(days=1), periods=horizon, freq="D"
        )
        cases = cases.reindex(cases.index.append(future))
        cases.index.name = "date"
        cases["breakpoint"] = cases["breakpoint"].fillna(0).astype(int)

    return cases.reset_index()
