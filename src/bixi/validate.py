"""
Row-level validation of normalized trips.

Nothing here repairs a row: a trip that fails a check is dropped whole and
counted under the first reason that applies. Callers get the surviving
rows plus a {reason: count} dict.

Decoded timestamps are timezone-aware, so ordering and year checks compare
real instants. Only the written files show naive local wall-clock time
(see output.py).
"""

import numpy as np
import pandas as pd

from bixi.config import ENCODING_EPOCH_MS, ENCODING_ISO_LOCAL
from bixi.errors import ConfigurationError


# Checked in this order; a row is attributed to the first match
DROP_REASONS = (
    "null_start_time",
    "null_end_time",
    "inverted_range",
    "before_year",
    "after_year",
)


def coerce_station_ids(frame: pd.DataFrame, columns: tuple) -> tuple[pd.DataFrame, int]:
    """
    Convert station identifier columns to int64, dropping rows where any of
    them is missing or not an integral number (e.g. the 'MTL-ECO5.1-01'
    lab-station placeholder).

    Returns (surviving rows, number of rows dropped).
    """
    keep = pd.Series(True, index=frame.index)
    coerced = {}
    for column in columns:
        text = frame[column].astype(str).str.strip()
        values = pd.to_numeric(text, errors="coerce").astype("float64")
        keep &= np.isfinite(values) & (values == values.round())
        coerced[column] = values

    out = frame[keep].copy()
    for column in columns:
        out[column] = coerced[column][keep].astype("int64")
    return out, int((~keep).sum())


# Offset suffix after a time of day: Z, +05, -0400, +05:30
OFFSET_PATTERN = r"\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?\s*(?:Z|[+-]\d{2}(?::?\d{2})?)$"


def _from_epoch_ms(raw: pd.Series, timezone: str) -> pd.Series:
    millis = pd.to_numeric(raw.astype(str).str.strip(), errors="coerce").astype("float64")
    parsed = pd.to_datetime(millis, unit="ms", utc=True, errors="coerce")
    return parsed.dt.tz_convert(timezone).dt.as_unit("ns")


def _parse_iso(raw: pd.Series, timezone: str) -> tuple[pd.Series, pd.Series]:
    """
    Parse ISO strings in two passes: plain wall-clock strings stay naive,
    strings with an explicit offset become instants in `timezone`. Each row
    is set in at most one of the two results.
    """
    text = raw.astype(str).str.strip()
    has_offset = text.str.contains(OFFSET_PATTERN, regex=True, na=False)
    naive = pd.to_datetime(text.where(~has_offset), errors="coerce", format="ISO8601")
    aware = pd.to_datetime(text.where(has_offset), errors="coerce", format="ISO8601", utc=True)
    return naive.dt.as_unit("ns"), aware.dt.tz_convert(timezone).dt.as_unit("ns")


def _localize(naive: pd.Series, timezone: str, dst: bool) -> pd.Series:
    # Times in the spring-forward gap move to the first valid instant
    ambiguous = np.full(len(naive), dst)
    return naive.dt.tz_localize(timezone, ambiguous=ambiguous, nonexistent="shift_forward")


def decode_timestamps(trips: pd.DataFrame, encoding: str, timezone: str) -> pd.DataFrame:
    """
    Parse start_time/end_time into timezone-aware datetimes in `timezone`.

    epoch_ms values are UTC instants. iso_local strings are local wall-clock
    time unless they carry their own offset. A wall-clock time repeated at
    the autumn change is read as daylight time, except for an end time that
    would then precede its start, which is read as standard time.

    Unparseable values become NaT and are dropped later by validate_year.
    """
    out = trips.copy()
    if encoding == ENCODING_EPOCH_MS:
        out["start_time"] = _from_epoch_ms(out["start_time"], timezone)
        out["end_time"] = _from_epoch_ms(out["end_time"], timezone)
    elif encoding == ENCODING_ISO_LOCAL:
        start_naive, start_aware = _parse_iso(out["start_time"], timezone)
        end_naive, end_aware = _parse_iso(out["end_time"], timezone)

        start = start_aware.where(start_aware.notna(), _localize(start_naive, timezone, True))
        end_dst = _localize(end_naive, timezone, True)
        end_std = _localize(end_naive, timezone, False)
        local_end = end_dst.where(end_dst.isna() | start.isna() | (end_dst >= start), end_std)

        out["start_time"] = start
        out["end_time"] = end_aware.where(end_aware.notna(), local_end)
    else:
        raise ConfigurationError(f"Unknown timestamp encoding {encoding!r}")
    return out


def year_bounds(year: int, timezone=None) -> tuple[pd.Timestamp, pd.Timestamp]:
    """[start of year, start of next year), localized when `timezone` is given."""
    start = pd.Timestamp(year=year, month=1, day=1)
    end = pd.Timestamp(year=year + 1, month=1, day=1)
    if timezone is not None:
        return start.tz_localize(timezone), end.tz_localize(timezone)
    return start, end


def validate_year(trips: pd.DataFrame, year: int) -> tuple[pd.DataFrame, dict]:
    """
    Keep trips with both timestamps present, start <= end, and the whole
    interval inside calendar `year`.

    Ordering is checked on instants, so a trip spanning the autumn clock
    change is kept even though its local end reads earlier than its start.
    """
    start = trips["start_time"]
    end = trips["end_time"]
    year_start, next_year_start = year_bounds(year, start.dt.tz)

    # NaT compares False, so null rows only match their own reason
    checks = {
        "null_start_time": start.isna(),
        "null_end_time": end.isna(),
        "inverted_range": start > end,
        "before_year": start < year_start,
        "after_year": end >= next_year_start,
    }

    remaining = pd.Series(True, index=trips.index)
    drops = {}
    for reason in DROP_REASONS:
        hit = remaining & checks[reason]
        drops[reason] = int(hit.sum())
        remaining &= ~hit

    return trips[remaining].copy(), drops
