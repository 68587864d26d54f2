"""
Concurrent-trip counts over fixed-width time buckets.

The span [min(start_time), max(end_time)] is cut into contiguous buckets
of `bucket_minutes` starting at the earliest start. A trip counts toward
bucket b when

    trip.start < bucket_b.end  and  trip.end > bucket_b.start

so each trip covers a contiguous run of bucket indices

    first = floor((start - origin) / width)
    last  = ceil((end - origin) / width) - 1

Instead of joining every trip against every bucket, each trip adds +1 at
`first` and -1 at `last + 1` of a difference array; a cumulative sum then
gives every bucket's count. Cost is O(trips + buckets) time and memory.
"""

import numpy as np
import pandas as pd

from bixi.config import BUCKET_MINUTES

COUNT_COLUMNS = ["bucket_index", "bucket_start", "bucket_end", "count"]


def build_buckets(start: pd.Timestamp, end: pd.Timestamp, bucket_minutes: int = BUCKET_MINUTES) -> pd.DataFrame:
    """Contiguous half-open buckets from `start` covering `end`."""
    if bucket_minutes <= 0:
        raise ValueError("bucket_minutes must be > 0")
    width = pd.Timedelta(minutes=bucket_minutes)
    count = max(int(np.ceil((end - start) / width)), 1)
    starts = pd.date_range(start, periods=count, freq=width)
    return pd.DataFrame({
        "bucket_index": np.arange(count, dtype="int64"),
        "bucket_start": starts,
        "bucket_end": starts + width,
    })


def bucket_ranges(starts: np.ndarray, ends: np.ndarray, origin: np.int64, width: np.int64) -> tuple[np.ndarray, np.ndarray]:
    """
    First and last bucket index (inclusive) each interval overlaps, from
    int64 nanosecond timestamps. An interval that overlaps nothing gets
    last < first.
    """
    first = (starts - origin) // width
    # ceil division on integers
    last = -((origin - ends) // width) - 1
    return first, last


def _nanoseconds(times: pd.Series) -> np.ndarray:
    """int64 nanoseconds since the epoch; aware values are taken as instants."""
    if times.dt.tz is not None:
        times = times.dt.tz_convert("UTC").dt.tz_localize(None)
    return times.to_numpy(dtype="datetime64[ns]").astype("int64")


def _timestamp(nanos: np.int64, tz) -> pd.Timestamp:
    if tz is None:
        return pd.Timestamp(nanos)
    return pd.Timestamp(nanos, tz="UTC").tz_convert(tz)


def count_concurrent(trips: pd.DataFrame, bucket_minutes: int = BUCKET_MINUTES) -> pd.DataFrame:
    """
    Count the trips overlapping each bucket.

    `trips` needs datetime64 start_time/end_time columns with no nulls and
    start_time <= end_time (i.e. the output of validate_year). Aware columns
    are bucketed on real elapsed time, so buckets across a clock change are
    still `bucket_minutes` long; bucket bounds come back in the same zone.
    Returns one row per bucket: bucket_index, bucket_start, bucket_end, count.
    """
    if trips.empty:
        return pd.DataFrame({
            "bucket_index": pd.Series(dtype="int64"),
            "bucket_start": pd.Series(dtype="datetime64[ns]"),
            "bucket_end": pd.Series(dtype="datetime64[ns]"),
            "count": pd.Series(dtype="int64"),
        })

    tz = trips["start_time"].dt.tz
    starts = _nanoseconds(trips["start_time"])
    ends = _nanoseconds(trips["end_time"])

    origin = starts.min()
    buckets = build_buckets(
        _timestamp(origin, tz), _timestamp(ends.max(), tz), bucket_minutes
    )
    n = len(buckets)
    width = np.int64(pd.Timedelta(minutes=bucket_minutes).value)

    first, last = bucket_ranges(starts, ends, origin, width)
    covers = last >= first

    delta = np.bincount(first[covers], minlength=n + 1)
    delta -= np.bincount(last[covers] + 1, minlength=n + 1)
    buckets["count"] = np.cumsum(delta)[:n].astype("int64")
    return buckets[COUNT_COLUMNS]


def peak_concurrency(counts: pd.DataFrame) -> dict:
    """Largest bucket count and when it happened."""
    if counts.empty:
        return {"peak": 0, "bucket_index": None, "bucket_start": None}
    row = counts.loc[counts["count"].idxmax()]
    return {
        "peak": int(row["count"]),
        "bucket_index": int(row["bucket_index"]),
        "bucket_start": row["bucket_start"].isoformat(),
    }
