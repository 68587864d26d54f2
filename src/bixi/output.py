"""
Write canonical per-year tables as CSV via DuckDB.

- trips_<year>.csv: start_station_id, start_time, end_station_id, end_time
  (+ passthrough fields)
- stations_<year>.csv: id, station, lat, long, district
- concurrency_<year>.csv: bucket_index, bucket_start, bucket_end, count

Timestamps are written as '%Y-%m-%d %H:%M:%S' local wall-clock time with
no offset. Trips are validated and bucketed on instants, so a trip across
the autumn clock change can read as ending before it starts, and the
repeated hour shows bucket starts that go back by one hour. Each file is
written to a temporary name first and renamed into place.
"""

from pathlib import Path

import duckdb
import pandas as pd

from bixi.config import PASSTHROUGH_FIELDS, TIMESTAMP_FORMAT
from bixi.normalize import quote_identifier, quote_literal


def output_paths(output_dir: Path, year: int) -> dict[str, Path]:
    return {
        "trips": output_dir / f"trips_{year}.csv",
        "stations": output_dir / f"stations_{year}.csv",
        "concurrency": output_dir / f"concurrency_{year}.csv",
    }


def _timestamp(column: str) -> str:
    name = quote_identifier(column)
    return f"strftime(CAST({name} AS TIMESTAMP), {quote_literal(TIMESTAMP_FORMAT)}) AS {name}"


def _wall_clock(frame: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """Drop the zone from aware columns, keeping their local reading."""
    out = frame.copy()
    for column in columns:
        if out[column].dt.tz is not None:
            out[column] = out[column].dt.tz_localize(None)
    return out


def _copy(con: duckdb.DuckDBPyConnection, frame: pd.DataFrame, select_list: list[str], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")

    con.register("frame_out", frame)
    try:
        con.execute(f"""
            COPY (SELECT {', '.join(select_list)} FROM frame_out)
            TO {quote_literal(str(tmp_path))} (FORMAT CSV, HEADER, DELIMITER ',')
        """)
    finally:
        con.unregister("frame_out")

    tmp_path.replace(path)
    return path


def write_trips(con: duckdb.DuckDBPyConnection, trips: pd.DataFrame, path: Path) -> Path:
    select_list = [
        "start_station_id",
        _timestamp("start_time"),
        "end_station_id",
        _timestamp("end_time"),
    ]
    select_list += [quote_identifier(c) for c in PASSTHROUGH_FIELDS if c in trips.columns]
    frame = _wall_clock(trips, ["start_time", "end_time"])
    return _copy(con, frame, select_list, path)


def write_stations(con: duckdb.DuckDBPyConnection, stations: pd.DataFrame, path: Path) -> Path:
    select_list = ["id", "name AS station", "lat", '"long"', "district"]
    return _copy(con, stations, select_list, path)


def write_concurrency(con: duckdb.DuckDBPyConnection, counts: pd.DataFrame, path: Path) -> Path:
    select_list = [
        "bucket_index",
        _timestamp("bucket_start"),
        _timestamp("bucket_end"),
        '"count"',
    ]
    frame = _wall_clock(counts, ["bucket_start", "bucket_end"])
    return _copy(con, frame, select_list, path)
