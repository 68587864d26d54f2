"""
Schema normalization: map a year's raw CSV layout onto canonical fields.

Raw files are read by DuckDB with every column as VARCHAR, so nothing is
parsed or coerced here; numeric and temporal fields come out exactly as
they were written. Text fields (station names, districts) are trimmed.

Columns not named in the mapping are dropped. A required canonical field
that no source column maps to is a configuration error.
"""

from pathlib import Path
from typing import Iterable

import duckdb
import pandas as pd

from bixi.config import (
    PASSTHROUGH_FIELDS,
    REQUIRED_STATION_FIELDS,
    REQUIRED_TRIP_FIELDS,
    STATION_FIELDS,
    TEXT_FIELDS,
    TRIP_FIELDS,
    YearConfig,
)
from bixi.errors import ConfigurationError


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def csv_source(paths: Iterable[Path]) -> str:
    """Build a DuckDB table expression reading all `paths` as text."""
    files = ", ".join(quote_literal(str(p)) for p in paths)
    return f"read_csv_auto([{files}], header=true, all_varchar=true, union_by_name=true)"


def resolve_trip_files(config: YearConfig, input_dir: Path) -> list[Path]:
    files = sorted(input_dir.glob(config.trips_glob))
    if not files:
        raise ConfigurationError(
            f"{config.year}: no trip files match {config.trips_glob!r} in {input_dir}"
        )
    return files


def resolve_station_file(config: YearConfig, input_dir: Path) -> Path:
    if not config.stations_file:
        raise ConfigurationError(f"{config.year}: no stations_file configured")
    path = input_dir / config.stations_file
    if not path.exists():
        raise ConfigurationError(f"{config.year}: stations file not found: {path}")
    return path


def normalize(
    con: duckdb.DuckDBPyConnection,
    source: str,
    column_map: dict,
    fields: tuple,
    required: tuple,
) -> pd.DataFrame:
    """
    Select and rename the mapped columns of `source` (any DuckDB table
    expression or registered relation name).

    `column_map` maps a source header name, or a zero-based column
    position, to one of `fields` or a passthrough field. Returns a frame
    with one column per mapped canonical field.
    """
    available = [row[0] for row in con.execute(f"DESCRIBE SELECT * FROM {source}").fetchall()]
    allowed = set(fields) | set(PASSTHROUGH_FIELDS)

    selected: dict[str, str] = {}
    for key, canonical in column_map.items():
        if canonical not in allowed:
            raise ConfigurationError(f"Unknown canonical field {canonical!r} for column {key!r}")
        if canonical in selected:
            raise ConfigurationError(f"Canonical field {canonical!r} is mapped more than once")

        if isinstance(key, int):
            if not 0 <= key < len(available):
                if canonical in required:
                    raise ConfigurationError(
                        f"Column position {key} for {canonical!r} is out of range "
                        f"({len(available)} columns)"
                    )
                continue
            column = available[key]
        elif key in available:
            column = key
        else:
            if canonical in required:
                raise ConfigurationError(
                    f"Column {key!r} for required field {canonical!r} not found in input "
                    f"(have: {', '.join(available)})"
                )
            print(f"    ⚠ Optional column {key!r} not in input, skipping {canonical}")
            continue

        selected[canonical] = column

    missing = [f for f in required if f not in selected]
    if missing:
        raise ConfigurationError(f"Required fields not mapped: {', '.join(missing)}")

    select_list = []
    for canonical, column in selected.items():
        expr = quote_identifier(column)
        if canonical in TEXT_FIELDS:
            expr = f"NULLIF(TRIM({expr}), '')"
        select_list.append(f"{expr} AS {quote_identifier(canonical)}")

    query = f"SELECT {', '.join(select_list)} FROM {source}"
    return con.execute(query).df()


def normalize_trips(con: duckdb.DuckDBPyConnection, config: YearConfig, input_dir: Path) -> pd.DataFrame:
    """Read and normalize all of a year's trip files."""
    files = resolve_trip_files(config, input_dir)
    print(f"  Reading {len(files)} trip file(s)")
    return normalize(
        con,
        csv_source(files),
        config.trip_columns,
        TRIP_FIELDS[config.layout],
        REQUIRED_TRIP_FIELDS[config.layout],
    )


def normalize_stations(con: duckdb.DuckDBPyConnection, config: YearConfig, input_dir: Path) -> pd.DataFrame:
    """Read and normalize a separate-layout year's station file."""
    path = resolve_station_file(config, input_dir)
    print(f"  Reading stations from {path.name}")
    return normalize(
        con,
        csv_source([path]),
        config.station_columns,
        STATION_FIELDS,
        REQUIRED_STATION_FIELDS,
    )
