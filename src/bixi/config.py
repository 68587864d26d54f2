"""
Per-year configuration for the BIXI trip pipeline.

Each year of BIXI open data ships in one of two layouts:
- separate: trip rows reference a station code, stations come in their own file
- embedded: trip rows carry station name/district/coordinates inline

A YearConfig records which layout a year uses, where its files live
(relative to the input directory), how raw columns map onto canonical
fields and how timestamps are encoded.

Timezone policy (timestamps are decoded to aware instants in `timezone`):
- epoch_ms: integers are UTC instants
- iso_local: strings are local wall-clock time, unless a string carries
  its own offset
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union

from bixi.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

BUCKET_MINUTES = 2
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TIMEZONE = "America/Montreal"

LAYOUT_EMBEDDED = "embedded"
LAYOUT_SEPARATE = "separate"
LAYOUTS = (LAYOUT_EMBEDDED, LAYOUT_SEPARATE)

ENCODING_EPOCH_MS = "epoch_ms"
ENCODING_ISO_LOCAL = "iso_local"
ENCODINGS = (ENCODING_EPOCH_MS, ENCODING_ISO_LOCAL)

# Canonical field names
PASSTHROUGH_FIELDS = ("duration_sec", "is_member")
STATION_FIELDS = ("id", "name", "lat", "long", "district")
REQUIRED_STATION_FIELDS = ("id", "lat", "long")

TRIP_FIELDS = {
    LAYOUT_SEPARATE: ("start_station_id", "start_time", "end_station_id", "end_time"),
    LAYOUT_EMBEDDED: (
        "start_station_name", "start_district", "start_lat", "start_long", "start_time",
        "end_station_name", "end_district", "end_lat", "end_long", "end_time",
    ),
}
REQUIRED_TRIP_FIELDS = {
    LAYOUT_SEPARATE: ("start_station_id", "start_time", "end_station_id", "end_time"),
    LAYOUT_EMBEDDED: ("start_lat", "start_long", "start_time", "end_lat", "end_long", "end_time"),
}

# Fields whose text is whitespace-trimmed during normalization
TEXT_FIELDS = ("name", "district", "start_station_name", "start_district",
               "end_station_name", "end_district")

# A source column is either a header name or a zero-based position
ColumnKey = Union[str, int]


@dataclass(frozen=True)
class YearConfig:
    year: int
    layout: str
    trips_glob: str
    trip_columns: dict
    timestamp_encoding: str
    timezone: str = DEFAULT_TIMEZONE
    stations_file: Optional[str] = None
    station_columns: dict = field(default_factory=dict)

    @property
    def is_embedded(self) -> bool:
        return self.layout == LAYOUT_EMBEDDED


_SEPARATE_TRIPS_2019 = {
    "start_date": "start_time",
    "start_station_code": "start_station_id",
    "end_date": "end_time",
    "end_station_code": "end_station_id",
    "duration_sec": "duration_sec",
    "is_member": "is_member",
}

_EMBEDDED_TRIPS = {
    "STARTSTATIONNAME": "start_station_name",
    "STARTSTATIONARRONDISSEMENT": "start_district",
    "STARTSTATIONLATITUDE": "start_lat",
    "STARTSTATIONLONGITUDE": "start_long",
    "ENDSTATIONNAME": "end_station_name",
    "ENDSTATIONARRONDISSEMENT": "end_district",
    "ENDSTATIONLATITUDE": "end_lat",
    "ENDSTATIONLONGITUDE": "end_long",
    "STARTTIMEMS": "start_time",
    "ENDTIMEMS": "end_time",
}

DEFAULT_YEAR_CONFIGS = {
    2019: YearConfig(
        year=2019,
        layout=LAYOUT_SEPARATE,
        trips_glob="2019/OD_2019-*.csv",
        stations_file="2019/Stations_2019.csv",
        trip_columns=_SEPARATE_TRIPS_2019,
        station_columns={"Code": "id", "name": "name", "latitude": "lat", "longitude": "long"},
        timestamp_encoding=ENCODING_ISO_LOCAL,
    ),
    2020: YearConfig(
        year=2020,
        layout=LAYOUT_SEPARATE,
        trips_glob="2020/OD_2020.csv",
        stations_file="2020/stations.csv",
        trip_columns=_SEPARATE_TRIPS_2019,
        station_columns={"code": "id", "name": "name", "latitude": "lat", "longitude": "long"},
        timestamp_encoding=ENCODING_ISO_LOCAL,
    ),
    2021: YearConfig(
        year=2021,
        layout=LAYOUT_SEPARATE,
        trips_glob="2021/2021_donnees_ouvertes.csv",
        stations_file="2021/2021_stations.csv",
        trip_columns={
            "start_date": "start_time",
            "emplacement_pk_start": "start_station_id",
            "end_date": "end_time",
            "emplacement_pk_end": "end_station_id",
            "duration_sec": "duration_sec",
            "is_member": "is_member",
        },
        station_columns={"pk": "id", "name": "name", "latitude": "lat", "longitude": "long"},
        timestamp_encoding=ENCODING_ISO_LOCAL,
    ),
    2022: YearConfig(
        year=2022,
        layout=LAYOUT_EMBEDDED,
        trips_glob="2022/DonneesOuvertes2022_*.csv",
        trip_columns=_EMBEDDED_TRIPS,
        timestamp_encoding=ENCODING_EPOCH_MS,
    ),
    2023: YearConfig(
        year=2023,
        layout=LAYOUT_EMBEDDED,
        trips_glob="2023/DonneesOuvertes2023_*.csv",
        trip_columns=_EMBEDDED_TRIPS,
        timestamp_encoding=ENCODING_EPOCH_MS,
    ),
}

_CONFIG_KEYS = {
    "layout", "trips_glob", "trip_columns", "timestamp_encoding",
    "timezone", "stations_file", "station_columns",
}


def _parse_columns(raw: dict, year: int, what: str) -> dict:
    """
    Parse a JSON column mapping. Keys of the form "#<n>" address a column
    by zero-based position instead of by header name.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{year}: {what} must be an object")

    columns: dict[ColumnKey, str] = {}
    for source, canonical in raw.items():
        if not isinstance(canonical, str):
            raise ConfigurationError(f"{year}: {what}[{source!r}] must name a canonical field")
        if source.startswith("#") and source[1:].isdigit():
            columns[int(source[1:])] = canonical
        else:
            columns[source] = canonical
    return columns


def check_year_config(config: YearConfig) -> YearConfig:
    """Reject layouts/encodings we don't know how to process."""
    if config.layout not in LAYOUTS:
        raise ConfigurationError(f"{config.year}: unknown layout {config.layout!r}")
    if config.timestamp_encoding not in ENCODINGS:
        raise ConfigurationError(
            f"{config.year}: unknown timestamp encoding {config.timestamp_encoding!r}"
        )
    if config.layout == LAYOUT_SEPARATE and not config.stations_file:
        raise ConfigurationError(f"{config.year}: separate layout needs a stations_file")
    return config


def load_year_configs(path: Path, base: Optional[dict] = None) -> dict[int, YearConfig]:
    """
    Load year configurations from JSON and overlay them on `base`
    (the built-in defaults unless given).

    The document maps years to partial or complete configurations:
        {"2024": {"layout": "embedded", "trips_glob": "2024/*.csv", ...}}
    """
    base = DEFAULT_YEAR_CONFIGS if base is None else base
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(doc, dict):
        raise ConfigurationError(f"{path}: top level must be an object keyed by year")

    configs = dict(base)
    for key, entry in doc.items():
        try:
            year = int(key)
        except ValueError:
            raise ConfigurationError(f"{path}: {key!r} is not a year") from None
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{year}: configuration must be an object")

        unknown = set(entry) - _CONFIG_KEYS
        if unknown:
            raise ConfigurationError(f"{year}: unknown keys {sorted(unknown)}")

        values = dict(entry)
        for name in ("trip_columns", "station_columns"):
            if name in values:
                values[name] = _parse_columns(values[name], year, name)

        if year in configs:
            config = replace(configs[year], **values)
        else:
            missing = {"layout", "trips_glob", "trip_columns", "timestamp_encoding"} - set(values)
            if missing:
                raise ConfigurationError(f"{year}: missing keys {sorted(missing)}")
            config = YearConfig(year=year, **values)

        configs[year] = check_year_config(config)

    return configs
