from __future__ import annotations

from pathlib import Path

import pytest

from bixi.config import DEFAULT_YEAR_CONFIGS, YearConfig, LAYOUT_EMBEDDED, LAYOUT_SEPARATE
from bixi.config import ENCODING_EPOCH_MS, ENCODING_ISO_LOCAL

SEPARATE_TRIPS = """\
start_date,start_station_code,end_date,end_station_code,duration_sec,is_member
2019-04-14 07:55:22,5,2019-04-14 08:05:22,7,600,1
2019-04-14 08:00:00,2,2019-04-14 08:30:00,5,1800,0
2019-04-14 09:00:00,MTL-ECO5.1-01,2019-04-14 09:10:00,7,600,1
2019-04-15 10:00:00,7,2019-04-15 09:00:00,2,-3600,1
2018-12-31 23:50:00,2,2019-01-01 00:10:00,7,1200,1
"""

SEPARATE_STATIONS = """\
Code,name,latitude,longitude
2,A-old,45.50,-73.57
5,A,45.50,-73.57
7,B,45.51,-73.56
MTL-ECO5.1-01,Lab,45.0,-73.0
"""

# 2022-06-01 12:00, 13:00 and 14:00 UTC
EMBEDDED_TRIPS = """\
STARTSTATIONNAME,STARTSTATIONARRONDISSEMENT,STARTSTATIONLATITUDE,STARTSTATIONLONGITUDE,ENDSTATIONNAME,ENDSTATIONARRONDISSEMENT,ENDSTATIONLATITUDE,ENDSTATIONLONGITUDE,STARTTIMEMS,ENDTIMEMS
 Métro A ,Plateau,45.52,-73.58,B,Ville-Marie,45.50,-73.57,1654084800000,1654085400000
Métro A (renamed),Plateau,45.52,-73.58,B,Ville-Marie,45.50,-73.57,1654088400000,1654089600000
Métro A,Plateau,45.52,-73.58,,,,,1654092000000,1654092600000
"""


@pytest.fixture
def separate_config() -> YearConfig:
    return YearConfig(
        year=2019,
        layout=LAYOUT_SEPARATE,
        trips_glob="2019/OD_2019-*.csv",
        stations_file="2019/Stations_2019.csv",
        trip_columns=DEFAULT_YEAR_CONFIGS[2019].trip_columns,
        station_columns=DEFAULT_YEAR_CONFIGS[2019].station_columns,
        timestamp_encoding=ENCODING_ISO_LOCAL,
    )


@pytest.fixture
def embedded_config() -> YearConfig:
    return YearConfig(
        year=2022,
        layout=LAYOUT_EMBEDDED,
        trips_glob="2022/DonneesOuvertes2022_*.csv",
        trip_columns=DEFAULT_YEAR_CONFIGS[2022].trip_columns,
        timestamp_encoding=ENCODING_EPOCH_MS,
    )


@pytest.fixture
def input_dir(tmp_path: Path) -> Path:
    raw = tmp_path / "raw"
    (raw / "2019").mkdir(parents=True)
    (raw / "2022").mkdir(parents=True)
    (raw / "2019" / "OD_2019-04.csv").write_text(SEPARATE_TRIPS, encoding="utf-8")
    (raw / "2019" / "Stations_2019.csv").write_text(SEPARATE_STATIONS, encoding="utf-8")
    (raw / "2022" / "DonneesOuvertes2022_0104.csv").write_text(EMBEDDED_TRIPS, encoding="utf-8")
    return raw
