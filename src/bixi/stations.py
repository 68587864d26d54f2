"""
Station deduplication by coordinate.

Two stations are the same station when their (lat, long) pair is exactly
equal. Coordinates in the BIXI files are copied from one upstream source,
so equality is compared exactly with no distance tolerance (see audit.py
for a report of stations that are merely close). Names play no part:
renamed and co-located kiosks show up under several names at one point.

Stations with a missing coordinate never match anything and are kept as
their own station.

Separate-file years already have ids; the lowest id in each coordinate
group is kept and every other id is remapped onto it. Embedded years have
no ids yet; stations are projected out of the trip rows, deduplicated, and
numbered 0..n-1 in order of first appearance.
"""

import numpy as np
import pandas as pd

from bixi.errors import InvariantViolation

COORDINATES = ["lat", "long"]
STATION_COLUMNS = ["id", "name", "lat", "long", "district"]
ATTRIBUTES = ["name", "district", "lat", "long"]


def coerce_coordinates(frame: pd.DataFrame, columns: list) -> pd.DataFrame:
    """Parse coordinate columns as floats; anything unparseable becomes NaN."""
    out = frame.copy()
    for column in columns:
        if column in out:
            out[column] = pd.to_numeric(out[column], errors="coerce").astype("float64")
    return out


def has_coordinates(stations: pd.DataFrame) -> pd.Series:
    return stations["lat"].notna() & stations["long"].notna()


def drop_duplicate_ids(stations: pd.DataFrame) -> tuple[pd.DataFrame, int]:
    """Keep the first row for each station id."""
    deduped = stations.drop_duplicates(subset="id", keep="first")
    return deduped, len(stations) - len(deduped)


def flatten_remap(remap: dict) -> dict:
    """
    Resolve chains (a -> b -> c) so every old id points straight at its
    final canonical id.
    """
    flat = {}
    for old in remap:
        seen = {old}
        new = remap[old]
        while new in remap:
            if new in seen:
                raise InvariantViolation(f"Station remap has a cycle through id {new}")
            seen.add(new)
            new = remap[new]
        flat[old] = new
    return flat


def dedupe_stations(stations: pd.DataFrame) -> tuple[pd.DataFrame, dict]:
    """
    Merge stations sharing a coordinate, keeping the lowest id.

    `stations` must have unique integer ids (see drop_duplicate_ids).
    Returns (canonical stations sorted by id, {old_id: canonical_id}).
    Single-member groups and unlocated stations produce no remap entries.
    """
    located = has_coordinates(stations)
    canonical = stations["id"].copy()
    canonical[located] = stations[located].groupby(COORDINATES, sort=False)["id"].transform("min")

    changed = stations["id"] != canonical
    remap = {
        int(old): int(new)
        for old, new in zip(stations.loc[changed, "id"], canonical[changed])
    }

    kept = stations[~changed].sort_values("id", kind="stable").reset_index(drop=True)
    return kept.reindex(columns=STATION_COLUMNS), flatten_remap(remap)


def project_stations(trips: pd.DataFrame) -> pd.DataFrame:
    """
    Collect the distinct (name, district, lat, long) tuples seen on either
    side of embedded-layout trips: all start sides in trip order, then all
    end sides.
    """
    sides = []
    for side in ("start", "end"):
        columns = {
            f"{side}_station_name": "name",
            f"{side}_district": "district",
            f"{side}_lat": "lat",
            f"{side}_long": "long",
        }
        part = trips.reindex(columns=list(columns)).rename(columns=columns)
        sides.append(part)

    return pd.concat(sides, ignore_index=True).drop_duplicates(ignore_index=True)[ATTRIBUTES]


def assign_station_ids(candidates: pd.DataFrame) -> pd.DataFrame:
    """
    Keep the first candidate for each coordinate and number the survivors
    0..n-1 by position. Unlocated candidates are all kept.
    """
    located = has_coordinates(candidates)
    first = ~candidates.duplicated(subset=COORDINATES, keep="first") | ~located
    stations = candidates[first].reset_index(drop=True)
    stations.insert(0, "id", np.arange(len(stations), dtype="int64"))
    return stations.reindex(columns=STATION_COLUMNS)


def dedupe_embedded(trips: pd.DataFrame) -> pd.DataFrame:
    return assign_station_ids(project_stations(trips))


def check_unique_coordinates(stations: pd.DataFrame) -> None:
    """Raise if a canonical station set still has a shared coordinate or id."""
    located = stations[has_coordinates(stations)]
    clashes = located[located.duplicated(subset=COORDINATES, keep=False)]
    if not clashes.empty:
        sample = clashes.head(5)[["id", "lat", "long"]].to_dict("records")
        raise InvariantViolation(f"{len(clashes)} stations share coordinates after dedup: {sample}")
    if stations["id"].duplicated().any():
        raise InvariantViolation("Duplicate station ids after dedup")
