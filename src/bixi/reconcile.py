"""
Point trip station references at canonical stations.

Separate-file years: rewrite start/end station ids through the remap
produced by dedupe_stations. Embedded years: look each trip side up by its
coordinate (or, when the coordinate is missing, by its full attribute
tuple) in the station set built by dedupe_embedded.

Only the two reference columns change; every other trip field is copied
through as is.
"""

import pandas as pd

from bixi.errors import InvariantViolation
from bixi.stations import ATTRIBUTES, COORDINATES, has_coordinates

REFERENCE_COLUMNS = ("start_station_id", "end_station_id")
TRIP_COLUMNS = ["start_station_id", "start_time", "end_station_id", "end_time"]


def apply_remap(trips: pd.DataFrame, remap: dict) -> pd.DataFrame:
    """Replace every station id found in `remap`; other ids pass through."""
    out = trips.copy()
    if not remap:
        return out

    for column in REFERENCE_COLUMNS:
        ids = out[column]
        replaced = ids.map(remap)
        out[column] = replaced.where(replaced.notna(), ids).astype("int64")
    return out


def _side_attributes(trips: pd.DataFrame, side: str) -> pd.DataFrame:
    columns = {
        f"{side}_station_name": "name",
        f"{side}_district": "district",
        f"{side}_lat": "lat",
        f"{side}_long": "long",
    }
    return trips.reindex(columns=list(columns)).rename(columns=columns).reset_index(drop=True)


def attach_station_ids(trips: pd.DataFrame, stations: pd.DataFrame) -> pd.DataFrame:
    """
    Give embedded-layout trips start/end station ids and drop the inline
    station attributes.
    """
    located = stations.loc[has_coordinates(stations), COORDINATES + ["id"]]
    unlocated = stations.loc[~has_coordinates(stations), ATTRIBUTES + ["id"]]

    out = trips.copy()
    for side in ("start", "end"):
        attributes = _side_attributes(trips, side)
        by_coordinate = attributes.merge(located, on=COORDINATES, how="left")["id"]
        # merge treats missing values as equal keys, which is what identifies
        # an unlocated station by its whole tuple
        by_tuple = attributes.merge(unlocated, on=ATTRIBUTES, how="left")["id"]
        ids = by_coordinate.where(has_coordinates(attributes), by_tuple)

        if ids.isna().any():
            raise InvariantViolation(
                f"{int(ids.isna().sum())} trip {side} sides match no projected station"
            )
        out[f"{side}_station_id"] = ids.astype("int64").to_numpy()

    extras = [c for c in out.columns if c not in TRIP_COLUMNS and not _is_station_attribute(c)]
    return out[TRIP_COLUMNS + extras]


def _is_station_attribute(column: str) -> bool:
    return any(column == f"{side}_{name}" for side in ("start", "end")
               for name in ("station_name", "district", "lat", "long"))


def check_references(trips: pd.DataFrame, stations: pd.DataFrame) -> None:
    """Raise if any trip references a station id not in `stations`."""
    known = stations["id"]
    for column in REFERENCE_COLUMNS:
        dangling = trips.loc[~trips[column].isin(known), column]
        if not dangling.empty:
            sample = sorted(dangling.unique().tolist())[:10]
            raise InvariantViolation(
                f"{len(dangling):,} trips have a {column} missing from the station set "
                f"(e.g. {sample})"
            )
