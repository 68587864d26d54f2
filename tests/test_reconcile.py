from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from bixi.errors import InvariantViolation
from bixi.reconcile import TRIP_COLUMNS, apply_remap, attach_station_ids, check_references
from bixi.stations import dedupe_embedded


def test_apply_remap_rewrites_only_remapped_ids() -> None:
    trips = pd.DataFrame({
        "start_station_id": [5, 2, 9],
        "start_time": ["a", "b", "c"],
        "end_station_id": [7, 5, 5],
        "end_time": ["d", "e", "f"],
    })

    out = apply_remap(trips, {5: 2, 9: 7})

    assert out["start_station_id"].tolist() == [2, 2, 7]
    assert out["end_station_id"].tolist() == [7, 2, 2]
    assert out["start_time"].tolist() == ["a", "b", "c"]
    assert trips["start_station_id"].tolist() == [5, 2, 9]


def test_apply_remap_with_empty_map_is_a_copy() -> None:
    trips = pd.DataFrame({"start_station_id": [1], "end_station_id": [2]})

    out = apply_remap(trips, {})

    pd.testing.assert_frame_equal(out, trips)
    assert out is not trips


def _embedded_trips() -> pd.DataFrame:
    return pd.DataFrame({
        "start_station_name": ["A", "A renamed", "C"],
        "start_district": ["Plateau", "Plateau", None],
        "start_lat": [45.52, 45.52, np.nan],
        "start_long": [-73.58, -73.58, np.nan],
        "start_time": ["t0", "t1", "t2"],
        "end_station_name": ["B", "A", "C"],
        "end_district": ["Ville-Marie", "Plateau", None],
        "end_lat": [45.50, 45.52, np.nan],
        "end_long": [-73.57, -73.58, np.nan],
        "end_time": ["u0", "u1", "u2"],
        "is_member": ["1", "0", "1"],
    })


def test_attach_station_ids_by_coordinate_and_tuple() -> None:
    trips = _embedded_trips()
    stations = dedupe_embedded(trips)

    out = attach_station_ids(trips, stations)

    # A=0, C=1 (unlocated), B=2
    assert out["start_station_id"].tolist() == [0, 0, 1]
    assert out["end_station_id"].tolist() == [2, 0, 1]
    assert list(out.columns) == TRIP_COLUMNS + ["is_member"]
    assert out["start_time"].tolist() == ["t0", "t1", "t2"]


def test_attach_station_ids_rejects_unknown_sides() -> None:
    trips = _embedded_trips()
    stations = dedupe_embedded(trips.iloc[:2])

    with pytest.raises(InvariantViolation, match="start sides"):
        attach_station_ids(trips, stations)


def test_check_references_passes_for_known_ids() -> None:
    trips = pd.DataFrame({"start_station_id": [1, 2], "end_station_id": [2, 1]})
    stations = pd.DataFrame({"id": [1, 2]})

    check_references(trips, stations)


def test_check_references_reports_dangling_ids() -> None:
    trips = pd.DataFrame({"start_station_id": [1, 2], "end_station_id": [2, 99]})
    stations = pd.DataFrame({"id": [1, 2]})

    with pytest.raises(InvariantViolation, match="end_station_id"):
        check_references(trips, stations)
