from __future__ import annotations

import builtins
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from bixi.audit import (
    PAIR_COLUMNS,
    audit_stations,
    extract_year_from_filename,
    find_near_duplicates,
    fold_name,
    haversine_meters,
    main,
    name_similarity,
)


def _stations() -> pd.DataFrame:
    # ~11 m of latitude between 1 and 2; 3 is ~1 km away
    return pd.DataFrame({
        "id": [2, 1, 3, 4],
        "name": ["Métro Mont-Royal", "Metro Mont-Royal", "Parc La Fontaine", None],
        "lat": [45.5240, 45.5241, 45.5330, np.nan],
        "long": [-73.5815, -73.5815, -73.5700, np.nan],
        "district": ["Plateau"] * 4,
    })


def test_haversine_meters_known_distance() -> None:
    # one degree of latitude
    assert haversine_meters(45.0, -73.0, 46.0, -73.0) == pytest.approx(111_195, rel=1e-3)
    assert haversine_meters(45.5, -73.5, 45.5, -73.5) == 0


def test_fold_name() -> None:
    assert fold_name("Métro Mont-Royal") == "metro mont royal"
    assert fold_name("  de l'Église ") == "de l eglise"


def test_name_similarity_ignores_case_and_accents() -> None:
    assert name_similarity("Parc A", "parc a") == 100
    assert name_similarity("Métro Mont-Royal", "Metro Mont-Royal") == 100
    assert name_similarity("Mont-Royal / St-Denis", "St-Denis / Mont-Royal") == 100
    assert name_similarity("A", None) is None


def test_extract_year_from_filename() -> None:
    assert extract_year_from_filename("stations_2021.csv") == 2021
    assert extract_year_from_filename("stations.csv") == 0


def test_finds_close_pair_with_lower_id_first() -> None:
    pairs = find_near_duplicates(_stations(), max_distance_m=25)

    assert list(pairs.columns) == PAIR_COLUMNS
    assert len(pairs) == 1
    row = pairs.iloc[0]
    assert (row["id_a"], row["id_b"]) == (1, 2)
    assert row["distance_m"] == pytest.approx(11.1, abs=0.2)
    assert row["name_score"] == 100


def test_threshold_excludes_distant_pairs() -> None:
    assert find_near_duplicates(_stations(), max_distance_m=5).empty
    assert len(find_near_duplicates(_stations(), max_distance_m=2000)) == 3


def test_too_few_located_stations() -> None:
    pairs = find_near_duplicates(_stations().iloc[[0, 3]])

    assert pairs.empty
    assert list(pairs.columns) == PAIR_COLUMNS


def test_audit_stations_writes_csv(tmp_path: Path) -> None:
    summary = audit_stations(_stations(), 2022, tmp_path, max_distance_m=25)

    path = Path(summary["output"])
    assert path == tmp_path / "near_duplicates_2022.csv"
    written = pd.read_csv(path)
    assert written[["id_a", "id_b"]].values.tolist() == [[1, 2]]
    assert summary["pairs_found"] == 1
    assert summary["similar_names"] == 1


def test_main_needs_a_year_or_a_file(monkeypatch: pytest.MonkeyPatch) -> None:
    # exit() is only installed by site; the CLI must not rely on it
    monkeypatch.delattr(builtins, "exit")

    with pytest.raises(SystemExit) as exc:
        main([])

    assert exc.value.code == 1


def test_main_reports_missing_stations_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delattr(builtins, "exit")

    with pytest.raises(SystemExit) as exc:
        main(["--year", "2022", "--processed-dir", str(tmp_path)])

    assert exc.value.code == 1
