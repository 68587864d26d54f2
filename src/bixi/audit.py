#!/usr/bin/env python3
"""
Report canonical stations that sit suspiciously close to each other.

Deduplication merges stations only on an exact (lat, long) match. This
audit looks for the cases that rule leaves alone: distinct stations within
a few metres of each other, which may be one kiosk recorded with slightly
different coordinates. Nothing is merged here; the output is for review.

For each year:
1. Build a KD-tree over station coordinates
2. Find all pairs within --max-distance-m (haversine)
3. Score name similarity of each pair (rapidfuzz token_sort_ratio)
4. Write near_duplicates_<year>.csv and a JSON log

Usage:
    python -m bixi.audit --year 2022
    python -m bixi.audit --year 2019 --max-distance-m 50
    python -m bixi.audit --stations data/processed/stations_2019.csv
"""

import argparse
import json
import math
import re
import sys
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Optional

try:
    import numpy as np
    import pandas as pd
    from rapidfuzz import fuzz, utils
    from scipy.spatial import cKDTree
except ImportError as e:
    print(f"Missing dependency: {e}")
    print("Run: pip install numpy pandas rapidfuzz scipy")
    sys.exit(1)

from bixi.config import DATA_DIR, LOGS_DIR
from bixi.stations import has_coordinates

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE = 111320
DEFAULT_MAX_DISTANCE_M = 25.0

PAIR_COLUMNS = ["id_a", "name_a", "id_b", "name_b", "distance_m", "name_score"]


def haversine_meters(lat1, lon1, lat2, lon2):
    """Great-circle distance in metres; works on scalars or numpy arrays."""
    phi1, phi2 = np.radians(lat1), np.radians(lat2)
    dphi = np.radians(np.subtract(lat2, lat1))
    dlambda = np.radians(np.subtract(lon2, lon1))
    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def extract_year_from_filename(filename: str) -> int:
    """Extract year from a stations_<year>.csv style filename."""
    match = re.search(r"(\d{4})", filename)
    return int(match.group(1)) if match else 0


def fold_name(name: str) -> str:
    """Lowercase, strip accents and punctuation: "Métro Mont-Royal" -> "metro mont royal"."""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return utils.default_process(stripped)


def name_similarity(a, b) -> Optional[float]:
    if not isinstance(a, str) or not isinstance(b, str):
        return None
    return float(fuzz.token_sort_ratio(fold_name(a), fold_name(b)))


def find_near_duplicates(stations: pd.DataFrame, max_distance_m: float = DEFAULT_MAX_DISTANCE_M) -> pd.DataFrame:
    """
    Pairs of distinct stations at most `max_distance_m` apart, closest first.
    Stations without coordinates are ignored.
    """
    located = stations[has_coordinates(stations)].reset_index(drop=True)
    if len(located) < 2:
        return pd.DataFrame(columns=PAIR_COLUMNS)

    # Scale longitude so one unit is roughly the same distance on both axes
    lon_scale = math.cos(math.radians(located["lat"].mean()))
    coords = np.column_stack([located["lat"], located["long"] * lon_scale])
    tree = cKDTree(coords)

    # A little slack on the degree radius; haversine makes the final cut
    degree_radius = 1.05 * max_distance_m / METERS_PER_DEGREE
    pairs = tree.query_pairs(degree_radius, output_type="ndarray")
    if len(pairs) == 0:
        return pd.DataFrame(columns=PAIR_COLUMNS)

    # Lower id first in each pair so output is stable across runs
    ids = located["id"].to_numpy()
    swap = ids[pairs[:, 0]] > ids[pairs[:, 1]]
    pairs[swap] = pairs[swap][:, ::-1]

    a = located.iloc[pairs[:, 0]].reset_index(drop=True)
    b = located.iloc[pairs[:, 1]].reset_index(drop=True)
    distance = haversine_meters(a["lat"], a["long"], b["lat"], b["long"])

    result = pd.DataFrame({
        "id_a": a["id"],
        "name_a": a["name"],
        "id_b": b["id"],
        "name_b": b["name"],
        "distance_m": np.round(distance, 1),
    })
    result["name_score"] = [name_similarity(x, y) for x, y in zip(a["name"], b["name"])]
    result = result[distance <= max_distance_m]
    return result.sort_values(["distance_m", "id_a", "id_b"]).reset_index(drop=True)


def summarize(pairs: pd.DataFrame, year: int, max_distance_m: float) -> dict:
    scored = pairs["name_score"].dropna()
    return {
        'year': year,
        'max_distance_m': max_distance_m,
        'pairs_found': len(pairs),
        'similar_names': int((scored >= 80).sum()),
        'different_names': int((scored < 50).sum()),
        'closest': pairs.head(10).to_dict("records"),
    }


def print_audit_report(summary: dict):
    """Print a human-readable audit summary."""
    print(f"\n{'='*60}")
    print(f"NEAR-DUPLICATE STATIONS {summary['year']} (within {summary['max_distance_m']:g}m)")
    print(f"{'='*60}")
    print(f"Pairs found: {summary['pairs_found']}")
    print(f"  Similar names (score >= 80): {summary['similar_names']}")
    print(f"  Different names (score < 50): {summary['different_names']}")

    for p in summary['closest']:
        score = "n/a" if pd.isna(p['name_score']) else f"{p['name_score']:.0f}"
        print(f"\n  {p['id_a']} {p['name_a']!s}")
        print(f"  {p['id_b']} {p['name_b']!s}")
        print(f"  Distance: {p['distance_m']:.1f}m | Name score: {score}")


def audit_stations(
    stations: pd.DataFrame,
    year: int,
    output_dir: Path,
    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
) -> dict:
    """Find near duplicates for one year, write the pair CSV and return a summary."""
    pairs = find_near_duplicates(stations, max_distance_m)

    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / f"near_duplicates_{year}.csv"
    pairs.to_csv(csv_path, index=False)

    summary = summarize(pairs, year, max_distance_m)
    summary['output'] = str(csv_path)
    return summary


def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(description="Report near-duplicate stations")
    parser.add_argument("--year", type=int, help="Year to audit (reads stations_<year>.csv)")
    parser.add_argument("--stations", type=Path, help="Explicit stations CSV to audit")
    parser.add_argument("--processed-dir", type=Path, default=DATA_DIR / "processed",
                        help="Directory with stations_<year>.csv files")
    parser.add_argument("--max-distance-m", type=float, default=DEFAULT_MAX_DISTANCE_M,
                        help=f"Pair distance threshold in meters (default: {DEFAULT_MAX_DISTANCE_M:g})")

    args = parser.parse_args(argv)

    if args.stations is None and args.year is None:
        print("Please specify --year YYYY or --stations PATH")
        sys.exit(1)

    stations_path = args.stations or args.processed_dir / f"stations_{args.year}.csv"
    if not stations_path.exists():
        print(f"✗ Stations file not found: {stations_path}")
        print("  Run: python -m bixi.pipeline first")
        sys.exit(1)

    year = args.year or extract_year_from_filename(stations_path.name)
    stations = pd.read_csv(stations_path).rename(columns={"station": "name"})
    summary = audit_stations(stations, year, stations_path.parent, args.max_distance_m)
    print_audit_report(summary)

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_path = LOGS_DIR / f"audit_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    with open(log_path, 'w') as f:
        json.dump({
            'timestamp': datetime.now().isoformat(),
            'stations_file': str(stations_path),
            **summary,
        }, f, indent=2, default=str)

    print(f"\n✓ Pairs written to {summary['output']}")
    print(f"✓ Audit log saved to {log_path}")


if __name__ == "__main__":
    main()
