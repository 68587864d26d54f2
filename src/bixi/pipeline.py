#!/usr/bin/env python3
"""
Main ETL pipeline for BIXI Montréal trip data.

Reads each year's raw CSVs, normalizes the year's schema, deduplicates
stations by coordinate, points trips at canonical stations, drops invalid
trips and counts concurrent trips per 2-minute bucket.

Per year (see config.py for layouts):
- separate layout (station file keyed by code):
    normalize trips + stations -> coerce ids -> dedupe stations (lowest id
    wins) -> remap trip station ids
- embedded layout (station name/coords inline in trips):
    normalize trips -> project stations from both trip sides -> dedupe by
    coordinate, number 0..n-1 -> attach ids to trips
then for both:
    decode timestamps -> drop invalid/out-of-year trips -> concurrency

Outputs (in --output-dir):
- trips_<year>.csv, stations_<year>.csv, concurrency_<year>.csv
- near_duplicates_<year>.csv with --audit

Years are independent: a year that fails is reported and skipped, the
others still run. Nothing is written for a year until all its stages pass.

Usage:
    python -m bixi.pipeline                         # all configured years
    python -m bixi.pipeline --years 2019 2022
    python -m bixi.pipeline --config years.json --force
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

try:
    import duckdb
    from tqdm import tqdm
except ImportError as e:
    print(f"Missing dependency: {e}")
    print("Run: pip install duckdb tqdm")
    sys.exit(1)

from bixi.audit import DEFAULT_MAX_DISTANCE_M, audit_stations
from bixi.concurrency import count_concurrent, peak_concurrency
from bixi.config import (
    BUCKET_MINUTES,
    DATA_DIR,
    DEFAULT_YEAR_CONFIGS,
    LOGS_DIR,
    YearConfig,
    load_year_configs,
)
from bixi.errors import PipelineError
from bixi.normalize import normalize_stations, normalize_trips
from bixi.output import output_paths, write_concurrency, write_stations, write_trips
from bixi.reconcile import REFERENCE_COLUMNS, apply_remap, attach_station_ids, check_references
from bixi.stations import (
    COORDINATES,
    assign_station_ids,
    check_unique_coordinates,
    coerce_coordinates,
    dedupe_stations,
    drop_duplicate_ids,
    project_stations,
)
from bixi.validate import DROP_REASONS, coerce_station_ids, decode_timestamps, validate_year

TRIP_COORDINATES = ["start_lat", "start_long", "end_lat", "end_long"]


def new_stats(config: YearConfig) -> dict:
    return {
        'year': config.year,
        'layout': config.layout,
        'rows_in': 0,
        'rows_out': 0,
        'rows_filtered': {
            'non_numeric_station_id': 0,
            **{reason: 0 for reason in DROP_REASONS},
        },
        'stations': {
            'rows_in': 0,
            'non_numeric_id': 0,
            'duplicate_station_id': 0,
            'canonical': 0,
            'remapped_ids': 0,
        },
        'concurrency': {},
        'outputs': {},
    }


def build_separate(con: duckdb.DuckDBPyConnection, config: YearConfig, input_dir: Path, trips, stats: dict):
    """Stations from their own file; trips carry station codes."""
    raw_stations = normalize_stations(con, config, input_dir)
    stats['stations']['rows_in'] = len(raw_stations)

    raw_stations, dropped = coerce_station_ids(raw_stations, ("id",))
    stats['stations']['non_numeric_id'] = dropped
    raw_stations, duplicates = drop_duplicate_ids(raw_stations)
    stats['stations']['duplicate_station_id'] = duplicates
    raw_stations = coerce_coordinates(raw_stations, COORDINATES)

    stations, remap = dedupe_stations(raw_stations)
    stats['stations']['remapped_ids'] = len(remap)

    trips, dropped = coerce_station_ids(trips, REFERENCE_COLUMNS)
    stats['rows_filtered']['non_numeric_station_id'] = dropped
    if dropped:
        print(f"    ⚠ Dropped {dropped:,} trips with non-numeric station ids")

    return apply_remap(trips, remap), stations


def build_embedded(trips, stats: dict):
    """Stations projected out of the trip rows themselves."""
    trips = coerce_coordinates(trips, TRIP_COORDINATES)
    candidates = project_stations(trips)
    stats['stations']['rows_in'] = len(candidates)

    stations = assign_station_ids(candidates)
    return attach_station_ids(trips, stations), stations


def process_year(
    con: duckdb.DuckDBPyConnection,
    config: YearConfig,
    input_dir: Path,
    output_dir: Path,
    bucket_minutes: int = BUCKET_MINUTES,
    audit: bool = False,
    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
) -> dict:
    """Run every stage for one year and write its outputs. Returns stats."""
    stats = new_stats(config)

    trips = normalize_trips(con, config, input_dir)
    stats['rows_in'] = len(trips)

    if config.is_embedded:
        trips, stations = build_embedded(trips, stats)
    else:
        trips, stations = build_separate(con, config, input_dir, trips, stats)

    check_unique_coordinates(stations)
    check_references(trips, stations)
    stats['stations']['canonical'] = len(stations)

    trips = decode_timestamps(trips, config.timestamp_encoding, config.timezone)
    trips, drops = validate_year(trips, config.year)
    stats['rows_filtered'].update(drops)
    stats['rows_out'] = len(trips)

    counts = count_concurrent(trips, bucket_minutes)
    stats['concurrency'] = {
        'bucket_minutes': bucket_minutes,
        'buckets': len(counts),
        **peak_concurrency(counts),
    }

    paths = output_paths(output_dir, config.year)
    write_stations(con, stations, paths['stations'])
    write_concurrency(con, counts, paths['concurrency'])

    if audit:
        audit_summary = audit_stations(stations, config.year, output_dir, max_distance_m)
        stats['near_duplicates'] = {
            'pairs_found': audit_summary['pairs_found'],
            'output': audit_summary['output'],
        }

    # Trips last: its presence marks the year as done
    write_trips(con, trips, paths['trips'])
    stats['outputs'] = {name: str(path) for name, path in paths.items()}

    return stats


def print_year_summary(stats: dict):
    filtered = stats['rows_in'] - stats['rows_out']
    filter_pct = 100 * filtered / max(stats['rows_in'], 1)
    st = stats['stations']
    print(f"    {stats['rows_in']:,} → {stats['rows_out']:,} trips ({filter_pct:.1f}% filtered)")
    for reason, count in stats['rows_filtered'].items():
        if count:
            print(f"      {reason}: {count:,}")
    print(f"    {st['rows_in']:,} → {st['canonical']:,} stations ({st['remapped_ids']:,} ids remapped)")
    conc = stats['concurrency']
    if conc.get('bucket_start'):
        print(f"    Peak concurrency: {conc['peak']:,} trips at {conc['bucket_start']}")


def run(
    configs: dict,
    years: list[int],
    input_dir: Path,
    output_dir: Path,
    bucket_minutes: int = BUCKET_MINUTES,
    force: bool = False,
    audit: bool = False,
    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
) -> list[dict]:
    """Process `years` one after another; failures are recorded, not raised."""
    all_stats = []

    for year in tqdm(years, desc="Years", unit="year"):
        trips_path = output_paths(output_dir, year)['trips']
        if trips_path.exists() and not force:
            print(f"\n[{year}] skipped - output exists")
            all_stats.append({'year': year, 'skipped': True})
            continue

        print(f"\n[{year}]")
        config = configs.get(year)
        if config is None:
            print(f"    ✗ Error: no configuration for {year}")
            all_stats.append({'year': year, 'error': f'no configuration for {year}'})
            continue

        # One connection per year so nothing is shared between years
        con = duckdb.connect()
        try:
            stats = process_year(
                con, config, input_dir, output_dir,
                bucket_minutes=bucket_minutes,
                audit=audit,
                max_distance_m=max_distance_m,
            )
            all_stats.append(stats)
            print_year_summary(stats)
        except PipelineError as e:
            print(f"    ✗ Error: {e}")
            all_stats.append({'year': year, 'error': str(e), 'error_type': type(e).__name__})
        except Exception as e:
            print(f"    ✗ Unexpected error: {e!r}")
            all_stats.append({'year': year, 'error': repr(e), 'error_type': type(e).__name__})
        finally:
            con.close()

    return all_stats


def write_run_log(all_stats: list[dict], args: dict, logs_dir: Path = LOGS_DIR) -> Path:
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"pipeline_run_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    log_data = {
        'timestamp': datetime.now().isoformat(),
        'arguments': args,
        'years_total': len(all_stats),
        'years_processed': sum(1 for s in all_stats if 'rows_out' in s),
        'years_skipped': sum(1 for s in all_stats if s.get('skipped')),
        'years_failed': sum(1 for s in all_stats if 'error' in s),
        'total_rows_in': sum(s.get('rows_in', 0) for s in all_stats),
        'total_rows_out': sum(s.get('rows_out', 0) for s in all_stats),
        'peak_concurrency': {
            s['year']: s['concurrency'].get('peak') for s in all_stats if s.get('concurrency')
        },
        'year_stats': all_stats,
    }
    with open(log_path, 'w') as f:
        json.dump(log_data, f, indent=2, default=str)
    return log_path


def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(description="Process BIXI trip data")
    parser.add_argument("--years", type=int, nargs="+",
                        help="Years to process (default: every configured year)")
    parser.add_argument("--input-dir", type=Path, default=DATA_DIR / "raw",
                        help="Directory with raw per-year CSVs")
    parser.add_argument("--output-dir", type=Path, default=DATA_DIR / "processed",
                        help="Directory for canonical output CSVs")
    parser.add_argument("--config", type=Path,
                        help="JSON file with per-year configuration overrides")
    parser.add_argument("--bucket-minutes", type=int, default=BUCKET_MINUTES,
                        help=f"Concurrency bucket width in minutes (default: {BUCKET_MINUTES})")
    parser.add_argument("--force", action="store_true",
                        help="Reprocess years even if output already exists")
    parser.add_argument("--audit", action="store_true",
                        help="Also report near-duplicate stations for each year")
    parser.add_argument("--max-distance-m", type=float, default=DEFAULT_MAX_DISTANCE_M,
                        help=f"Near-duplicate distance for --audit (default: {DEFAULT_MAX_DISTANCE_M:g})")
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR,
                        help="Directory for the JSON run log")

    args = parser.parse_args(argv)

    if args.bucket_minutes <= 0:
        parser.error("--bucket-minutes must be a positive integer")

    try:
        configs = load_year_configs(args.config) if args.config else dict(DEFAULT_YEAR_CONFIGS)
    except PipelineError as e:
        print(f"✗ {e}")
        sys.exit(1)

    years = args.years or sorted(configs)
    print(f"Processing {len(years)} year(s): {', '.join(map(str, years))}")

    all_stats = run(
        configs,
        years,
        args.input_dir,
        args.output_dir,
        bucket_minutes=args.bucket_minutes,
        force=args.force,
        audit=args.audit,
        max_distance_m=args.max_distance_m,
    )

    log_path = write_run_log(all_stats, {k: str(v) for k, v in vars(args).items()}, args.logs_dir)

    failed = [s['year'] for s in all_stats if 'error' in s]
    processed = [s for s in all_stats if 'rows_out' in s]
    print(f"\n{'='*50}")
    print(f"✓ Processed {len(processed)} year(s)")
    print(f"✓ {sum(s['rows_in'] for s in processed):,} rows in → "
          f"{sum(s['rows_out'] for s in processed):,} rows out")
    print(f"✓ Output: {args.output_dir}")
    print(f"✓ Log: {log_path}")

    if failed:
        print(f"✗ Failed: {', '.join(map(str, failed))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
