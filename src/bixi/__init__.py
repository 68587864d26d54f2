# BIXI trip data pipeline
#
# Turns each year's raw BIXI Montréal open-data CSVs into canonical
# trips/stations tables and a 2-minute concurrency series:
#
# - normalize.py: map a year's raw column layout onto canonical fields
# - stations.py: merge stations that share a coordinate, build the id remap
# - reconcile.py: rewrite trip station references to canonical ids
# - validate.py: decode timestamps, drop malformed and out-of-year trips
# - concurrency.py: count trips overlapping each time bucket
# - pipeline.py: run the above for one or more years
# - audit.py: report stations that sit suspiciously close to each other
#
# Usage:
#   python -m bixi.pipeline --years 2019 2022
#   python -m bixi.audit --year 2022
