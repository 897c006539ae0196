"""\
Example Output Validation Script

This script validates that the gribslicer examples produced reasonable output.

Checks:
- Final NetCDF files exist and are non-empty
- Each file opens with xarray and holds at least one data variable
- The time axis covers the expected number of lead times
- Latitudes and longitudes stay inside the configured crop window

Usage:
  python examples/validate_output.py [data_dir]
"""

from __future__ import annotations

import sys
from pathlib import Path

import xarray as xr

from gribslicer import Config, get_lead_times


def _check_file(path: Path, expected_steps: int, bbox) -> tuple[bool, str]:
    size = path.stat().st_size
    if size == 0:
        return False, f"EMPTY: {path}"
    try:
        with xr.open_dataset(path) as ds:
            if not ds.data_vars:
                return False, f"NO VARIABLES: {path}"
            steps = ds.sizes.get("step", 1)
            lat = ds["latitude"].values
            lon = ds["longitude"].values
    except (OSError, ValueError, KeyError) as e:
        return False, f"UNREADABLE: {path} ({e})"

    west, east, south, north = bbox
    if lat.min() < south or lat.max() > north:
        return False, f"LATITUDE OUTSIDE WINDOW: {path}"
    if west < east and (lon.min() < west or lon.max() > east):
        return False, f"LONGITUDE OUTSIDE WINDOW: {path}"

    note = "" if steps == expected_steps else f", {expected_steps - steps} lead time(s) missing"
    return True, f"OK: {path} ({size/1024:.1f} KB, {steps} steps{note})"


def main() -> int:
    data_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("data")
    config = Config(data_dir=data_dir)
    expected_steps = len(get_lead_times(config))

    finals = sorted(p for p in data_dir.glob("*/*/*.nc"))

    print("Validating gribslicer example outputs")
    print("=" * 60)

    if not finals:
        print(f"  MISSING: no final artifacts under {data_dir}")
        return 1

    ok_all = True
    for path in finals:
        ok, msg = _check_file(path, expected_steps, config.crop_bbox)
        print(f"  {msg}")
        ok_all = ok_all and ok

    print("\nResult:", "PASS" if ok_all else "FAIL")
    return 0 if ok_all else 1


if __name__ == "__main__":
    raise SystemExit(main())
