"""
Basic Download Example

This example demonstrates the simplest gribslicer workflow: pick a recent
ECMWF cycle, request one variable, and let the pipeline fetch only the
matching GRIB2 messages and assemble them into cropped NetCDF files.

Output: One NetCDF file per ensemble member under data/ens/, each holding
the full 0-360h time series of total precipitation over South Asia.
"""

from datetime import datetime, timedelta

from gribslicer import (
    Config,
    GribSlicerError,
    download_forecast,
    get_lead_times,
)


def get_yesterdays_forecast_cycle() -> datetime:
    """Pick a cycle far enough in the past to be fully published.

    ECMWF open data keeps only a few days online, so ~36 hours back is a
    good compromise between availability and retention.
    """
    reference = datetime.utcnow() - timedelta(days=1.5)
    cycle_hour = 12 if reference.hour >= 12 else 0
    return datetime(reference.year, reference.month, reference.day, cycle_hour)


# ============================================================================
# Basic Download
# ============================================================================

forecast_cycle = get_yesterdays_forecast_cycle()
variables = ["tp"]  # Known codes: tp 2t msl 10u 10v tcc sp 2d
member = 5  # Single member keeps the example small; None fetches all 51
region = "SOUTH_ASIA"

config = Config(data_dir="data", workers=8)

print("Downloading forecast fields:")
print(f"  Cycle: {forecast_cycle.strftime('%Y-%m-%d %H:00 UTC')}")
print(f"  Variables: {' '.join(variables)}")
print(f"  Member: {member}")
print(f"  Region: {region}")
print(f"  Lead times: {len(get_lead_times(config))}")
print()

try:
    report = download_forecast(
        date=forecast_cycle.strftime("%Y%m%d"),
        cycle=forecast_cycle.hour,
        variables=variables,
        member=member,
        region=region,
        config=config,
    )

    summary = report.summary()
    if report.success:
        print("Success! Final artifacts:")
        for path in report.final_artifacts:
            print(f"  {path}")
    else:
        print("No final artifact was produced")

    if summary["unavailable_lead_times"]:
        print(f"Unavailable lead times: {summary['unavailable_lead_times']}")
    print(f"Slices: {summary['fetch']}")

except GribSlicerError as e:
    print(f"Error downloading forecast: {e}")
    print()
    print("Common issues:")
    print("  - Network connectivity (data download requires internet)")
    print("  - Cycle no longer on the open-data mirror (only recent days are kept)")
    print("  - cfgrib/eccodes missing (run 'gribslicer check')")
