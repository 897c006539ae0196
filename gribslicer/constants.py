"""
Constants and fixed parameters for the gribslicer package.

This module defines the ECMWF open-data products, synoptic cycles, the
default lead-time stride, well-known variable codes and named crop regions.
"""

# ============================================================================
# Product Definitions
# ============================================================================

PRODUCTS = {
    "ens": {
        "name": "IFS Ensemble Forecast",
        "stream": "enfo",
        "type": "ef",
        "members": list(range(0, 51)),  # 0 = control, 1-50 perturbed
        "ensemble": True,
    },
    "hres": {
        "name": "IFS High Resolution Forecast",
        "stream": "oper",
        "type": "fc",
        "members": [0],
        "ensemble": False,
    },
}

DEFAULT_PRODUCT = "ens"

# ============================================================================
# Remote Layout
# ============================================================================

DEFAULT_BASE_URL = "https://storage.googleapis.com/ecmwf-open-data"
DEFAULT_RESOLUTION = "0p25"

# {base_url}/{date}/{cycle}z/ifs/{resolution}/{stream}/{date}{cycle}0000-{step}h-{stream}-{type}.{ext}
RESOURCE_TEMPLATE = (
    "{base_url}/{date}/{cycle:02d}z/ifs/{resolution}/{stream}/"
    "{date}{cycle:02d}0000-{step}h-{stream}-{type}.{ext}"
)

INDEX_EXTENSION = "index"
GRIB_EXTENSION = "grib2"

# Keys every index record must carry to be usable
REQUIRED_INDEX_KEYS = ("param", "step", "_offset", "_length")

# ============================================================================
# Forecast Timing
# ============================================================================

CYCLES = (0, 6, 12, 18)

DEFAULT_LEAD_TIME_START = 0
DEFAULT_LEAD_TIME_END = 360
DEFAULT_LEAD_TIME_STEP = 6

# ============================================================================
# Variables
# ============================================================================

KNOWN_VARIABLES = {
    "tp": "Total precipitation",
    "2t": "2 metre temperature",
    "msl": "Mean sea level pressure",
    "10u": "10 metre U wind component",
    "10v": "10 metre V wind component",
    "tcc": "Total cloud cover",
    "sp": "Surface pressure",
    "2d": "2 metre dewpoint temperature",
}

# ============================================================================
# Crop Regions
# ============================================================================

REGIONS = {
    "SOUTH_ASIA": {
        "name": "South Asia",
        "bbox": (65.0, 110.0, 5.0, 40.0),  # (west, east, south, north)
    },
    "EUROPE": {
        "name": "Europe",
        "bbox": (-25.0, 45.0, 34.0, 72.0),
    },
    "CONUS": {
        "name": "Continental United States",
        "bbox": (-125.0, -66.0, 24.0, 50.0),
    },
    "GLOBAL": {
        "name": "Global",
        "bbox": (-180.0, 180.0, -90.0, 90.0),
    },
}

DEFAULT_REGION = "SOUTH_ASIA"

# ============================================================================
# Storage Layout
# ============================================================================

INDEX_DIRNAME = "index_files"
SLICE_DIRNAME = "slices"
SERIES_DIRNAME = "series"
COMBINED_DIRNAME = "combined"
LINK_FILENAME = "grib2_links.txt"
PARTIAL_SUFFIX = ".part"
