"""
gribslicer - Index-driven retrieval of ECMWF open-data forecast fields.

This package downloads only the GRIB2 messages you need from the ECMWF
open-data mirror by reading each lead time's index, fetching the matching
byte ranges in parallel, and assembling them into cropped NetCDF time series
per ensemble member.

Quick Start:
    >>> from gribslicer import download_forecast
    >>>
    >>> report = download_forecast("20251012", "00z", ["tp"], product="ens")
    >>> print(report.summary()["final_artifacts"])

Advanced Usage:
    >>> from gribslicer import Config, RunConfig, ForecastPipeline
    >>>
    >>> config = Config(data_dir="data", workers=8, crop_bbox=(65, 110, 5, 40))
    >>> run = RunConfig.create("20251012", 0, ["2t", "msl"], member=5, config=config)
    >>> report = ForecastPipeline(run).run()
"""

__version__ = "0.1.0"

# Initialize logging with default settings
from .logging_config import setup_logging
setup_logging()

from .constants import CYCLES, KNOWN_VARIABLES, PRODUCTS, REGIONS
from .config import Config, RunConfig

from .data import IndexFetcher, RangeFetcher, RecordSelector
from .assemble import ArrayTransform, SeriesAssembler, XarrayTransform
from .cleanup import Cleanup
from .pipeline import ForecastPipeline, RunReport

from .api import download_forecast, get_lead_times

from .exceptions import (
    GribSlicerError,
    TransportError,
    MalformedMetadataError,
    SelectionEmpty,
    MergeError,
    IntegrityError,
    InvalidParameterError,
)

__all__ = [
    "__version__",

    # Constants and config
    "CYCLES",
    "KNOWN_VARIABLES",
    "PRODUCTS",
    "REGIONS",
    "Config",
    "RunConfig",

    # Pipeline stages
    "IndexFetcher",
    "RecordSelector",
    "RangeFetcher",
    "ArrayTransform",
    "XarrayTransform",
    "SeriesAssembler",
    "Cleanup",
    "ForecastPipeline",
    "RunReport",

    # User-facing API
    "download_forecast",
    "get_lead_times",

    # Exceptions
    "GribSlicerError",
    "TransportError",
    "MalformedMetadataError",
    "SelectionEmpty",
    "MergeError",
    "IntegrityError",
    "InvalidParameterError",
]
