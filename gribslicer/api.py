"""
Main API module for the gribslicer package.

This module provides simplified user-facing functions that hide the
construction of run configurations and pipeline stages. The primary
function ``download_forecast()`` handles the complete workflow from index
retrieval to cropped NetCDF output in a single call.

Example:
    >>> from gribslicer import download_forecast
    >>>
    >>> # Ensemble total precipitation, every member
    >>> report = download_forecast("20251012", "00z", ["tp"])
    >>> report.final_artifacts[0].name
    '20251012_00z_tp_EN00.nc'

    >>> # Deterministic 2 m temperature over Europe
    >>> report = download_forecast("20251012", "12z", "2t", product="hres", region="EUROPE")
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Union

from .config import Config, RunConfig
from .constants import KNOWN_VARIABLES, REGIONS
from .exceptions import InvalidParameterError
from .pipeline import ForecastPipeline, RunReport

logger = logging.getLogger(__name__)


def get_lead_times(config: Optional[Config] = None) -> List[int]:
    """
    Get the lead times (hours) covered by a configuration.

    Args:
        config: Optional Config object; defaults to 0..360 every 6 hours

    Returns:
        List of lead times in hours
    """
    config = config if config is not None else Config()
    return list(config.lead_times())


def download_forecast(
    date: str,
    cycle: Union[str, int],
    variables: Union[str, Iterable[str]],
    product: str = "ens",
    member: Optional[int] = None,
    region: Optional[str] = None,
    config: Optional[Config] = None,
    http=None,
    transform=None,
) -> RunReport:
    """
    Fetch, assemble and crop forecast fields for one initialization.

    Args:
        date: Initialization date (YYYYMMDD)
        cycle: Initialization hour ("00z", "06", 12, ...)
        variables: One variable code or several (e.g., "tp", ["2t", "msl"])
        product: "ens" (ensemble) or "hres" (deterministic)
        member: Single ensemble member to fetch; None fetches all members
        region: Named crop region from REGIONS; overrides config.crop_bbox
        config: Optional Config object; if None, uses default configuration
        http: Optional requests-compatible client
        transform: Optional ArrayTransform for merge/combine/crop

    Returns:
        RunReport describing each (variable, member) unit

    Raises:
        InvalidParameterError: If date, cycle, product, member or region is invalid
    """
    config = config if config is not None else Config()

    if region is not None:
        key = region.upper()
        if key not in REGIONS:
            available = ", ".join(REGIONS)
            raise InvalidParameterError(f"Unknown region '{region}'. Available regions: {available}")
        config = replace(config, crop_bbox=REGIONS[key]["bbox"])

    run = RunConfig.create(
        date=date,
        cycle=cycle,
        variables=variables,
        product=product,
        member=member,
        config=config,
    )

    unknown = [v for v in run.variables if v not in KNOWN_VARIABLES]
    if unknown:
        logger.warning(
            f"Variable(s) {unknown} may not be supported. "
            f"Known variables: {' '.join(KNOWN_VARIABLES)}"
        )

    return ForecastPipeline(run, http=http, transform=transform).run()
