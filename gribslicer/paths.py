"""
Deterministic storage layout for a run.

Every artifact the pipeline writes lives at a path computed here from a
typed key. Because the mapping is pure, the directory tree doubles as the
recovery journal: a slice, series, combined or final artifact that exists
and is non-empty is work already done.

Layout under ``<data_dir>/<product>/<date>_<cycle>z_<vars>/``::

    index_files/<date><cycle>0000-<step>h-<stream>-<type>.index
    slices/EN<mm>/<variable>_<step>h.grib2
    series/EN<mm>/<variable>.nc
    series/EN<mm>/.<variable>.nc.inputs      (manifest of the merged slices)
    combined/EN<mm>.nc
    combined/.EN<mm>.nc.inputs               (manifest of the combined series)
    <date>_<cycle>z_<vars>_EN<mm>.nc        (final, ensemble products)
    <date>_<cycle>z_<vars>.nc               (final, deterministic products)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import RunConfig
from .constants import (
    COMBINED_DIRNAME,
    INDEX_DIRNAME,
    LINK_FILENAME,
    SERIES_DIRNAME,
    SLICE_DIRNAME,
)


@dataclass(frozen=True)
class StorageKey:
    """Identity of one slice: run, variable, member and lead time."""

    date: str
    cycle: int
    variable: str
    member: int
    lead_time: int


def member_label(member: Optional[int]) -> str:
    """Two-digit member bucket; a missing member is the control run."""
    return f"EN{(member or 0):02d}"


def run_dir(run: RunConfig) -> Path:
    return run.settings.data_dir / run.product / run.label


def index_dir(run: RunConfig) -> Path:
    return run_dir(run) / INDEX_DIRNAME


def index_path(run: RunConfig, lead_time: int) -> Path:
    name = f"{run.date}{run.cycle:02d}0000-{lead_time}h-{run.stream}-{run.forecast_type}.index"
    return index_dir(run) / name


def link_file(run: RunConfig) -> Path:
    return run_dir(run) / LINK_FILENAME


def slice_path(root: Path, key: StorageKey) -> Path:
    """Path of one fetched slice under a run directory."""
    return root / SLICE_DIRNAME / member_label(key.member) / f"{key.variable}_{key.lead_time}h.grib2"


def series_path(run: RunConfig, variable: str, member: int) -> Path:
    return run_dir(run) / SERIES_DIRNAME / member_label(member) / f"{variable}.nc"


def combined_path(run: RunConfig, member: int) -> Path:
    return run_dir(run) / COMBINED_DIRNAME / f"{member_label(member)}.nc"


def final_path(run: RunConfig, member: int) -> Path:
    if run.is_ensemble:
        return run_dir(run) / f"{run.label}_{member_label(member)}.nc"
    return run_dir(run) / f"{run.label}.nc"


def is_complete(path: Path) -> bool:
    """True when ``path`` exists and holds content."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def manifest_path(path: Path) -> Path:
    """Hidden sidecar recording the inputs an intermediate was built from."""
    return path.with_name(f".{path.name}.inputs")
