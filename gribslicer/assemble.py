"""
Assembly of fetched slices into final per-member artifacts.

For every member the assembler runs three steps, each contained to its own
unit so that one failure never blocks another:

1. Merge: slices of one variable, sorted by lead time, are concatenated
   into a time series (``series/EN<mm>/<variable>.nc``).
2. Combine: every series of the member is merged into one multi-field
   dataset on the shared time axis (``combined/EN<mm>.nc``).
3. Crop: the combined dataset is subset to the configured bounding box
   and written as the final artifact.

Every artifact is written to a temporary sibling and renamed into place
only after it is verified non-empty; existing complete artifacts are
reused, so an interrupted run resumes where it stopped. Series and combined
artifacts carry a hidden ``.<name>.inputs`` manifest listing the inputs
they were built from; when those inputs change (e.g. a lead time that was
unavailable on the first attempt has since been fetched) the artifact is
rebuilt rather than reused.

The array work itself is delegated to an ``ArrayTransform``. The default
``XarrayTransform`` reads GRIB2 slices through cfgrib and writes NetCDF4.
"""

import json
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import xarray as xr
from tqdm import tqdm

from .config import RunConfig
from .data.selector import FetchTask
from .exceptions import MergeError
from .paths import combined_path, final_path, is_complete, manifest_path, series_path

logger = logging.getLogger(__name__)

GRIB_SUFFIXES = {".grib", ".grib2", ".grb", ".grb2"}

# Attributes that change between otherwise identical runs
VOLATILE_ATTRS = ("history",)

KEPT_ENCODING = ("units", "calendar", "dtype")


@dataclass(frozen=True)
class UnitOutcome:
    """Result for one (variable, member) unit."""

    variable: str
    member: Optional[int]
    final_path: Optional[Path] = None
    reason: Optional[str] = None

    @property
    def produced(self) -> bool:
        return self.final_path is not None


class ArrayTransform:
    """
    Merge/subset collaborator interface.

    Each method writes exactly one output file and raises MergeError when the
    operation fails.
    """

    def merge_time(self, inputs: Sequence[Path], output: Path) -> None:
        raise NotImplementedError

    def combine(self, inputs: Sequence[Path], output: Path) -> None:
        raise NotImplementedError

    def crop(self, source: Path, output: Path, bbox: Tuple[float, float, float, float]) -> None:
        raise NotImplementedError


def _normalize_lon(values):
    return ((np.asarray(values, dtype=float) + 180.0) % 360.0) - 180.0


def longitude_mask(longitudes, west: float, east: float) -> np.ndarray:
    """
    Boolean mask of longitudes inside [west, east].

    Works for grids in either -180..180 or 0..360 convention and for windows
    that cross the antimeridian (west > east after normalization).
    """
    if east - west >= 360.0:
        return np.ones(np.shape(longitudes), dtype=bool)
    lons = _normalize_lon(longitudes)
    w, e = _normalize_lon([west, east])
    if w <= e:
        return (lons >= w) & (lons <= e)
    return (lons >= w) | (lons <= e)


def latitude_mask(latitudes, south: float, north: float) -> np.ndarray:
    lats = np.asarray(latitudes, dtype=float)
    return (lats >= south) & (lats <= north)


def _coord_name(ds: xr.Dataset, candidates: Sequence[str]) -> str:
    for name in candidates:
        if name in ds.coords or name in ds.dims:
            return name
    raise MergeError(f"Dataset has none of the coordinates {list(candidates)}")


class XarrayTransform(ArrayTransform):
    """
    ArrayTransform built on xarray.

    GRIB inputs are opened with the cfgrib engine, everything else with the
    default NetCDF backend. Outputs are NetCDF4 with float32 data variables.
    """

    def __init__(self, time_dim: str = "step", complevel: int = 4):
        self.time_dim = time_dim
        self.complevel = complevel

    def _open(self, path: Path) -> xr.Dataset:
        path = Path(path)
        if path.suffix.lower() in GRIB_SUFFIXES:
            # indexpath="" keeps cfgrib from writing .idx files beside slices
            with xr.open_dataset(path, engine="cfgrib", backend_kwargs={"indexpath": ""}) as ds:
                return ds.load()
        with xr.open_dataset(path) as ds:
            return ds.load()

    def _write(self, ds: xr.Dataset, output: Path) -> None:
        ds = ds.copy()
        for name in VOLATILE_ATTRS:
            ds.attrs.pop(name, None)
        for var in ds.variables.values():
            # Chunking and source hints from the input file do not apply to the output
            var.encoding = {k: v for k, v in var.encoding.items() if k in KEPT_ENCODING}
        encoding = {}
        for name, var in ds.data_vars.items():
            var.attrs.pop("history", None)
            encoding[name] = {"zlib": True, "complevel": self.complevel}
            if np.issubdtype(var.dtype, np.floating):
                encoding[name]["dtype"] = "float32"
        ds.to_netcdf(output, engine="netcdf4", format="NETCDF4", encoding=encoding)

    def merge_time(self, inputs: Sequence[Path], output: Path) -> None:
        if not inputs:
            raise MergeError("merge_time requires at least one input")
        try:
            datasets = [self._open(p) for p in inputs]
            if len(datasets) == 1 and self.time_dim not in datasets[0].dims:
                merged = datasets[0].expand_dims(self.time_dim)
            else:
                merged = xr.concat(
                    datasets,
                    dim=self.time_dim,
                    coords="different",
                    combine_attrs="override",
                )
            self._write(merged, output)
        except MergeError:
            raise
        except Exception as e:
            raise MergeError(f"Time merge into {output.name} failed: {e}") from e

    def combine(self, inputs: Sequence[Path], output: Path) -> None:
        if not inputs:
            raise MergeError("combine requires at least one input")
        try:
            datasets = [self._open(p) for p in inputs]
            # valid_time depends on the joined time axis; rebuilt below
            datasets = [ds.drop_vars("valid_time", errors="ignore") for ds in datasets]
            combined = xr.merge(
                datasets,
                join="outer",
                compat="override",
                combine_attrs="drop_conflicts",
            )
            if "time" in combined.coords and self.time_dim in combined.coords:
                combined = combined.assign_coords(
                    valid_time=combined["time"] + combined[self.time_dim]
                )
            self._write(combined, output)
        except Exception as e:
            raise MergeError(f"Combining into {output.name} failed: {e}") from e

    def crop(self, source: Path, output: Path, bbox: Tuple[float, float, float, float]) -> None:
        west, east, south, north = bbox
        try:
            ds = self._open(source)
            lat = _coord_name(ds, ("latitude", "lat"))
            lon = _coord_name(ds, ("longitude", "lon"))
            lat_mask = latitude_mask(ds[lat].values, south, north)
            lon_mask = longitude_mask(ds[lon].values, west, east)
            if not lat_mask.any() or not lon_mask.any():
                raise MergeError(f"Crop window {bbox} does not intersect the grid")
            cropped = ds.isel({lat: np.flatnonzero(lat_mask), lon: np.flatnonzero(lon_mask)})
            self._write(cropped, output)
        except MergeError:
            raise
        except Exception as e:
            raise MergeError(f"Cropping into {output.name} failed: {e}") from e


def _temporary(path: Path) -> Path:
    return path.with_name(f".{path.stem}.tmp{path.suffix}")


def input_fingerprint(inputs: Sequence[Path]) -> List[list]:
    """Name, size and modification time of every input, in order."""
    fingerprint = []
    for path in inputs:
        stat = Path(path).stat()
        fingerprint.append([Path(path).name, stat.st_size, stat.st_mtime_ns])
    return fingerprint


def _read_manifest(path: Path) -> Optional[list]:
    try:
        return json.loads(manifest_path(path).read_text())
    except (OSError, ValueError):
        return None


def _write_manifest(path: Path, fingerprint: List[list]) -> None:
    manifest = manifest_path(path)
    tmp = manifest.with_name(manifest.name + ".tmp")
    tmp.write_text(json.dumps(fingerprint))
    os.replace(tmp, manifest)


class SeriesAssembler:
    """
    Merges, combines and crops fetched slices per member.

    Attributes:
        run: Run configuration
        transform: ArrayTransform used for all array work

    Example:
        >>> assembler = SeriesAssembler(run)
        >>> outcomes = assembler.assemble_member(5, {"tp": tasks})
        >>> outcomes[0].final_path.name
        '20251012_00z_tp_EN05.nc'
    """

    def __init__(self, run: RunConfig, transform: Optional[ArrayTransform] = None):
        self.run = run
        self.transform = transform if transform is not None else XarrayTransform()

    def _produce(
        self,
        path: Path,
        write: Callable[[Path], None],
        inputs: Optional[Sequence[Path]] = None,
    ) -> Path:
        """
        Write through a temporary sibling; rename only once non-empty.

        An existing complete artifact is reused. When ``inputs`` is given it
        is reused only if its manifest sidecar matches the current inputs,
        otherwise it is rebuilt and the manifest rewritten.
        """
        fingerprint = None
        if inputs is not None:
            try:
                fingerprint = input_fingerprint(inputs)
            except OSError as e:
                raise MergeError(f"Missing input for {path.name}: {e}") from e

        if is_complete(path):
            if fingerprint is None or _read_manifest(path) == fingerprint:
                logger.debug(f"Reusing existing {path.name}")
                return path
            logger.info(f"Rebuilding {path.name}: inputs changed since it was written")

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = _temporary(path)
        tmp.unlink(missing_ok=True)
        try:
            write(tmp)
            if not is_complete(tmp):
                raise MergeError(f"Transform produced an empty file for {path.name}")
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)
        if fingerprint is not None:
            _write_manifest(path, fingerprint)
        return path

    def merge_series(self, member: int, variable: str, slices: List[FetchTask]) -> Optional[Path]:
        """
        Concatenate one variable's slices in lead-time order.

        Returns:
            Path to the series artifact, or None when there are no slices
        """
        if not slices:
            logger.debug(f"No slices for EN{member:02d} {variable}, skipping merge")
            return None
        ordered = sorted(slices, key=lambda task: int(task.lead_time))
        inputs = [task.destination for task in ordered]
        path = series_path(self.run, variable, member)
        logger.debug(f"Merging {len(inputs)} timesteps for EN{member:02d} {variable}")
        return self._produce(path, lambda out: self.transform.merge_time(inputs, out), inputs)

    def combine_member(self, member: int, series: Dict[str, Path]) -> Path:
        inputs = [series[variable] for variable in sorted(series)]
        path = combined_path(self.run, member)
        return self._produce(path, lambda out: self.transform.combine(inputs, out), inputs)

    def crop_member(self, member: int, combined: Path) -> Path:
        path = final_path(self.run, member)
        bbox = self.run.settings.crop_bbox
        return self._produce(path, lambda out: self.transform.crop(combined, out, bbox))

    def assemble_member(
        self,
        member: int,
        slices_by_variable: Dict[str, List[FetchTask]],
    ) -> List[UnitOutcome]:
        """
        Produce the final artifact for one member.

        Args:
            member: Ensemble member number (0 for control/deterministic)
            slices_by_variable: Successfully fetched slices per variable

        Returns:
            One UnitOutcome per variable in ``slices_by_variable``
        """
        variables = sorted(slices_by_variable)
        final = final_path(self.run, member)
        if is_complete(final):
            logger.info(f"Skipping EN{member:02d} (already assembled)")
            return [UnitOutcome(v, member, final_path=final) for v in variables]

        reasons: Dict[str, str] = {}
        series: Dict[str, Path] = {}
        for variable in variables:
            try:
                path = self.merge_series(member, variable, slices_by_variable[variable])
            except MergeError as e:
                logger.warning(f"Merge failed for EN{member:02d} {variable}: {e}")
                reasons[variable] = str(e)
                continue
            if path is None:
                reasons[variable] = "no slices fetched"
            else:
                series[variable] = path

        if not series:
            return [UnitOutcome(v, member, reason=reasons.get(v)) for v in variables]

        try:
            combined = self.combine_member(member, series)
            final = self.crop_member(member, combined)
        except MergeError as e:
            logger.warning(f"Assembly failed for EN{member:02d}: {e}")
            return [UnitOutcome(v, member, reason=reasons.get(v, str(e))) for v in variables]

        logger.info(f"EN{member:02d} assembled: {final.name}")
        return [
            UnitOutcome(v, member, final_path=final) if v in series
            else UnitOutcome(v, member, reason=reasons.get(v))
            for v in variables
        ]

    def assemble_all(
        self,
        slices_by_member: Dict[int, Dict[str, List[FetchTask]]],
    ) -> Dict[int, List[UnitOutcome]]:
        """Assemble every member on a bounded thread pool."""
        if not slices_by_member:
            return {}

        settings = self.run.settings
        logger.info(f"Assembling {len(slices_by_member)} member(s) ({settings.workers} workers)")
        start_time = time.time()

        outcomes: Dict[int, List[UnitOutcome]] = {}
        with ThreadPoolExecutor(max_workers=settings.workers) as executor:
            future_to_member = {
                executor.submit(self.assemble_member, member, by_variable): member
                for member, by_variable in slices_by_member.items()
            }
            futures = tqdm(
                as_completed(future_to_member),
                total=len(future_to_member),
                desc="Members",
                unit="member",
                disable=not settings.show_progress,
            )
            for future in futures:
                member = future_to_member[future]
                try:
                    outcomes[member] = future.result()
                except OSError as e:
                    logger.error(f"Assembly of EN{member:02d} failed with error: {e}")
                    outcomes[member] = [
                        UnitOutcome(v, member, reason=str(e))
                        for v in sorted(slices_by_member[member])
                    ]

        produced = sum(1 for items in outcomes.values() if any(o.produced for o in items))
        logger.info(
            f"Assembly complete: {produced}/{len(outcomes)} members in {time.time() - start_time:.1f}s"
        )
        return dict(sorted(outcomes.items()))
