"""
Configuration management for the gribslicer package.

This module provides two layers of configuration:

- ``Config``: user-level settings (directories, remote location, lead-time
  stride, crop window, concurrency and retry behavior) that can be loaded
  from and saved to YAML or JSON.
- ``RunConfig``: an immutable description of one run (date, cycle,
  variables, member scope, product) bundled with a frozen copy of the
  settings. One ``RunConfig`` is passed to every pipeline component.
"""

import json
import os
import re
from dataclasses import FrozenInstanceError, dataclass, asdict, field, replace
from pathlib import Path
from typing import Optional, Tuple, Union

import yaml

from .constants import (
    CYCLES,
    DEFAULT_BASE_URL,
    DEFAULT_LEAD_TIME_END,
    DEFAULT_LEAD_TIME_START,
    DEFAULT_LEAD_TIME_STEP,
    DEFAULT_PRODUCT,
    DEFAULT_REGION,
    DEFAULT_RESOLUTION,
    PRODUCTS,
    REGIONS,
)
from .exceptions import InvalidParameterError

DATE_RE = re.compile(r"^\d{8}$")
CYCLE_RE = re.compile(r"^(?P<hour>\d{1,2})z?$", re.IGNORECASE)


def _default_data_dir() -> Path:
    return Path(os.environ.get("GRIBSLICER_DATA_DIR", "./data"))


@dataclass
class Config:
    """Settings for fetching and assembling forecast slices.

    Attributes:
        data_dir: Root directory for intermediate and final artifacts.
        base_url: Root URL of the open-data mirror.
        resolution: Grid resolution path segment (e.g., "0p25").
        lead_time_start: First lead time in hours.
        lead_time_end: Last lead time in hours (inclusive).
        lead_time_step: Stride between lead times in hours.
        crop_bbox: Crop window as (west, east, south, north) in degrees.
        workers: Pool size for fetch and assemble stages (default: CPU count).
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per retrieval before it is recorded as failed.
        retry_backoff: Initial delay in seconds between retries (doubles).
        keep_intermediates: Skip cleanup of slices, series and index files.
        fail_on_empty_selection: Abort when a requested variable has no
            matching index entry at any lead time.
        show_progress: Display tqdm progress bars for pooled stages.
    """

    data_dir: Path = field(default_factory=_default_data_dir)
    base_url: str = DEFAULT_BASE_URL
    resolution: str = DEFAULT_RESOLUTION
    lead_time_start: int = DEFAULT_LEAD_TIME_START
    lead_time_end: int = DEFAULT_LEAD_TIME_END
    lead_time_step: int = DEFAULT_LEAD_TIME_STEP
    crop_bbox: Tuple[float, float, float, float] = REGIONS[DEFAULT_REGION]["bbox"]
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    timeout: float = 60.0
    max_retries: int = 3
    retry_backoff: float = 2.0
    keep_intermediates: bool = False
    fail_on_empty_selection: bool = False
    show_progress: bool = True

    def __post_init__(self):
        """Normalize paths and sequences loaded from files or CLI."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if not isinstance(self.crop_bbox, tuple):
            self.crop_bbox = tuple(float(v) for v in self.crop_bbox)
        self.base_url = self.base_url.rstrip("/")

    def __setattr__(self, name, value):
        if self.__dict__.get("_frozen"):
            raise FrozenInstanceError(f"cannot assign to field '{name}' of frozen settings")
        super().__setattr__(name, value)

    def frozen(self) -> "Config":
        """Return a read-only copy; ``replace()`` on it yields a mutable one."""
        snapshot = replace(self)
        object.__setattr__(snapshot, "_frozen", True)
        return snapshot

    @property
    def is_frozen(self) -> bool:
        return bool(self.__dict__.get("_frozen"))

    @classmethod
    def load_from_file(cls, path: Path) -> "Config":
        """Load configuration from a YAML or JSON file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .json).

        Returns:
            Config instance with loaded settings.

        Raises:
            ValueError: If file format is not supported.
            FileNotFoundError: If file does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                data = yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {path.suffix}. Use .yaml, .yml, or .json")

        if 'region' in data:
            region = str(data.pop('region')).upper()
            if region not in REGIONS:
                raise ValueError(f"Unknown region '{region}'. Available: {list(REGIONS)}")
            data.setdefault('crop_bbox', REGIONS[region]["bbox"])

        return cls(**data)

    def save_to_file(self, path: Path) -> None:
        """Save configuration to a YAML or JSON file.

        Args:
            path: Path where configuration should be saved.

        Raises:
            ValueError: If file format is not supported.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        data['data_dir'] = str(data['data_dir'])
        data['crop_bbox'] = list(data['crop_bbox'])

        with open(path, 'w') as f:
            if path.suffix in ['.yaml', '.yml']:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            elif path.suffix == '.json':
                json.dump(data, f, indent=2)
            else:
                raise ValueError(f"Unsupported file format: {path.suffix}. Use .yaml, .yml, or .json")

    def validate(self) -> bool:
        """Validate configuration parameters.

        Returns:
            True if configuration is valid.

        Raises:
            ValueError: If any configuration parameter is invalid.
        """
        if self.lead_time_start < 0:
            raise ValueError("lead_time_start must be non-negative")

        if self.lead_time_step <= 0:
            raise ValueError("lead_time_step must be positive")

        if self.lead_time_end < self.lead_time_start:
            raise ValueError("lead_time_end must not precede lead_time_start")

        if len(self.crop_bbox) != 4:
            raise ValueError("crop_bbox must be (west, east, south, north)")

        west, east, south, north = self.crop_bbox
        if not (-90.0 <= south < north <= 90.0):
            raise ValueError("crop_bbox latitudes must satisfy -90 <= south < north <= 90")

        if west == east:
            raise ValueError("crop_bbox west and east must differ")

        if not isinstance(self.workers, int) or self.workers < 1:
            raise ValueError("workers must be an integer >= 1")

        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

        if not isinstance(self.max_retries, int) or self.max_retries < 1:
            raise ValueError("max_retries must be an integer >= 1")

        if self.retry_backoff < 0:
            raise ValueError("retry_backoff must be non-negative")

        if not self.base_url:
            raise ValueError("base_url must be a non-empty string")

        return True

    def lead_times(self) -> Tuple[int, ...]:
        """Lead times in hours covered by the configured stride."""
        return tuple(range(self.lead_time_start, self.lead_time_end + 1, self.lead_time_step))

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


def parse_cycle(value: Union[str, int]) -> int:
    """Normalize a cycle given as 0, "00", "00z" or "12Z" to its hour."""
    if isinstance(value, int):
        hour = value
    else:
        match = CYCLE_RE.match(str(value).strip())
        if not match:
            raise InvalidParameterError(
                f"Invalid cycle '{value}'. Expected one of: "
                + ", ".join(f"{c:02d}z" for c in CYCLES)
            )
        hour = int(match.group("hour"))
    if hour not in CYCLES:
        raise InvalidParameterError(
            f"Invalid cycle '{value}'. Expected one of: "
            + ", ".join(f"{c:02d}z" for c in CYCLES)
        )
    return hour


@dataclass(frozen=True)
class RunConfig:
    """Immutable parameters of one fetch-and-assemble run.

    Attributes:
        date: Initialization date as YYYYMMDD.
        cycle: Initialization hour (one of CYCLES).
        variables: Requested variable codes, deduplicated and sorted.
        member: Single ensemble member to fetch, or None for every member.
        product: Product key from PRODUCTS ("ens" or "hres").
        settings: Read-only copy of the user settings. Assigning to any of
            its fields raises FrozenInstanceError.
    """

    date: str
    cycle: int
    variables: Tuple[str, ...]
    member: Optional[int]
    product: str
    settings: Config = field(hash=False)

    @classmethod
    def create(
        cls,
        date: str,
        cycle: Union[str, int],
        variables,
        product: str = DEFAULT_PRODUCT,
        member: Optional[int] = None,
        config: Optional[Config] = None,
    ) -> "RunConfig":
        """Validate inputs and build a RunConfig.

        Raises:
            InvalidParameterError: If any input is malformed.
        """
        date = str(date).strip()
        if not DATE_RE.match(date):
            raise InvalidParameterError(f"Date must be in YYYYMMDD format, got '{date}'")

        if product not in PRODUCTS:
            raise InvalidParameterError(
                f"Unknown product '{product}'. Available products: {list(PRODUCTS)}"
            )

        if isinstance(variables, str):
            variables = [variables]
        codes = tuple(sorted({str(v).strip() for v in variables if str(v).strip()}))
        if not codes:
            raise InvalidParameterError("At least one variable code is required")

        if member is not None:
            if member < 0:
                raise InvalidParameterError(f"Ensemble member must be non-negative, got {member}")
            if member not in PRODUCTS[product]["members"]:
                raise InvalidParameterError(
                    f"Member {member} not available for product '{product}'"
                )
        elif not PRODUCTS[product]["ensemble"]:
            member = 0

        settings = config if config is not None else Config()
        try:
            settings.validate()
        except ValueError as e:
            raise InvalidParameterError(str(e)) from e
        settings = settings.frozen()

        return cls(
            date=date,
            cycle=parse_cycle(cycle),
            variables=codes,
            member=member,
            product=product,
            settings=settings,
        )

    @property
    def stream(self) -> str:
        return PRODUCTS[self.product]["stream"]

    @property
    def forecast_type(self) -> str:
        return PRODUCTS[self.product]["type"]

    @property
    def is_ensemble(self) -> bool:
        return PRODUCTS[self.product]["ensemble"]

    @property
    def lead_times(self) -> Tuple[int, ...]:
        return self.settings.lead_times()

    @property
    def label(self) -> str:
        """Short run label, e.g. 20251012_00z_tp."""
        return f"{self.date}_{self.cycle:02d}z_{'-'.join(self.variables)}"
