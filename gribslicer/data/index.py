"""
Index retrieval and parsing.

Every GRIB2 blob on the open-data mirror is accompanied by an ``.index``
resource: one JSON object per line, each describing one field and its byte
location inside the blob, e.g.::

    {"param": "tp", "step": "6", "number": "5", "_offset": 0, "_length": 609069, ...}

``parse_index_lines`` streams those records without ever wrapping them in a
container, and ``IndexFetcher`` retrieves one index per lead time with
bounded parallelism. An index that cannot be fetched or fails validation
marks its lead time unavailable; the run continues with the rest.
"""

import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

import requests
from tqdm import tqdm

from ..config import RunConfig
from ..constants import GRIB_EXTENSION, INDEX_EXTENSION, REQUIRED_INDEX_KEYS, RESOURCE_TEMPLATE
from ..exceptions import MalformedMetadataError, TransportError
from ..paths import index_path, is_complete
from .transport import get_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """One field record of an index resource."""

    variable: str
    member: Optional[int]
    lead_time: int
    offset: int
    length: int

    @property
    def member_bucket(self) -> int:
        """Member number with the control run (no number) mapped to 0."""
        return self.member if self.member is not None else 0


@dataclass
class IndexFetchResult:
    """Parsed entries per lead time; unavailable lead times map to []."""

    entries: Dict[int, List[IndexEntry]] = field(default_factory=dict)
    unavailable_lead_times: List[int] = field(default_factory=list)

    @property
    def available_lead_times(self) -> List[int]:
        return sorted(lt for lt, items in self.entries.items() if items)


def resource_url(run: RunConfig, lead_time: int, extension: str) -> str:
    """URL of the index or GRIB2 resource for one lead time."""
    return RESOURCE_TEMPLATE.format(
        base_url=run.settings.base_url,
        date=run.date,
        cycle=run.cycle,
        resolution=run.settings.resolution,
        stream=run.stream,
        type=run.forecast_type,
        step=lead_time,
        ext=extension,
    )


def index_url(run: RunConfig, lead_time: int) -> str:
    return resource_url(run, lead_time, INDEX_EXTENSION)


def grib_url(run: RunConfig, lead_time: int) -> str:
    return resource_url(run, lead_time, GRIB_EXTENSION)


def _parse_step(value) -> int:
    # Accumulated fields may carry a "start-end" step range
    text = str(value).strip()
    if "-" in text:
        text = text.rsplit("-", 1)[1]
    return int(text)


def _parse_member(value) -> Optional[int]:
    if value is None or str(value).strip() in ("", "null"):
        return None
    member = int(value)
    if member < 0:
        raise ValueError(f"negative member {member}")
    return member


def parse_index_record(record: dict) -> IndexEntry:
    """
    Convert one decoded index record into an IndexEntry.

    Raises:
        MalformedMetadataError: If a required key is missing or invalid
    """
    missing = [key for key in REQUIRED_INDEX_KEYS if key not in record]
    if missing:
        raise MalformedMetadataError(f"Index record missing keys: {missing}")
    try:
        entry = IndexEntry(
            variable=str(record["param"]),
            member=_parse_member(record.get("number")),
            lead_time=_parse_step(record["step"]),
            offset=int(record["_offset"]),
            length=int(record["_length"]),
        )
    except (TypeError, ValueError) as e:
        raise MalformedMetadataError(f"Invalid index record {record!r}: {e}") from e
    if entry.offset < 0 or entry.length <= 0:
        raise MalformedMetadataError(
            f"Invalid byte range offset={entry.offset} length={entry.length}"
        )
    return entry


def _decode_line(lineno: int, line: str) -> IndexEntry:
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedMetadataError(f"Line {lineno} is not JSON: {e}") from e
    if not isinstance(record, dict):
        raise MalformedMetadataError(f"Line {lineno} is not a JSON object")
    return parse_index_record(record)


def parse_index_lines(lines: Iterable[str], strict: bool = False) -> Iterator[IndexEntry]:
    """
    Stream IndexEntry objects from line-delimited JSON.

    Blank lines are ignored. A line that is not a JSON object carrying the
    required keys is skipped and logged at DEBUG.

    Args:
        lines: Index text, one record per line
        strict: Raise on the first invalid line instead of skipping it

    Raises:
        MalformedMetadataError: On an invalid line, only when ``strict``
    """
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield _decode_line(lineno, line)
        except MalformedMetadataError as e:
            if strict:
                raise
            logger.debug(f"Skipping index line: {e}")


def validate_index(text: str) -> List[IndexEntry]:
    """
    Parse a whole index resource, keeping every valid record.

    Invalid lines are dropped; their number is logged at WARNING.

    Raises:
        MalformedMetadataError: If no line is a valid record
    """
    entries = []
    skipped = 0
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(_decode_line(lineno, line))
        except MalformedMetadataError as e:
            skipped += 1
            logger.debug(f"Skipping index line: {e}")
    if not entries:
        raise MalformedMetadataError(
            f"Index contains no valid records ({skipped} invalid line(s))"
        )
    if skipped:
        logger.warning(f"Skipped {skipped} invalid index line(s), kept {len(entries)} records")
    return entries


class IndexFetcher:
    """
    Retrieves and validates one index resource per lead time.

    Accepted indexes are cached under the run directory so that a resumed
    run re-plans without network access.

    Example:
        >>> fetcher = IndexFetcher(run)
        >>> result = fetcher.fetch_all()
        >>> result.unavailable_lead_times
        [42]
    """

    def __init__(self, run: RunConfig, http=None):
        self.run = run
        self.http = http if http is not None else requests

    def _load_cached(self, lead_time: int) -> Optional[List[IndexEntry]]:
        path = index_path(self.run, lead_time)
        if not is_complete(path):
            return None
        try:
            entries = validate_index(path.read_text())
        except MalformedMetadataError as e:
            logger.debug(f"Discarding cached index {path.name}: {e}")
            path.unlink(missing_ok=True)
            return None
        logger.debug(f"Using cached index for {lead_time}h")
        return entries

    def _store(self, lead_time: int, text: str) -> None:
        path = index_path(self.run, lead_time)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(text)
        os.replace(tmp, path)

    def fetch_one(self, lead_time: int) -> List[IndexEntry]:
        """
        Fetch, validate and cache the index for one lead time.

        Returns:
            Parsed entries, or an empty list if the index is unavailable
        """
        cached = self._load_cached(lead_time)
        if cached is not None:
            return cached

        url = index_url(self.run, lead_time)
        settings = self.run.settings
        try:
            response = get_with_retry(
                self.http,
                url,
                timeout=settings.timeout,
                max_retries=settings.max_retries,
                backoff=settings.retry_backoff,
            )
            try:
                text = response.text
            finally:
                response.close()
            entries = validate_index(text)
        except TransportError as e:
            logger.warning(f"Index for {lead_time}h unavailable: {e}")
            return []
        except MalformedMetadataError as e:
            logger.warning(f"Invalid index for {lead_time}h: {e}")
            return []

        self._store(lead_time, text)
        logger.debug(f"Index {lead_time}h: {len(entries)} records")
        return entries

    def fetch_all(self) -> IndexFetchResult:
        """Fetch every configured lead time on a bounded thread pool."""
        lead_times = self.run.lead_times
        settings = self.run.settings
        result = IndexFetchResult()

        logger.info(f"Fetching {len(lead_times)} index files ({settings.workers} workers)")
        with ThreadPoolExecutor(max_workers=settings.workers) as executor:
            future_to_lead_time = {
                executor.submit(self.fetch_one, lead_time): lead_time
                for lead_time in lead_times
            }
            futures = tqdm(
                as_completed(future_to_lead_time),
                total=len(future_to_lead_time),
                desc="Index files",
                unit="file",
                disable=not settings.show_progress,
            )
            for future in futures:
                lead_time = future_to_lead_time[future]
                try:
                    result.entries[lead_time] = future.result()
                except OSError as e:
                    logger.error(f"Index for {lead_time}h could not be cached: {e}")
                    result.entries[lead_time] = []

        result.unavailable_lead_times = sorted(
            lt for lt, items in result.entries.items() if not items
        )
        logger.info(
            f"Index download complete: {len(lead_times) - len(result.unavailable_lead_times)}"
            f"/{len(lead_times)} available"
        )
        if result.unavailable_lead_times:
            logger.warning(f"Unavailable lead times: {result.unavailable_lead_times}")
        return result
