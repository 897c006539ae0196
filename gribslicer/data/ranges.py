"""
Byte-range retrieval of planned slices.

``RangeFetcher`` executes FetchTasks on a bounded thread pool. Each task
owns its destination file, so workers never coordinate. A destination that
already holds content is skipped, which makes interrupted runs resumable:
the slice directory is the journal of completed work.

A slice is streamed into ``<destination>.part`` and only renamed into place
once exactly the declared number of bytes arrived, so a destination never
holds a truncated slice. A body stream that breaks off mid-transfer is
retried from the start with the same backoff as the initial request.
"""

import logging
import os
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import requests
from tqdm import tqdm

from ..config import RunConfig
from ..constants import PARTIAL_SUFFIX
from ..exceptions import IntegrityError, TransportError
from ..paths import is_complete
from .selector import FetchTask
from .transport import STREAM_ERRORS, get_with_retry, sleep_before_retry

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class FetchStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult:
    """Terminal outcome of one FetchTask."""

    task: FetchTask
    status: FetchStatus
    reason: Optional[str] = None
    bytes_written: int = 0

    @property
    def ok(self) -> bool:
        """Slice is present on disk (fetched now or earlier)."""
        return self.status in (FetchStatus.SUCCESS, FetchStatus.SKIPPED)


def _partial_path(destination: Path) -> Path:
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")


class RangeFetcher:
    """
    Bounded worker pool performing idempotent partial-content retrievals.

    Attributes:
        run: Run configuration (timeouts, retries, pool size)
        http: requests-compatible client (defaults to the requests module)

    Example:
        >>> fetcher = RangeFetcher(run)
        >>> results = fetcher.fetch_all(selection.tasks)
        >>> sum(r.ok for r in results)
        61
    """

    def __init__(self, run: RunConfig, http=None):
        self.run = run
        self.http = http if http is not None else requests

    def _download(self, task: FetchTask, partial: Path) -> int:
        """
        Stream one range into ``partial``.

        A transfer interrupted while reading the body re-issues the request,
        up to ``max_retries`` times, restarting from an empty partial file.
        """
        attempts = self.run.settings.max_retries
        last_error = None
        for attempt in range(attempts):
            try:
                return self._attempt(task, partial)
            except STREAM_ERRORS as e:
                last_error = e
                _discard(partial)
                logger.debug(
                    f"Transfer interrupted on attempt {attempt + 1}/{attempts} "
                    f"for {task.source_url}: {e}"
                )
                if attempt < attempts - 1:
                    sleep_before_retry(self.run.settings.retry_backoff, attempt)
            except requests.RequestException as e:
                raise TransportError(f"Transfer from {task.source_url} failed: {e}") from e
        raise TransportError(
            f"Transfer from {task.source_url} failed after {attempts} attempts: {last_error}"
        )

    def _attempt(self, task: FetchTask, partial: Path) -> int:
        settings = self.run.settings
        response = get_with_retry(
            self.http,
            task.source_url,
            headers={"Range": task.range_header},
            stream=True,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            backoff=settings.retry_backoff,
        )
        written = 0
        try:
            if response.status_code != 206:
                declared = response.headers.get("Content-Length")
                if declared is None or not declared.isdigit() or int(declared) != task.length:
                    raise IntegrityError(
                        f"Server ignored range request (HTTP {response.status_code})"
                    )
            with open(partial, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > task.length:
                        raise IntegrityError(
                            f"Received more than the declared {task.length} bytes"
                        )
                    f.write(chunk)
        finally:
            response.close()

        if written != task.length:
            raise IntegrityError(f"Expected {task.length} bytes, received {written}")
        return written

    def fetch_one(self, task: FetchTask) -> FetchResult:
        """
        Retrieve exactly ``task.byte_range`` into ``task.destination``.

        Never raises for transport or integrity problems; they are reported
        as a FAILED result and any partial content is removed.
        """
        destination = task.destination
        if is_complete(destination):
            logger.debug(
                f"Skipping EN{task.member:02d} {task.variable} {task.lead_time}h (already exists)"
            )
            return FetchResult(task, FetchStatus.SKIPPED, bytes_written=destination.stat().st_size)

        partial = _partial_path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            written = self._download(task, partial)
            os.replace(partial, destination)
        except (TransportError, IntegrityError, OSError) as e:
            _discard(partial, destination)
            logger.warning(
                f"Failed EN{task.member:02d} {task.variable} {task.lead_time}h: {e}"
            )
            return FetchResult(task, FetchStatus.FAILED, reason=str(e))

        logger.debug(f"Fetched EN{task.member:02d} {task.variable} {task.lead_time}h ({written} bytes)")
        return FetchResult(task, FetchStatus.SUCCESS, bytes_written=written)

    def fetch_all(self, tasks: List[FetchTask]) -> List[FetchResult]:
        """
        Run every task to a terminal result.

        Results are returned in task order, independent of completion order.
        """
        if not tasks:
            return []

        settings = self.run.settings
        logger.info(f"Fetching {len(tasks)} slices ({settings.workers} workers)")
        start_time = time.time()

        results: Dict[int, FetchResult] = {}
        with ThreadPoolExecutor(max_workers=settings.workers) as executor:
            future_to_position = {
                executor.submit(self.fetch_one, task): position
                for position, task in enumerate(tasks)
            }
            futures = tqdm(
                as_completed(future_to_position),
                total=len(tasks),
                desc="Slices",
                unit="slice",
                disable=not settings.show_progress,
            )
            for future in futures:
                position = future_to_position[future]
                results[position] = future.result()

        ordered = [results[position] for position in range(len(tasks))]
        counts = Counter(result.status for result in ordered)
        logger.info(
            f"Slice download complete in {time.time() - start_time:.1f}s: "
            f"{counts[FetchStatus.SUCCESS]} fetched, {counts[FetchStatus.SKIPPED]} skipped, "
            f"{counts[FetchStatus.FAILED]} failed"
        )
        return ordered
