"""
Selection of index entries into an ordered fetch plan.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config import RunConfig
from ..exceptions import SelectionEmpty
from ..paths import StorageKey, run_dir, slice_path
from .index import IndexEntry, grib_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchTask:
    """One byte range to retrieve into its own destination file."""

    lead_time: int
    member: int
    variable: str
    offset: int
    length: int
    source_url: str
    destination: Path

    @property
    def byte_range(self) -> Tuple[int, int]:
        """Half-open interval [offset, offset + length)."""
        return (self.offset, self.offset + self.length)

    @property
    def range_header(self) -> str:
        # HTTP ranges are inclusive on both ends
        return f"bytes={self.offset}-{self.offset + self.length - 1}"


@dataclass
class SelectionResult:
    tasks: List[FetchTask] = field(default_factory=list)
    empty_variables: List[str] = field(default_factory=list)

    def members(self) -> List[int]:
        return sorted({task.member for task in self.tasks})


class RecordSelector:
    """
    Filters parsed index entries by variable code and member scope.

    The member field of an entry is optional; a missing member is the
    control run and is routed to member 0. Tasks are ordered by lead time,
    then member, then variable, so that plans are reproducible.
    """

    def __init__(self, run: RunConfig):
        self.run = run
        self.root = run_dir(run)

    def _matches(self, entry: IndexEntry) -> bool:
        if entry.variable not in self.run.variables:
            return False
        if self.run.member is None:
            return True
        return entry.member_bucket == self.run.member

    def _task(self, entry: IndexEntry, lead_time: int) -> FetchTask:
        key = StorageKey(
            date=self.run.date,
            cycle=self.run.cycle,
            variable=entry.variable,
            member=entry.member_bucket,
            lead_time=lead_time,
        )
        return FetchTask(
            lead_time=lead_time,
            member=entry.member_bucket,
            variable=entry.variable,
            offset=entry.offset,
            length=entry.length,
            source_url=grib_url(self.run, lead_time),
            destination=slice_path(self.root, key),
        )

    def select(self, index_entries: Dict[int, List[IndexEntry]]) -> SelectionResult:
        """
        Build the fetch plan from entries keyed by lead time.

        Args:
            index_entries: Parsed entries per lead time (empty when unavailable)

        Returns:
            SelectionResult with ordered tasks and variables that matched nothing

        Raises:
            SelectionEmpty: If strict selection is enabled and a requested
                variable matched no entry
        """
        chosen: Dict[Tuple[int, int, str], FetchTask] = {}
        for lead_time in sorted(index_entries):
            for entry in index_entries[lead_time]:
                if not self._matches(entry):
                    continue
                key = (lead_time, entry.member_bucket, entry.variable)
                if key in chosen:
                    logger.debug(f"Duplicate record for {key}, keeping first")
                    continue
                chosen[key] = self._task(entry, lead_time)

        result = SelectionResult(tasks=[chosen[key] for key in sorted(chosen)])

        found = {task.variable for task in result.tasks}
        result.empty_variables = [v for v in self.run.variables if v not in found]
        for variable in result.empty_variables:
            logger.warning(f"No index entries match variable '{variable}' at any lead time")

        if result.empty_variables and self.run.settings.fail_on_empty_selection:
            raise SelectionEmpty(result.empty_variables)

        logger.info(
            f"Selected {len(result.tasks)} records for {', '.join(self.run.variables)} "
            f"across {len(result.members())} member(s)"
        )
        return result
