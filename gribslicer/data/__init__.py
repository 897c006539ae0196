"""
Index-driven retrieval for gribslicer.

This subpackage turns per-lead-time index resources into an ordered fetch
plan and retrieves the planned byte ranges.

Main Classes:
    IndexFetcher: Retrieves and validates one index per lead time
    RecordSelector: Filters index entries into FetchTasks
    RangeFetcher: Bounded pool of idempotent byte-range downloads

Example:
    >>> from gribslicer.config import RunConfig
    >>> from gribslicer.data import IndexFetcher, RecordSelector, RangeFetcher
    >>>
    >>> run = RunConfig.create("20251012", "00z", ["tp"])
    >>> index = IndexFetcher(run).fetch_all()
    >>> plan = RecordSelector(run).select(index.entries)
    >>> results = RangeFetcher(run).fetch_all(plan.tasks)
"""

from .index import IndexEntry, IndexFetcher, IndexFetchResult, parse_index_lines
from .ranges import FetchResult, FetchStatus, RangeFetcher
from .selector import FetchTask, RecordSelector, SelectionResult

__all__ = [
    "IndexEntry",
    "IndexFetcher",
    "IndexFetchResult",
    "parse_index_lines",
    "FetchTask",
    "RecordSelector",
    "SelectionResult",
    "FetchResult",
    "FetchStatus",
    "RangeFetcher",
]
