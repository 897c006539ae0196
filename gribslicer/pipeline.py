"""
Orchestration of one fetch-and-assemble run.

``ForecastPipeline`` wires the stages together in their fixed order:

    IndexFetcher -> RecordSelector -> RangeFetcher -> SeriesAssembler -> Cleanup

and condenses the outcome into a ``RunReport``. Failures are contained at
task or unit level; a run only reports failure when no requested
(variable, member) unit produced a final artifact.

Example:
    >>> from gribslicer.config import RunConfig
    >>> from gribslicer.pipeline import ForecastPipeline
    >>>
    >>> run = RunConfig.create("20251012", "00z", ["tp"], product="ens")
    >>> report = ForecastPipeline(run).run()
    >>> report.success
    True
"""

import logging
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .assemble import ArrayTransform, SeriesAssembler, UnitOutcome
from .cleanup import Cleanup
from .config import RunConfig
from .data.index import IndexFetcher, grib_url
from .data.ranges import FetchResult, FetchStatus, RangeFetcher
from .data.selector import FetchTask, RecordSelector
from .paths import final_path, is_complete, link_file, run_dir

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Aggregated outcome of a run."""

    run: RunConfig
    unavailable_lead_times: List[int] = field(default_factory=list)
    empty_variables: List[str] = field(default_factory=list)
    fetch_counts: Dict[str, int] = field(default_factory=dict)
    units: List[UnitOutcome] = field(default_factory=list)
    total_time: float = 0.0

    @property
    def final_artifacts(self) -> List[Path]:
        return sorted({u.final_path for u in self.units if u.final_path is not None})

    @property
    def failed_units(self) -> List[UnitOutcome]:
        return [u for u in self.units if not u.produced]

    @property
    def success(self) -> bool:
        return any(u.produced for u in self.units)

    def summary(self) -> Dict[str, Any]:
        produced = sum(1 for u in self.units if u.produced)
        return {
            "run": self.run.label,
            "product": self.run.product,
            "output_dir": str(run_dir(self.run)),
            "lead_times": len(self.run.lead_times),
            "unavailable_lead_times": list(self.unavailable_lead_times),
            "empty_variables": list(self.empty_variables),
            "fetch": dict(self.fetch_counts),
            "units_produced": produced,
            "units_total": len(self.units),
            "final_artifacts": [str(p) for p in self.final_artifacts],
            "success": self.success,
            "total_time": round(self.total_time, 1),
        }


def write_link_file(run: RunConfig, lead_times: List[int]) -> Path:
    """Record the GRIB2 resources that back the available lead times."""
    path = link_file(run)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{grib_url(run, lt)}\n" for lt in sorted(lead_times)))
    return path


class ForecastPipeline:
    """
    Runs every stage for one RunConfig.

    Attributes:
        run_config: Immutable run configuration shared by all stages
        http: Optional requests-compatible client for index and range fetches
        transform: Optional ArrayTransform for the assembly steps
    """

    def __init__(
        self,
        run: RunConfig,
        http=None,
        transform: Optional[ArrayTransform] = None,
    ):
        self.run_config = run
        self.index_fetcher = IndexFetcher(run, http=http)
        self.selector = RecordSelector(run)
        self.range_fetcher = RangeFetcher(run, http=http)
        self.assembler = SeriesAssembler(run, transform=transform)
        self.cleanup = Cleanup(run)

    def _group_slices(
        self,
        members: List[int],
        results: List[FetchResult],
    ) -> Dict[int, Dict[str, List[FetchTask]]]:
        grouped: Dict[int, Dict[str, List[FetchTask]]] = {m: {} for m in members}
        for result in results:
            if result.ok:
                task = result.task
                grouped[task.member].setdefault(task.variable, []).append(task)
        return grouped

    def run(self) -> RunReport:
        """
        Execute the pipeline.

        Returns:
            RunReport with one UnitOutcome per requested (variable, member)

        Raises:
            SelectionEmpty: Only with strict selection enabled
        """
        start_time = time.time()
        run = self.run_config
        report = RunReport(run=run)
        logger.info(
            f"Starting {run.product.upper()} run {run.label} "
            f"(member={'all' if run.member is None else run.member})"
        )
        run.settings.ensure_directories()

        index = self.index_fetcher.fetch_all()
        report.unavailable_lead_times = index.unavailable_lead_times
        write_link_file(run, index.available_lead_times)

        selection = self.selector.select(index.entries)
        report.empty_variables = list(selection.empty_variables)

        members = selection.members()
        planned: Dict[int, List[str]] = defaultdict(list)
        for task in selection.tasks:
            if task.variable not in planned[task.member]:
                planned[task.member].append(task.variable)

        done = [m for m in members if is_complete(final_path(run, m))]
        if done:
            logger.info(f"{len(done)} member(s) already have final artifacts")
        pending_tasks = [t for t in selection.tasks if t.member not in done]

        results = self.range_fetcher.fetch_all(pending_tasks)
        counts = Counter(r.status for r in results)
        report.fetch_counts = {status.value: counts[status] for status in FetchStatus}

        slices = self._group_slices(members, results)
        for member in done:
            # Finished members report the variables they were planned with
            slices[member] = {v: [] for v in planned[member]}
        for member in members:
            for variable in planned[member]:
                slices[member].setdefault(variable, [])

        outcomes = self.assembler.assemble_all(slices)

        for member in members:
            if any(o.produced for o in outcomes.get(member, [])):
                self.cleanup.cleanup_member(member)
        if members:
            self.cleanup.cleanup_run(members)

        report.units = self._collect_units(members, outcomes, selection.empty_variables)
        report.total_time = time.time() - start_time

        produced = sum(1 for u in report.units if u.produced)
        logger.info(
            f"Run {run.label} complete: {produced}/{len(report.units)} units produced "
            f"in {report.total_time:.1f}s"
        )
        for unit in report.failed_units:
            member = "--" if unit.member is None else f"{unit.member:02d}"
            logger.warning(f"No final artifact for {unit.variable} EN{member}: {unit.reason}")
        if not report.success:
            logger.error(f"Run {run.label} produced no final artifacts")
        return report

    def _collect_units(
        self,
        members: List[int],
        outcomes: Dict[int, List[UnitOutcome]],
        empty_variables: List[str],
    ) -> List[UnitOutcome]:
        units: List[UnitOutcome] = []
        for variable in self.run_config.variables:
            if variable in empty_variables:
                units.append(UnitOutcome(
                    variable, self.run_config.member, reason="no matching index entries"
                ))
                continue
            for member in members:
                by_variable = {o.variable: o for o in outcomes.get(member, [])}
                units.append(by_variable.get(
                    variable,
                    UnitOutcome(variable, member, reason="no index entries for member"),
                ))
        return units
