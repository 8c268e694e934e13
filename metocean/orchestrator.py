"""
Extraction Orchestrator

Drives one extraction run for one source: clamps the requested window into
the source range, plans the fetch units, executes them through a FetchWorker
and aggregates the outcomes into an ExtractionSummary.

Units sharing a chunk key (the per-variable siblings of one WW3 month) are
fanned out over a thread pool; every unit of a chunk finishes before the next
chunk starts. All other units run sequentially in plan order.
"""

import itertools
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence

from .chunk_planner import ChunkPlanner
from .config_manager import ExtractionContext, SourceConfig
from .coordinate_systems import Region, Station
from .fetch_units import UnitOutcome, UnitStatus
from .fetch_worker import FetchWorker, ProgressTracker
from .logging_utils import ExtractionAbortedError, ProcessingLogger, save_processing_session_summary
from .retry_policy import RetryPolicy
from .time_utils import TimeWindow
from .unit_store import UnitStore

logger = logging.getLogger(__name__)


class ExtractionSummary:
    """
    Aggregated result of one extraction run.

    Outcomes are kept in arrival order. Errored units are split into those
    for which the source reported that no data exists and genuine failures.
    """

    def __init__(self, source: str, outcomes: Sequence[UnitOutcome], aborted: bool = False,
                 elapsed_seconds: float = 0.0, abort_reason: Optional[str] = None):
        self.source = source
        self.outcomes = tuple(outcomes)
        self.aborted = aborted
        self.elapsed_seconds = elapsed_seconds
        self.abort_reason = abort_reason

    @classmethod
    def from_outcomes(cls, source: str, outcomes: Sequence[UnitOutcome], **kwargs) -> 'ExtractionSummary':
        return cls(source, outcomes, **kwargs)

    @property
    def counts(self) -> Dict[UnitStatus, int]:
        counts = {status: 0 for status in UnitStatus}
        for outcome in self.outcomes:
            counts[outcome.status] += 1
        return counts

    @property
    def timed_out(self) -> List[str]:
        return [o.unit.unit_id for o in self.outcomes if o.status == UnitStatus.TIMED_OUT]

    @property
    def errored(self) -> List[str]:
        return [o.unit.unit_id for o in self.outcomes if o.status == UnitStatus.ERRORED]

    @property
    def data_absent(self) -> List[str]:
        return [o.unit.unit_id for o in self.outcomes
                if o.status == UnitStatus.ERRORED and o.data_absent]

    @property
    def failed(self) -> List[str]:
        return [o.unit.unit_id for o in self.outcomes
                if o.status == UnitStatus.ERRORED and not o.data_absent]

    @property
    def success(self) -> bool:
        return not self.aborted and not self.timed_out and not self.errored

    @property
    def exit_code(self) -> int:
        """0 when everything completed or was skipped, 1 with failed units, 2 when aborted."""
        if self.aborted:
            return 2
        return 0 if self.success else 1

    def message(self) -> str:
        """Human-readable end-of-run report."""
        tag = f"{self.source.upper()}::"
        counts = self.counts

        if self.aborted:
            finished = counts[UnitStatus.COMPLETED] + counts[UnitStatus.SKIPPED]
            return (f"{tag} Extraction aborted: {self.abort_reason}. "
                    f"{finished} units were done before the abort; re-run to resume.")

        if self.success:
            return f"{tag} All data downloaded correctly."

        parts = [f"{tag} {len(self.timed_out)} downloads timed out and {len(self.errored)} threw errors."]
        if self.timed_out:
            parts.append(f"Re-run to resume the timed out units: {', '.join(self.timed_out)}.")
        if self.data_absent:
            parts.append(f"No data exists for: {', '.join(self.data_absent)}.")
        if self.failed:
            parts.append(f"Failed: {', '.join(self.failed)}. See the log for details.")
        return " ".join(parts)

    def to_dict(self) -> Dict:
        return {
            'source': self.source,
            'aborted': self.aborted,
            'abort_reason': self.abort_reason,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'counts': {status.value: count for status, count in self.counts.items()},
            'timed_out': self.timed_out,
            'data_absent': self.data_absent,
            'failed': self.failed,
            'message': self.message(),
            'outcomes': [outcome.to_dict() for outcome in self.outcomes],
        }


class ExtractionOrchestrator:
    """
    Run extractions for configured sources.

    Attributes:
        context (ExtractionContext): Output root, credentials and variables of the run
        adapter_factory: Factory used when no adapter is passed to ``run``
    """

    def __init__(self,
                 context: ExtractionContext,
                 adapter_factory=None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 clean_partial_files: bool = True):
        """
        Args:
            context: Per-run extraction context
            adapter_factory: Object with ``create_adapter(name, source_config, context)``
            sleep: Blocking sleep used for backoff (injectable for tests)
            clock: Monotonic clock (injectable for tests)
            clean_partial_files: Remove leftover '.part' files before starting
        """
        self.context = context
        self.adapter_factory = adapter_factory
        self.sleep = sleep
        self.clock = clock
        self.clean_partial_files = clean_partial_files
        self.processing_logger = ProcessingLogger()

    def run(self,
            region: Region,
            time_window: Optional[TimeWindow],
            source_config: SourceConfig,
            adapter=None,
            stations: Optional[Sequence[Station]] = None,
            summary_file: Optional[str] = None) -> ExtractionSummary:
        """
        Extract all units of a request.

        Args:
            region: Requested box or point
            time_window: Requested window, or None for the full source range
            source_config: Resolved source settings
            adapter: SourceAdapter; created through the factory when omitted
            stations: Fixed sites for station-based sources
            summary_file: Optional JSON path for the run summary

        Returns:
            ExtractionSummary

        Raises:
            ValidationError: If the window lies outside the source range
            ExtractionAbortedError: On a fatal failure, with ``summary`` attached
        """
        if adapter is None:
            if self.adapter_factory is None:
                raise ValueError("Either an adapter or an adapter factory is required")
            adapter = self.adapter_factory.create_adapter(source_config.name, source_config, self.context)

        valid_start, valid_end = source_config.valid_range
        window = (time_window or TimeWindow(valid_start, valid_end)).clamp(valid_start, valid_end)
        if time_window is not None and window != time_window:
            logger.warning(f"Time window {time_window} clamped to the {source_config.name} range: {window}")

        planner = ChunkPlanner(source_config.name)
        plan_args = dict(
            region=region,
            time_window=window,
            limits=source_config.limits,
            depth_mode=source_config.depth_profile,
            variables=list(source_config.variables) if source_config.fan_out_variables else None,
            stations=stations,
        )
        total_units = planner.count_units(**plan_args)

        store = UnitStore(self.context.output_root, suffix=source_config.file_suffix)
        if self.clean_partial_files:
            store.clean_partial_files(source_config.name)

        progress = ProgressTracker(total_units, label=source_config.name.upper())
        worker = FetchWorker(
            store,
            RetryPolicy.from_source_config(source_config),
            progress=progress,
            sleep=self.sleep,
            clock=self.clock,
            max_iterations_per_level=source_config.max_iterations_per_level,
        )

        self.processing_logger.log_extraction_start(source_config.name, {
            'region': region,
            'time_window': str(window),
            'units': total_units,
            'output_root': self.context.output_root,
            'depth_profile': source_config.depth_profile,
        })

        started = self.clock()
        outcomes: List[UnitOutcome] = []
        try:
            for _, group in itertools.groupby(planner.plan(**plan_args), key=lambda unit: unit.chunk_key):
                group = list(group)
                if len(group) == 1 or source_config.max_workers <= 1:
                    for unit in group:
                        self._record(outcomes, worker.execute(unit, adapter))
                else:
                    self._run_fan_out(group, worker, adapter, source_config.max_workers, outcomes)
        except ExtractionAbortedError as error:
            if error.unit is not None:
                outcomes.append(UnitOutcome(error.unit, UnitStatus.ABORTED, error_detail=str(error)))
            summary = ExtractionSummary(source_config.name, outcomes, aborted=True,
                                        elapsed_seconds=self.clock() - started, abort_reason=str(error))
            self._finish(summary, summary_file)
            error.summary = summary
            raise

        summary = ExtractionSummary(source_config.name, outcomes, elapsed_seconds=self.clock() - started)
        self._finish(summary, summary_file)
        return summary

    def _run_fan_out(self, group, worker: FetchWorker, adapter, max_workers: int,
                     outcomes: List[UnitOutcome]) -> None:
        """Run the sibling units of one chunk concurrently; all finish before returning."""
        abort_error = None
        with ThreadPoolExecutor(max_workers=min(max_workers, len(group))) as executor:
            futures = [executor.submit(worker.execute, unit, adapter) for unit in group]
            for future in as_completed(futures):
                try:
                    self._record(outcomes, future.result())
                except ExtractionAbortedError as error:
                    if abort_error is None:
                        abort_error = error
        if abort_error is not None:
            raise abort_error

    def _record(self, outcomes: List[UnitOutcome], outcome: UnitOutcome) -> None:
        outcomes.append(outcome)
        self.processing_logger.log_unit_outcome(outcome)

    def _finish(self, summary: ExtractionSummary, summary_file: Optional[str]) -> None:
        self.processing_logger.log_extraction_complete({
            status.value: count for status, count in summary.counts.items()
        })
        if summary.success:
            logger.info(summary.message())
        else:
            logger.warning(summary.message())

        if summary_file:
            save_processing_session_summary(summary.to_dict(), summary_file)
