"""
Fetch Worker

Executes one fetch unit: checks the unit store, calls the source adapter,
applies the retry policy on failure and writes the payload through the unit
store. Each call returns exactly one UnitOutcome; only fatal classifications
escape as ExtractionAbortedError.

Adaptive depth:
Units flagged ``depth_profile`` are handled in two phases. The probe asks the
adapter how many depth levels hold valid data at the point (an idempotent,
cheap request that may be retried immediately), then one level unit per valid
level is executed and stored separately. The total number of attempts across
all levels is capped at ``max_iterations_per_level`` times the number of
levels. Level files record the level count, so once any level is on disk a
re-run takes the count from the store instead of asking the source.

Timing:
Elapsed times exclude backoff pauses so that the remaining-time estimate is
not skewed by rate-limit waits.
"""

import logging
import threading
import time
from collections import Counter
from typing import Callable, List, Optional

from .fetch_units import FetchUnit, UnitOutcome, UnitStatus
from .logging_utils import ExtractionAbortedError
from .retry_policy import RetryAction, RetryPolicy
from .unit_store import UnitStore

logger = logging.getLogger(__name__)

PROGRESS_STEP = 0.05


class ProgressTracker:
    """
    Reports progress at fixed completion-percentage milestones.

    With the default 5% step and 40 units, a message is logged after units
    2, 4, 6 ... 38, each with an estimate of the remaining time computed from
    the mean elapsed time of the units finished so far.
    """

    def __init__(self, total_units: int, label: str = '', step: float = PROGRESS_STEP,
                 log: Optional[logging.Logger] = None):
        self.total_units = total_units
        self.label = label
        self.logger = log or logger
        self.finished = 0
        self.elapsed_total = 0.0
        self.messages: List[str] = []
        self._lock = threading.Lock()

        self.milestones = {}
        steps = int(round(1 / step))
        for k in range(1, steps):
            count = int(round(k * step * total_units))
            if count > 0:
                self.milestones[count] = k * step * 100

    def record(self, outcome: UnitOutcome) -> Optional[str]:
        """Record a finished unit; returns the progress message if a milestone was hit."""
        with self._lock:
            self.finished += 1
            self.elapsed_total += outcome.elapsed_seconds

            if self.finished not in self.milestones:
                return None

            message = (
                f"{self.label + ':: ' if self.label else ''}"
                f"{self.milestones[self.finished]:2.0f}% done. "
                f"Estimated time left: {self.estimate_remaining():0.1f}s."
            )
            self.messages.append(message)

        self.logger.info(message)
        return message

    def estimate_remaining(self) -> float:
        """Mean elapsed time of finished units times the number of units remaining."""
        if self.finished == 0:
            return 0.0
        mean_elapsed = self.elapsed_total / self.finished
        return mean_elapsed * max(self.total_units - self.finished, 0)


class _UnitTimer:
    """Wall-clock timer that keeps backoff pauses out of the elapsed time."""

    def __init__(self, clock: Callable[[], float], sleep: Callable[[float], None]):
        self._clock = clock
        self._sleep = sleep
        self.start = clock()
        self.paused = 0.0

    def pause(self, seconds: float) -> None:
        before = self._clock()
        self._sleep(seconds)
        self.paused += self._clock() - before

    def add_paused(self, seconds: float) -> None:
        self.paused += seconds

    @property
    def elapsed(self) -> float:
        return max(self._clock() - self.start - self.paused, 0.0)


class _IterationBudget:
    """Shared attempt budget for the depth levels of one unit."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def consume(self) -> bool:
        if self.used >= self.limit:
            return False
        self.used += 1
        return True


class FetchWorker:
    """
    Execute fetch units against a source adapter.

    Attributes:
        store (UnitStore): Where payloads are written
        policy (RetryPolicy): Failure classification
        progress (ProgressTracker): Optional milestone reporter
    """

    def __init__(self,
                 store: UnitStore,
                 policy: RetryPolicy,
                 progress: Optional[ProgressTracker] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 max_iterations_per_level: int = 100):
        """
        Args:
            store: Unit store for existence checks and writes
            policy: Retry policy of the source
            progress: Progress tracker shared by all units of a run
            sleep: Blocking sleep used for backoff cooldowns
            clock: Monotonic clock in seconds
            max_iterations_per_level: Attempt cap per discovered depth level
        """
        self.store = store
        self.policy = policy
        self.progress = progress
        self.sleep = sleep
        self.clock = clock
        self.max_iterations_per_level = max_iterations_per_level

    def execute(self, unit: FetchUnit, adapter) -> UnitOutcome:
        """
        Execute one unit and return its outcome.

        Args:
            unit: Unit to fetch
            adapter: SourceAdapter for the unit's source

        Returns:
            UnitOutcome

        Raises:
            ExtractionAbortedError: On a fatal classification
        """
        if unit.depth_profile:
            outcome = self._execute_depth_profile(unit, adapter)
        else:
            outcome = self._execute_single(unit, adapter)

        if self.progress is not None:
            self.progress.record(outcome)
        return outcome

    def _execute_single(self, unit: FetchUnit, adapter,
                        budget: Optional[_IterationBudget] = None) -> UnitOutcome:
        timer = _UnitTimer(self.clock, self.sleep)

        if self.store.exists(unit):
            logger.info(f"{self.store.path_for(unit)} already downloaded.")
            return UnitOutcome(unit, UnitStatus.SKIPPED, elapsed_seconds=timer.elapsed)

        attempts = 0
        retries = Counter()

        while True:
            if budget is not None and not budget.consume():
                reason = f"Maximum iterations ({budget.limit}) reached before {unit.unit_id} succeeded"
                logger.error(reason)
                return UnitOutcome(unit, UnitStatus.ERRORED, elapsed_seconds=timer.elapsed,
                                   backoff_seconds=timer.paused, attempts=attempts, error_detail=reason)

            attempts += 1
            try:
                request = adapter.build_request(unit)
                raw_payload = adapter.fetch(request)
                payload = adapter.parse(raw_payload, request)
                path = self.store.write(unit, payload)
            except Exception as error:
                category = self.policy.categorize(error)
                decision = self.policy.classify(error, attempt=retries[category])

                if decision.action == RetryAction.FATAL_ABORT:
                    logger.error(f"Aborting on {unit.unit_id}: {decision.reason}")
                    raise ExtractionAbortedError(
                        decision.reason, unit=unit,
                        context={'category': decision.category, 'attempts': attempts}
                    ) from error

                if decision.action == RetryAction.SKIP_RECORD_ERROR:
                    self._log_giving_up(unit, decision)
                    return UnitOutcome(
                        unit, decision.status,
                        elapsed_seconds=timer.elapsed,
                        backoff_seconds=timer.paused,
                        attempts=attempts,
                        error_detail=decision.reason,
                        data_absent=decision.data_absent,
                    )

                retries[category] += 1
                if decision.action == RetryAction.RETRY_AFTER_BACKOFF:
                    logger.warning(
                        f"{decision.reason}. Attempting retry of {unit.unit_id} in {decision.delay:.0f} seconds..."
                    )
                    timer.pause(decision.delay)
                else:
                    logger.info(f"Retrying {unit.unit_id} immediately: {decision.reason}")
                continue

            logger.info(f"{unit.source.upper()} extraction for {unit.unit_id} successful.")
            logger.debug(f"Wrote {path}")
            return UnitOutcome(unit, UnitStatus.COMPLETED,
                               elapsed_seconds=timer.elapsed,
                               backoff_seconds=timer.paused,
                               attempts=attempts)

    def _log_giving_up(self, unit: FetchUnit, decision) -> None:
        if decision.data_absent:
            logger.warning(f"No data for {unit.unit_id}: {decision.reason}")
        elif decision.status == UnitStatus.TIMED_OUT:
            logger.warning(f"{unit.unit_id} timed out: {decision.reason}")
        else:
            logger.error(f"{unit.unit_id} failed: {decision.reason}")

    def probe(self, unit: FetchUnit, adapter, timer: _UnitTimer):
        """
        Discover the number of valid depth levels at the unit's location.

        The probe is idempotent, so unclassified failures are retried at once
        up to the policy's immediate-retry cap; transient failures back off
        like any other request.

        Returns:
            (levels, attempts, None) on success or (None, attempts, UnitOutcome)
            when the probe gave up
        """
        retries = Counter()
        attempts = 0
        while True:
            attempts += 1
            try:
                levels = int(adapter.probe_depth_levels(unit))
                logger.info(f"Depth probe for {unit.unit_id}: {levels} valid levels")
                return levels, attempts, None
            except Exception as error:
                category = self.policy.categorize(error)
                decision = self.policy.classify(error, attempt=retries[category], idempotent=True)

                if decision.action == RetryAction.FATAL_ABORT:
                    raise ExtractionAbortedError(decision.reason, unit=unit,
                                                 context={'phase': 'depth probe'}) from error

                if decision.action == RetryAction.SKIP_RECORD_ERROR:
                    self._log_giving_up(unit, decision)
                    return None, attempts, UnitOutcome(
                        unit, decision.status,
                        elapsed_seconds=timer.elapsed,
                        backoff_seconds=timer.paused,
                        attempts=attempts,
                        error_detail=f"Depth query failed: {decision.reason}",
                        data_absent=decision.data_absent,
                    )

                retries[category] += 1
                if decision.action == RetryAction.RETRY_AFTER_BACKOFF:
                    logger.warning(f"Depth query failed, waiting {decision.delay:.0f} seconds...")
                    timer.pause(decision.delay)

    def _execute_depth_profile(self, unit: FetchUnit, adapter) -> UnitOutcome:
        timer = _UnitTimer(self.clock, self.sleep)

        levels = self.store.recorded_depth_levels(unit)
        probe_attempts = 0
        if levels is not None:
            logger.info(f"{unit.unit_id}: {levels} depth levels recorded by an earlier run")
        else:
            levels, probe_attempts, failure = self.probe(unit, adapter, timer)
            if failure is not None:
                return failure

        if levels <= 0:
            return UnitOutcome(unit, UnitStatus.ERRORED, elapsed_seconds=timer.elapsed,
                               backoff_seconds=timer.paused, attempts=probe_attempts,
                               error_detail="No valid depth levels at this location",
                               data_absent=True)

        budget = _IterationBudget(self.max_iterations_per_level * levels)
        sub_outcomes = []
        for level in range(1, levels + 1):
            sub_outcome = self._execute_single(unit.with_depth_level(level, levels), adapter, budget)
            timer.add_paused(sub_outcome.backoff_seconds)
            sub_outcomes.append(sub_outcome)

        statuses = [sub.status for sub in sub_outcomes]
        if all(status == UnitStatus.SKIPPED for status in statuses):
            status = UnitStatus.SKIPPED
        else:
            status = max(statuses, key=lambda s: s.severity)

        failed = [sub for sub in sub_outcomes if sub.status.is_failure]
        detail = None
        if failed:
            detail = "; ".join(f"level {sub.unit.depth_level}: {sub.error_detail}" for sub in failed)

        return UnitOutcome(
            unit, status,
            elapsed_seconds=timer.elapsed,
            backoff_seconds=timer.paused,
            attempts=probe_attempts + sum(sub.attempts for sub in sub_outcomes),
            error_detail=detail,
            data_absent=bool(failed) and all(sub.data_absent for sub in failed),
            sub_outcomes=tuple(sub_outcomes),
        )
