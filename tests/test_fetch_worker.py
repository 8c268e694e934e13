"""
Tests for the fetch worker: skip checks, retry loops with backoff, fatal
aborts, adaptive depth profiles and progress reporting.

A fake clock is injected so cooldowns of minutes complete instantly.
"""

import logging
from datetime import datetime

import pytest
import requests

from metocean.coordinate_systems import Region
from metocean.fetch_units import FetchUnit, UnitOutcome, UnitStatus
from metocean.fetch_worker import FetchWorker, ProgressTracker
from metocean.logging_utils import (
    AuthenticationError,
    DataNotFoundError,
    ExtractionAbortedError,
    RateLimitError,
)
from metocean.retry_policy import RetryPolicy
from metocean.unit_store import UnitStore
from tests.conftest import ScriptedAdapter

UNIT = FetchUnit(
    source='hycom',
    location=Region.point(41, -124),
    start=datetime(2015, 1, 1),
    end=datetime(2015, 2, 1),
)
DEPTH_UNIT = FetchUnit(
    source='hycom',
    location=Region.point(41, -124),
    start=datetime(2015, 1, 1),
    end=datetime(2016, 1, 1),
    depth_profile=True,
)


class TestFetchWorker:
    """Test single unit execution"""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, fake_clock):
        self.clock = fake_clock
        self.store = UnitStore(tmp_path, suffix='.bin')
        self.policy = RetryPolicy(timeout_cooldown=60, server_cooldown=300, rate_limit_cooldown=120,
                                  max_transient_retries=2, max_rate_limit_retries=2)
        self.worker = FetchWorker(self.store, self.policy, sleep=self.clock.sleep, clock=self.clock)

    def test_existing_unit_is_skipped_without_request(self):
        self.store.write(UNIT, b'old')
        adapter = ScriptedAdapter(clock=self.clock)

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.SKIPPED
        assert adapter.fetched == []
        assert self.store.path_for(UNIT).read_bytes() == b'old'

    def test_successful_fetch_is_written(self):
        adapter = ScriptedAdapter(clock=self.clock, fetch_seconds=2.5)

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.COMPLETED
        assert outcome.attempts == 1
        assert outcome.elapsed_seconds == pytest.approx(2.5)
        assert self.store.path_for(UNIT).read_bytes() == b'payload'

    def test_rate_limit_retried_after_cooldown(self):
        adapter = ScriptedAdapter(
            clock=self.clock,
            failures=[RateLimitError("Too Many Requests"), RateLimitError("Too Many Requests")],
        )

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.COMPLETED
        assert outcome.attempts == 3
        assert self.clock.sleeps == [120, 120]
        assert outcome.backoff_seconds >= 2 * 120
        # Three one-second fetches; the four minutes of backoff are excluded
        assert outcome.elapsed_seconds == pytest.approx(3.0)

    def test_not_found_recorded_as_data_absent(self):
        adapter = ScriptedAdapter(clock=self.clock, failures=[DataNotFoundError("Not Found")])

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.ERRORED
        assert outcome.data_absent
        assert outcome.attempts == 1
        assert not self.store.exists(UNIT)

    def test_timeouts_exhaust_into_timed_out(self):
        adapter = ScriptedAdapter(clock=self.clock, failures=[requests.Timeout()] * 5)

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.TIMED_OUT
        assert outcome.attempts == 3
        assert self.clock.sleeps == [60, 60]
        assert not self.store.exists(UNIT)

    def test_unknown_error_not_retried(self):
        adapter = ScriptedAdapter(clock=self.clock, failures=[RuntimeError("odd failure")])

        outcome = self.worker.execute(UNIT, adapter)

        assert outcome.status == UnitStatus.ERRORED
        assert 'odd failure' in outcome.error_detail
        assert not outcome.data_absent

    def test_location_digits_do_not_trigger_backoff(self):
        unit = FetchUnit('hycom', Region.point(41.429, -124), datetime(2015, 1, 1), datetime(2015, 2, 1))
        adapter = ScriptedAdapter(
            clock=self.clock,
            failures=[ValueError(f"could not decode payload for {unit.unit_id}")],
        )

        outcome = self.worker.execute(unit, adapter)

        assert '41p4290N' in unit.unit_id
        assert outcome.status == UnitStatus.ERRORED
        assert outcome.attempts == 1
        assert self.clock.sleeps == []

    def test_authentication_failure_aborts(self):
        adapter = ScriptedAdapter(clock=self.clock, failures=[AuthenticationError("key rejected")])

        with pytest.raises(ExtractionAbortedError) as excinfo:
            self.worker.execute(UNIT, adapter)

        assert excinfo.value.unit == UNIT

    def test_rate_limit_cap_aborts(self):
        adapter = ScriptedAdapter(clock=self.clock, failures=[RateLimitError("quota")] * 3)

        with pytest.raises(ExtractionAbortedError):
            self.worker.execute(UNIT, adapter)

        assert self.clock.sleeps == [120, 120]
        assert not self.store.exists(UNIT)


class TestAdaptiveDepth:
    """Test probe-then-plan depth profiles"""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, fake_clock):
        self.clock = fake_clock
        self.store = UnitStore(tmp_path, suffix='.nc')
        self.policy = RetryPolicy(timeout_cooldown=60, server_cooldown=300, max_transient_retries=3)
        self.worker = FetchWorker(self.store, self.policy, sleep=self.clock.sleep, clock=self.clock)

    def test_one_file_per_valid_level(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=3)

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.COMPLETED
        assert adapter.probes == 1
        assert len(outcome.sub_outcomes) == 3
        for level in (1, 2, 3):
            assert self.store.exists(DEPTH_UNIT.with_depth_level(level, 3))
        assert not self.store.exists(DEPTH_UNIT.with_depth_level(4, 3))
        assert self.store.path_for(DEPTH_UNIT.with_depth_level(2, 3)).name == '2015_d02of03.nc'

    def test_rerun_skips_existing_levels(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=2)
        self.worker.execute(DEPTH_UNIT, adapter)

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.SKIPPED
        assert len(adapter.fetched) == 2
        assert adapter.probes == 1

    def test_complete_profile_rerun_needs_no_server(self):
        self.worker.execute(DEPTH_UNIT, ScriptedAdapter(clock=self.clock, depth_levels=3))

        unreachable = ScriptedAdapter(clock=self.clock, depth_levels=3,
                                      probe_failures=[RuntimeError("Error in getVarsShort")] * 5)
        outcome = self.worker.execute(DEPTH_UNIT, unreachable)

        assert outcome.status == UnitStatus.SKIPPED
        assert unreachable.probes == 0
        assert unreachable.fetched == []
        assert self.clock.sleeps == []
        assert outcome.attempts == 0

    def test_partial_profile_resumes_missing_levels(self):
        level_two = DEPTH_UNIT.with_depth_level(2, 3).unit_id
        first = ScriptedAdapter(clock=self.clock, depth_levels=3,
                                failures={level_two: [DataNotFoundError("Not Found")]})
        assert self.worker.execute(DEPTH_UNIT, first).status == UnitStatus.ERRORED

        second = ScriptedAdapter(clock=self.clock, depth_levels=3)
        outcome = self.worker.execute(DEPTH_UNIT, second)

        assert outcome.status == UnitStatus.COMPLETED
        assert second.probes == 0
        assert second.fetched == [level_two]
        assert [sub.status for sub in outcome.sub_outcomes] == [
            UnitStatus.SKIPPED, UnitStatus.COMPLETED, UnitStatus.SKIPPED,
        ]

    def test_probe_retried_immediately(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=1, probe_failures=[RuntimeError("odd")])

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.COMPLETED
        assert adapter.probes == 2
        assert self.clock.sleeps == []

    def test_probe_server_error_backs_off(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=1,
                                  probe_failures=[RuntimeError("Error in getVarsShort")])

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.COMPLETED
        assert self.clock.sleeps == [300]
        assert outcome.backoff_seconds == pytest.approx(300)

    def test_no_valid_levels(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=0)

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.ERRORED
        assert outcome.data_absent
        assert adapter.fetched == []

    def test_no_valid_levels_counts_every_depth_query(self):
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=0, probe_failures=[RuntimeError("odd")])

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.ERRORED
        assert adapter.probes == 2
        assert outcome.attempts == 2

    def test_iteration_cap(self):
        worker = FetchWorker(self.store, self.policy, sleep=self.clock.sleep, clock=self.clock,
                             max_iterations_per_level=1)
        level_one = DEPTH_UNIT.with_depth_level(1, 2).unit_id
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=2,
                                  failures={level_one: [requests.Timeout()]})

        outcome = worker.execute(DEPTH_UNIT, adapter)

        statuses = [sub.status for sub in outcome.sub_outcomes]
        assert statuses == [UnitStatus.COMPLETED, UnitStatus.ERRORED]
        assert 'Maximum iterations' in outcome.sub_outcomes[1].error_detail
        assert outcome.status == UnitStatus.ERRORED

    def test_failed_level_does_not_stop_others(self):
        level_one = DEPTH_UNIT.with_depth_level(1, 2).unit_id
        adapter = ScriptedAdapter(clock=self.clock, depth_levels=2,
                                  failures={level_one: [DataNotFoundError("Not Found")]})

        outcome = self.worker.execute(DEPTH_UNIT, adapter)

        assert outcome.status == UnitStatus.ERRORED
        assert self.store.exists(DEPTH_UNIT.with_depth_level(2, 2))
        assert 'level 1' in outcome.error_detail


class TestProgressTracker:
    """Test milestone reporting"""

    def test_milestones_every_five_percent(self):
        tracker = ProgressTracker(40, log=logging.getLogger('test'))
        for _ in range(40):
            tracker.record(UnitOutcome(UNIT, UnitStatus.COMPLETED, elapsed_seconds=1.0))

        assert len(tracker.messages) == 19
        assert tracker.messages[0] == ' 5% done. Estimated time left: 38.0s.'
        assert tracker.messages[-1].startswith('95% done.')

    def test_estimate_uses_mean_elapsed(self):
        tracker = ProgressTracker(10)
        tracker.record(UnitOutcome(UNIT, UnitStatus.COMPLETED, elapsed_seconds=2.0))
        tracker.record(UnitOutcome(UNIT, UnitStatus.SKIPPED, elapsed_seconds=0.0))
        assert tracker.estimate_remaining() == pytest.approx(8.0)

    def test_progress_recorded_by_worker(self, tmp_path, fake_clock):
        tracker = ProgressTracker(20, label='HYCOM')
        worker = FetchWorker(UnitStore(tmp_path), RetryPolicy(), progress=tracker,
                             sleep=fake_clock.sleep, clock=fake_clock)
        worker.execute(UNIT, ScriptedAdapter(clock=fake_clock))

        assert tracker.finished == 1
        assert tracker.messages == ['HYCOM::  5% done. Estimated time left: 19.0s.']
