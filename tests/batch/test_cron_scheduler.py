"""
Tests for registry_batch.services.scheduler -- CronScheduler.

Uses in-process fake jobs; no database.  Blocking jobs hold their lock on a
threading.Event so overlap can be arranged deterministically.
"""

import threading
import time
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from registry_kernel.domain.clock import DeterministicClock
from registry_kernel.exceptions import (
    InvalidCronExpressionError,
    JobAlreadyRunningError,
    UnknownTaskError,
)

from registry_batch.domain.types import JobResult, JobSchedule
from registry_batch.jobs.base import JobRegistry
from registry_batch.services.scheduler import CronScheduler


# =============================================================================
# Fake jobs
# =============================================================================


class CountingJob:
    """Succeeds and counts its runs."""

    description = "Counting job"

    def __init__(self, name="counting"):
        self.name = name
        self.runs = 0
        self.ran = threading.Event()

    def run(self) -> JobResult:
        self.runs += 1
        self.ran.set()
        return JobResult(job_name=self.name, success=True, updated_count=self.runs)


class BlockingJob:
    """Holds its run open until ``release`` is set."""

    name = "blocking"
    description = "Blocks until released"

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.runs = 0

    def run(self) -> JobResult:
        self.runs += 1
        self.started.set()
        self.release.wait(timeout=5)
        return JobResult(job_name=self.name, success=True)


class ExplodingJob:
    """Raises instead of reporting."""

    name = "exploding"
    description = "Raises"

    def run(self) -> JobResult:
        raise RuntimeError("disk on fire")


class FailingJob:
    name = "failing"
    description = "Reports failure"

    def run(self) -> JobResult:
        return JobResult(job_name=self.name, success=False, error_code="NO_ACTIVE_RATE")


def _registry(*jobs) -> JobRegistry:
    registry = JobRegistry()
    for job in jobs:
        registry.register(job)
    return registry


@pytest.fixture
def scheduler_clock():
    return DeterministicClock()


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:

    def test_schedule_for_unknown_job_rejected(self):
        with pytest.raises(UnknownTaskError):
            CronScheduler(_registry(CountingJob()), [JobSchedule("nightly", "0 2 * * *")])

    def test_bad_cron_rejected(self):
        with pytest.raises(InvalidCronExpressionError):
            CronScheduler(_registry(CountingJob()), [JobSchedule("counting", "0 25 * * *")])

    def test_bad_timezone_rejected(self):
        with pytest.raises(InvalidCronExpressionError):
            CronScheduler(
                _registry(CountingJob()),
                [JobSchedule("counting", "0 2 * * *", timezone="Nowhere/Special")],
            )


# =============================================================================
# Execution
# =============================================================================


class TestRunNow:

    def test_runs_and_records(self, scheduler_clock):
        job = CountingJob()
        scheduler = CronScheduler(_registry(job), clock=scheduler_clock)

        result = scheduler.run_now("counting")

        assert result.success
        assert job.runs == 1
        status = scheduler.status()[0]
        assert status.last_result is result
        assert status.last_run_at == scheduler_clock.now()
        assert not status.is_executing

    def test_unknown_job(self):
        scheduler = CronScheduler(_registry(CountingJob()))
        with pytest.raises(UnknownTaskError):
            scheduler.run_now("nightly_backup")

    def test_failed_result_returned(self):
        scheduler = CronScheduler(_registry(FailingJob()))

        result = scheduler.run_now("failing")

        assert not result.success
        assert result.error_code == "NO_ACTIVE_RATE"

    def test_times_out_while_job_busy(self):
        job = BlockingJob()
        scheduler = CronScheduler(_registry(job), lock_timeout_seconds=0.05)
        worker = threading.Thread(target=scheduler.run_now, args=("blocking",))
        worker.start()
        try:
            assert job.started.wait(timeout=5)
            with pytest.raises(JobAlreadyRunningError):
                scheduler.run_now("blocking")
        finally:
            job.release.set()
            worker.join(timeout=5)

        assert job.runs == 1


class TestTrigger:

    def test_exception_is_contained(self):
        scheduler = CronScheduler(_registry(ExplodingJob()))

        assert scheduler.trigger("exploding") is None
        assert not scheduler.status()[0].is_executing

    def test_failure_is_recorded(self):
        scheduler = CronScheduler(_registry(FailingJob()))

        result = scheduler.trigger("failing")

        assert result is not None and not result.success
        assert scheduler.status()[0].last_result is result

    def test_unknown_job_ignored(self):
        scheduler = CronScheduler(_registry(CountingJob()))
        assert scheduler.trigger("nightly_backup") is None

    def test_skips_while_job_running(self):
        job = BlockingJob()
        scheduler = CronScheduler(_registry(job))
        worker = threading.Thread(target=scheduler.trigger, args=("blocking",))
        worker.start()
        try:
            assert job.started.wait(timeout=5)
            assert scheduler.status()[0].is_executing
            assert scheduler.trigger("blocking") is None
        finally:
            job.release.set()
            worker.join(timeout=5)

        assert job.runs == 1


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:

    def test_start_and_stop_are_idempotent(self):
        scheduler = CronScheduler(
            _registry(CountingJob()), [JobSchedule("counting", "0 2 * * *")],
        )

        scheduler.start_all()
        scheduler.start_all()
        assert scheduler.is_running
        assert scheduler.status()[0].scheduled

        scheduler.stop_all(timeout=5)
        scheduler.stop_all(timeout=5)
        assert not scheduler.is_running
        assert not scheduler.status()[0].scheduled

    def test_run_on_init_fires_at_start(self):
        job = CountingJob()
        scheduler = CronScheduler(
            _registry(job), [JobSchedule("counting", "0 2 * * *", run_on_init=True)],
        )

        scheduler.start_all()
        try:
            assert job.ran.wait(timeout=5)
        finally:
            scheduler.stop_all(timeout=5)

        assert job.runs == 1

    def test_disabled_schedule_gets_no_timer(self):
        job = CountingJob()
        scheduler = CronScheduler(
            _registry(job),
            [JobSchedule("counting", "0 2 * * *", run_on_init=True, enabled=False)],
        )

        scheduler.start_all()
        scheduler.stop_all(timeout=5)

        assert job.runs == 0

    def test_status_lists_unscheduled_jobs(self):
        scheduler = CronScheduler(
            _registry(CountingJob("a"), CountingJob("b")),
            [JobSchedule("a", "30 3 * * *", timezone="Africa/Addis_Ababa")],
        )

        by_name = {s.job_name: s for s in scheduler.status()}

        assert by_name["a"].cron_expression == "30 3 * * *"
        assert by_name["a"].timezone == "Africa/Addis_Ababa"
        assert by_name["b"].cron_expression is None
        assert by_name["b"].last_result is None

    def test_early_timer_wake_fires_once(self):
        """A frozen clock just short of 02:00 wakes the timer at once.

        The loop must fire 02:00 once and then wait for the next day rather
        than picking the same minute again.
        """
        zone = ZoneInfo("Africa/Addis_Ababa")
        clock = DeterministicClock(datetime(2026, 2, 1, 1, 59, 59, 950000, tzinfo=zone))
        job = CountingJob()
        scheduler = CronScheduler(
            _registry(job),
            [JobSchedule("counting", "0 2 * * *", timezone="Africa/Addis_Ababa")],
            clock=clock,
        )
        tomorrow = datetime(2026, 2, 2, 2, 0, tzinfo=zone)

        scheduler.start_all()
        try:
            assert job.ran.wait(timeout=5)
            deadline = time.monotonic() + 5
            while scheduler.status()[0].next_run_at != tomorrow and time.monotonic() < deadline:
                time.sleep(0.01)
            next_run_at = scheduler.status()[0].next_run_at
        finally:
            scheduler.stop_all(timeout=5)

        assert next_run_at == tomorrow
        assert job.runs == 1
