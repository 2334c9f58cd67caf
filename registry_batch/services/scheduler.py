"""
CronScheduler -- In-process cron scheduler for registry jobs.

Contract:
    One daemon timer thread per enabled schedule sleeps until the next cron
    match (evaluated in the schedule's timezone) and fires the job.  The
    scheduler is an ordinary object: build as many as needed, inject the
    registry, schedules and clock.

Architecture: registry_batch/services.  Uses registry_batch.domain.schedule
    for pure cron evaluation and registry_batch.jobs for the work.

Invariants enforced:
    - A scheduled fire never raises into its timer thread; failures are
      logged and the timer keeps going.
    - A job never runs twice at once.  A scheduled fire that finds the job
      running is skipped; ``run_now`` waits up to ``lock_timeout_seconds``.
    - start_all / stop_all are idempotent.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.exceptions import JobAlreadyRunningError
from registry_kernel.logging_config import LogContext, get_logger

from registry_batch.domain.schedule import (
    following_fire_time,
    parse_cron,
    resolve_timezone,
    seconds_until,
)
from registry_batch.domain.types import JobResult, JobSchedule, JobStatus
from registry_batch.jobs.base import JobRegistry

logger = get_logger("batch.scheduler")

DEFAULT_LOCK_TIMEOUT_SECONDS = 300.0


class CronScheduler:
    """Cron-driven runner for the jobs in a JobRegistry.

    Contract:
        - ``start_all()`` / ``stop_all()`` for background operation.
        - ``trigger()`` is one scheduled fire (public for testing).
        - ``run_now()`` runs a job on demand and returns its result.
        - ``status()`` reports every registered job.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
        - Does NOT catch up fires missed while stopped.
    """

    def __init__(
        self,
        registry: JobRegistry,
        schedules: Iterable[JobSchedule] = (),
        clock: Clock | None = None,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self._registry = registry
        self._clock = clock or SystemClock()
        self._lock_timeout = lock_timeout_seconds
        self._schedules: dict[str, JobSchedule] = {}
        for schedule in schedules:
            registry.get(schedule.job_name)
            parse_cron(schedule.cron_expression)
            resolve_timezone(schedule.timezone)
            self._schedules[schedule.job_name] = schedule

        self._job_locks: dict[str, threading.Lock] = {
            name: threading.Lock() for name in registry.list_jobs()
        }
        self._state_lock = threading.Lock()
        self._last_results: dict[str, JobResult] = {}
        self._last_run_at: dict[str, datetime] = {}
        self._next_run_at: dict[str, datetime] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._stop_event = threading.Event()
        self._running = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_all(self) -> None:
        """Start one timer thread per enabled schedule."""
        with self._state_lock:
            if self._running:
                logger.info("scheduler_already_running")
                return
            self._stop_event = threading.Event()
            for name, schedule in sorted(self._schedules.items()):
                if not schedule.enabled:
                    continue
                thread = threading.Thread(
                    target=self._run_loop,
                    args=(schedule, self._stop_event),
                    name=f"cron-{name}",
                    daemon=True,
                )
                self._threads[name] = thread
            self._running = True
            for thread in self._threads.values():
                thread.start()
        logger.info(
            "scheduler_started",
            extra={"scheduled_jobs": sorted(self._threads)},
        )

    def stop_all(self, timeout: float = 30.0) -> None:
        """Stop every timer and wait for in-flight fires to finish."""
        with self._state_lock:
            if not self._running:
                return
            self._stop_event.set()
            threads = list(self._threads.values())
            self._threads.clear()
            self._next_run_at.clear()
            self._running = False
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_now(self, job_name: str) -> JobResult:
        """Run ``job_name`` immediately, outside its schedule.

        Raises:
            UnknownTaskError: No job registered under ``job_name``.
            JobAlreadyRunningError: The job stayed busy for longer than
                ``lock_timeout_seconds``.
        """
        job = self._registry.get(job_name)
        lock = self._job_locks[job_name]
        if not lock.acquire(timeout=self._lock_timeout):
            raise JobAlreadyRunningError(job_name, self._lock_timeout)
        try:
            logger.info("job_run_requested", extra={"job_name": job_name})
            result = job.run()
            self._record(job_name, result)
            return result
        finally:
            lock.release()

    def trigger(self, job_name: str) -> JobResult | None:
        """One scheduled fire of ``job_name``.

        Returns None when the fire was skipped or the job raised.
        """
        lock = self._job_locks.get(job_name)
        if lock is None:
            logger.error("scheduled_job_unknown", extra={"job_name": job_name})
            return None
        if not lock.acquire(blocking=False):
            logger.warning("scheduled_job_skipped_already_running", extra={"job_name": job_name})
            return None
        try:
            with LogContext.bind(job_name=job_name):
                result = self._registry.get(job_name).run()
                self._record(job_name, result)
                if not result.success:
                    logger.error(
                        "scheduled_job_failed",
                        extra={
                            "job_name": job_name,
                            "error_code": result.error_code,
                            "error_message": result.error_message,
                        },
                    )
                return result
        except Exception:
            logger.exception("scheduled_job_failed", extra={"job_name": job_name})
            return None
        finally:
            lock.release()

    def status(self) -> list[JobStatus]:
        statuses = []
        for name in self._registry.list_jobs():
            schedule = self._schedules.get(name)
            statuses.append(JobStatus(
                job_name=name,
                scheduled=name in self._threads,
                cron_expression=schedule.cron_expression if schedule else None,
                timezone=schedule.timezone if schedule else None,
                is_executing=self._job_locks[name].locked(),
                next_run_at=self._next_run_at.get(name),
                last_run_at=self._last_run_at.get(name),
                last_result=self._last_results.get(name),
            ))
        return statuses

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _record(self, job_name: str, result: JobResult) -> None:
        self._last_results[job_name] = result
        self._last_run_at[job_name] = self._clock.now()

    def _run_loop(self, schedule: JobSchedule, stop_event: threading.Event) -> None:
        """Timer loop for one schedule.  Exits when ``stop_event`` is set."""
        name = schedule.job_name
        if schedule.run_on_init and not stop_event.is_set():
            self.trigger(name)
        spec = parse_cron(schedule.cron_expression)
        last_fire: datetime | None = None
        while not stop_event.is_set():
            try:
                now = self._clock.now()
                fire_at = following_fire_time(spec, now, last_fire, schedule.timezone)
                self._next_run_at[name] = fire_at
                delay = seconds_until(fire_at, now)
            except Exception:
                logger.exception("scheduler_next_fire_failed", extra={"job_name": name})
                return
            if stop_event.wait(timeout=delay):
                break
            last_fire = fire_at
            self.trigger(name)
