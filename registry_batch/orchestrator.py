"""
BatchOrchestrator -- DI container for the registry batch jobs.

Contract:
    Wires a JobRegistry with the five registry jobs and builds CronScheduler
    instances from a SchedulerConfig.  Single place where batch dependencies
    are composed.

Architecture: registry_batch (top-level).  The canonical entry point for
    configuring and running jobs; the kernel never imports it.

Invariants enforced:
    - Every job and the scheduler share one Clock.
    - Jobs get a session factory, never a live session: each run owns its
      transaction.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from registry_config.schema import LeaseExpiryPolicy, RegistryConfig, SchedulerConfig
from registry_kernel.domain.billing import LeaseExpiryBillAction
from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.logging_config import get_logger

from registry_batch.domain.types import SYSTEM_ACTOR_ID, JobSchedule
from registry_batch.jobs import (
    AccrualCycleJob,
    BillStatusJob,
    InterestJob,
    JobRegistry,
    LeaseExpiryJob,
    PenaltyJob,
)
from registry_batch.services.scheduler import CronScheduler

logger = get_logger("batch.orchestrator")


def default_job_registry(
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
    actor_id: UUID = SYSTEM_ACTOR_ID,
    lease_expiry_action: LeaseExpiryBillAction | str = LeaseExpiryBillAction.KEEP,
) -> JobRegistry:
    """Create a JobRegistry pre-loaded with every registry job."""
    registry = JobRegistry()
    registry.register(BillStatusJob(session_factory, clock, actor_id))
    registry.register(InterestJob(session_factory, clock, actor_id))
    registry.register(PenaltyJob(session_factory, clock, actor_id))
    registry.register(AccrualCycleJob(session_factory, clock, actor_id))
    registry.register(LeaseExpiryJob(
        session_factory, clock, actor_id, bill_action=lease_expiry_action,
    ))
    return registry


def schedules_from_config(config: SchedulerConfig) -> list[JobSchedule]:
    """Resolve per-job overrides against the scheduler-wide defaults."""
    return [
        JobSchedule(
            job_name=job.job_name,
            cron_expression=job.cron,
            timezone=job.timezone or config.timezone,
            run_on_init=config.run_on_init if job.run_on_init is None else job.run_on_init,
            enabled=job.enabled,
        )
        for job in config.jobs
    ]


class BatchOrchestrator:
    """DI container for the registry batch jobs.

    Contract:
        - ``from_config()`` creates a fully wired orchestrator.
        - ``create_scheduler()`` returns a CronScheduler for background use.
        - ``job_registry`` provides access to registered jobs.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        job_registry: JobRegistry,
        clock: Clock | None = None,
        scheduler_config: SchedulerConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._job_registry = job_registry
        self._clock = clock or SystemClock()
        self._scheduler_config = scheduler_config or SchedulerConfig()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BatchOrchestrator:
        """Create a BatchOrchestrator from a loaded RegistryConfig.

        Args:
            config: Parsed configuration (scheduler and lease expiry policy).
            session_factory: Callable returning a new session per job run.
            clock: Optional clock for deterministic testing.
            actor_id: Actor recorded on rows the jobs touch.
        """
        effective_clock = clock or SystemClock()
        policy = config.lease_expiry or LeaseExpiryPolicy()
        registry = default_job_registry(
            session_factory,
            clock=effective_clock,
            actor_id=actor_id,
            lease_expiry_action=policy.bill_action,
        )
        logger.info(
            "batch_orchestrator_configured",
            extra={
                "jobs": list(registry.list_jobs()),
                "lease_expiry_bill_action": policy.bill_action.value,
            },
        )
        return cls(
            session_factory=session_factory,
            job_registry=registry,
            clock=effective_clock,
            scheduler_config=config.scheduler,
        )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(self, scheduler_config: SchedulerConfig | None = None) -> CronScheduler:
        """Create a CronScheduler over this orchestrator's registry.

        Args:
            scheduler_config: Optional override of the configured schedules.
        """
        config = scheduler_config or self._scheduler_config
        return CronScheduler(
            registry=self._job_registry,
            schedules=schedules_from_config(config),
            clock=self._clock,
            lock_timeout_seconds=config.lock_timeout_seconds,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def job_registry(self) -> JobRegistry:
        return self._job_registry

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory
