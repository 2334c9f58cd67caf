"""
Tests for registry_batch.orchestrator -- job wiring and scheduler assembly.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from registry_config.schema import (
    JobScheduleConfig,
    LeaseExpiryPolicy,
    RegistryConfig,
    SchedulerConfig,
)
from registry_kernel.domain.billing import LeaseExpiryBillAction, PaymentStatus, RateType

from registry_batch.domain.types import SYSTEM_ACTOR_ID
from registry_batch.orchestrator import (
    BatchOrchestrator,
    default_job_registry,
    schedules_from_config,
)
from registry_batch.services.scheduler import CronScheduler

ALL_JOBS = (
    "accrual_cycle",
    "bill_status_update",
    "interest_calculation",
    "lease_status_update",
    "penalty_calculation",
)


# =============================================================================
# Registry wiring
# =============================================================================


class TestDefaultJobRegistry:

    def test_every_job_registered(self, session_factory, clock):
        registry = default_job_registry(session_factory, clock)
        assert registry.list_jobs() == ALL_JOBS

    def test_lease_expiry_policy_passed_through(self, session_factory, clock):
        registry = default_job_registry(session_factory, clock, lease_expiry_action="cancel")
        assert registry.get("lease_status_update").bill_action == LeaseExpiryBillAction.CANCEL


# =============================================================================
# Schedule resolution
# =============================================================================


class TestSchedulesFromConfig:

    def test_job_inherits_scheduler_defaults(self):
        config = SchedulerConfig(
            timezone="Africa/Addis_Ababa",
            run_on_init=True,
            jobs=(JobScheduleConfig("bill_status_update", "0 2 * * *"),),
        )

        (schedule,) = schedules_from_config(config)

        assert schedule.job_name == "bill_status_update"
        assert schedule.cron_expression == "0 2 * * *"
        assert schedule.timezone == "Africa/Addis_Ababa"
        assert schedule.run_on_init is True
        assert schedule.enabled is True

    def test_job_overrides_win(self):
        config = SchedulerConfig(
            run_on_init=True,
            jobs=(JobScheduleConfig(
                "accrual_cycle", "0 3 * * *", enabled=False, timezone="UTC", run_on_init=False,
            ),),
        )

        (schedule,) = schedules_from_config(config)

        assert schedule.timezone == "UTC"
        assert schedule.run_on_init is False
        assert schedule.enabled is False

    def test_duplicate_job_schedule_rejected(self):
        with pytest.raises(ValueError, match="Duplicate job schedule"):
            SchedulerConfig(jobs=(
                JobScheduleConfig("accrual_cycle", "0 3 * * *"),
                JobScheduleConfig("accrual_cycle", "0 4 * * *"),
            ))


# =============================================================================
# BatchOrchestrator
# =============================================================================


@pytest.fixture
def registry_config():
    return RegistryConfig(
        scheduler=SchedulerConfig(
            run_on_init=False,
            lock_timeout_seconds=5,
            jobs=(
                JobScheduleConfig("bill_status_update", "0 2 * * *"),
                JobScheduleConfig("accrual_cycle", "0 3 * * *"),
            ),
        ),
        lease_expiry=LeaseExpiryPolicy(bill_action=LeaseExpiryBillAction.FLAG),
    )


class TestBatchOrchestrator:

    def test_from_config(self, registry_config, session_factory, clock):
        orchestrator = BatchOrchestrator.from_config(registry_config, session_factory, clock=clock)

        assert orchestrator.clock is clock
        assert orchestrator.session_factory is session_factory
        assert orchestrator.job_registry.list_jobs() == ALL_JOBS
        assert orchestrator.job_registry.get("lease_status_update").bill_action == LeaseExpiryBillAction.FLAG

    def test_create_scheduler_uses_configured_schedules(self, registry_config, session_factory, clock):
        orchestrator = BatchOrchestrator.from_config(registry_config, session_factory, clock=clock)

        scheduler = orchestrator.create_scheduler()

        assert isinstance(scheduler, CronScheduler)
        crons = {s.job_name: s.cron_expression for s in scheduler.status()}
        assert crons["bill_status_update"] == "0 2 * * *"
        assert crons["accrual_cycle"] == "0 3 * * *"
        assert crons["interest_calculation"] is None

    def test_scheduler_override(self, registry_config, session_factory, clock):
        orchestrator = BatchOrchestrator.from_config(registry_config, session_factory, clock=clock)

        scheduler = orchestrator.create_scheduler(
            SchedulerConfig(jobs=(JobScheduleConfig("lease_status_update", "0 5 * * *"),)),
        )

        scheduled = [s.job_name for s in scheduler.status() if s.cron_expression]
        assert scheduled == ["lease_status_update"]

    def test_run_now_end_to_end(
        self, registry_config, session_factory, clock, db_session, create_bill, create_rate,
    ):
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.05"))
        create_rate(RateType.PENALTY_RATE, Decimal("0.02"))
        bill = create_bill(due_date=clock.now() - timedelta(days=73))
        db_session.commit()
        scheduler = BatchOrchestrator.from_config(
            registry_config, session_factory, clock=clock,
        ).create_scheduler()

        marked = scheduler.run_now("bill_status_update")
        accrued = scheduler.run_now("accrual_cycle")
        db_session.expire_all()

        assert marked.updated_count == 1
        assert accrued.success
        assert bill.payment_status == PaymentStatus.OVERDUE.value
        assert bill.amount_due == Decimal("1064.70")
        assert bill.updated_by_id == SYSTEM_ACTOR_ID
