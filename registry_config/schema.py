"""
Registry runtime configuration schema.

YAML documents are parsed into these frozen types by ``registry_config.loader``.
Nothing here reads files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from registry_kernel.domain.billing import LeaseExpiryBillAction, RateType

DEFAULT_TIMEZONE = "Africa/Addis_Ababa"

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///registry.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobScheduleConfig:
    """One job's schedule.  None means "inherit from SchedulerConfig"."""

    job_name: str
    cron: str
    enabled: bool = True
    timezone: str | None = None
    run_on_init: bool | None = None


@dataclass(frozen=True)
class SchedulerConfig:
    timezone: str = DEFAULT_TIMEZONE
    run_on_init: bool = True
    lock_timeout_seconds: float = 300.0
    jobs: tuple[JobScheduleConfig, ...] = ()

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        names = [job.job_name for job in self.jobs]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate job schedule in {names}")

    def job(self, job_name: str) -> JobScheduleConfig | None:
        for job in self.jobs:
            if job.job_name == job_name:
                return job
        return None

    @property
    def enabled_jobs(self) -> tuple[str, ...]:
        return tuple(job.job_name for job in self.jobs if job.enabled)


# ---------------------------------------------------------------------------
# Policies and seeds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaseExpiryPolicy:
    """What happens to outstanding bills when their lease expires."""

    bill_action: LeaseExpiryBillAction = LeaseExpiryBillAction.KEEP


@dataclass(frozen=True)
class RateSeed:
    """A rate row to insert when the store has none for its window."""

    rate_type: RateType
    value: Decimal
    effective_from: datetime
    source: str | None = None


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    lease_expiry: LeaseExpiryPolicy = field(default_factory=LeaseExpiryPolicy)
    rates: tuple[RateSeed, ...] = ()
