"""
registry_batch.domain.types -- Frozen dataclasses for jobs and schedules.

ZERO I/O.

Invariants enforced:
    - A failed JobResult always reports updated_count == 0: a run commits
      everything or nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

# Actor recorded as updated_by on rows touched by scheduled jobs
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

DEFAULT_TIMEZONE = "Africa/Addis_Ababa"


# =============================================================================
# Job results
# =============================================================================


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job run."""

    job_name: str
    success: bool
    updated_count: int = 0
    execution_time_ms: int = 0
    error_code: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and self.updated_count != 0:
            raise ValueError("A failed job run cannot report updates")

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "success": self.success,
            "updated_count": self.updated_count,
            "execution_time_ms": self.execution_time_ms,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "details": self.details,
        }


# =============================================================================
# Schedule DTOs
# =============================================================================


@dataclass(frozen=True)
class JobSchedule:
    """When a registered job fires.

    ``run_on_init`` fires the job once as soon as the scheduler starts,
    before the first cron match.
    """

    job_name: str
    cron_expression: str
    timezone: str = DEFAULT_TIMEZONE
    run_on_init: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class JobStatus:
    """Operational snapshot of one job, as reported by the scheduler."""

    job_name: str
    scheduled: bool
    cron_expression: str | None
    timezone: str | None
    is_executing: bool
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_result: JobResult | None = None
