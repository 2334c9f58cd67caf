"""
registry_batch.domain -- Pure types and cron evaluation for the scheduler.

ZERO I/O.  All types are frozen dataclasses.
"""

from registry_batch.domain.types import (
    SYSTEM_ACTOR_ID,
    JobResult,
    JobSchedule,
    JobStatus,
)

__all__ = [
    "SYSTEM_ACTOR_ID",
    "JobResult",
    "JobSchedule",
    "JobStatus",
]
