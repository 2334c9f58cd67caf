"""
Job protocol, JobRegistry and the transactional SessionJob base.

Contract:
    ``Job`` is the interface the scheduler runs.  ``JobRegistry`` maps job
    names to instances.  ``SessionJob`` gives a job one session, one clock
    reading and one transaction per run: ``execute()`` does the work,
    ``run()`` commits on success and rolls back on any error.

Invariants enforced:
    - One job per name in a registry.
    - A failed run commits nothing and reports zero updates.
    - Audit entries for a run are written in the run's transaction; a
      failing audit write is logged and does not undo the run.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.exceptions import UnknownTaskError
from registry_kernel.logging_config import LogContext, get_logger
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.services.audit_service import AuditService

from registry_batch.domain.types import SYSTEM_ACTOR_ID, JobResult

logger = get_logger("batch.jobs")


# =============================================================================
# Job Protocol
# =============================================================================


@runtime_checkable
class Job(Protocol):
    """Interface for a named, schedulable unit of work.

    Contract:
        - ``name``: unique key registered in JobRegistry.
        - ``description``: human-readable label for status output.
        - ``run()``: performs one complete run and reports its outcome.
          Implementations should not raise for expected failures; the
          scheduler still guards against it.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    def run(self) -> JobResult: ...


# =============================================================================
# JobRegistry
# =============================================================================


class JobRegistry:
    """Registry mapping job names to Job implementations.

    Contract:
        - ``register()`` adds a job; raises ValueError on duplicate.
        - ``get()`` retrieves by name; raises UnknownTaskError if missing.
        - ``list_jobs()`` returns all registered names.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def register(self, job: Job) -> None:
        """Register a job.

        Raises:
            ValueError: If a job with the same name is already registered.
        """
        if job.name in self._jobs:
            raise ValueError(f"Job '{job.name}' is already registered")
        self._jobs[job.name] = job

    def get(self, name: str) -> Job:
        """Retrieve a registered job by name.

        Raises:
            UnknownTaskError: If no job is registered under ``name``.
        """
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownTaskError(name, available=sorted(self._jobs)) from None

    def list_jobs(self) -> tuple[str, ...]:
        """Return all registered job names, sorted."""
        return tuple(sorted(self._jobs))

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, name: str) -> bool:
        return name in self._jobs


# =============================================================================
# SessionJob
# =============================================================================


@dataclass
class RunReport:
    """What ``execute()`` hands back to ``run()``."""

    updated_count: int
    audit_entity_ids: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


class SessionJob(ABC):
    """Base class for jobs that run as a single database transaction."""

    name: ClassVar[str]
    description: ClassVar[str]
    audit_action: ClassVar[AuditAction]
    audit_entity_type: ClassVar[str]

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id

    @abstractmethod
    def execute(self, session: Session, now: datetime) -> RunReport:
        """Select and update rows.  Must flush only; ``run()`` commits."""
        ...

    def run(self) -> JobResult:
        started = time.monotonic()
        with LogContext.bind(job_name=self.name):
            session = self._session_factory()
            try:
                now = self._clock.now()
                logger.info("job_started", extra={"as_of": now.isoformat()})
                report = self.execute(session, now)
                if report.updated_count:
                    AuditService(session, self._clock).log_safely(
                        self.audit_action,
                        self.audit_entity_type,
                        f"batch:{self.name}",
                        {
                            "job_name": self.name,
                            "as_of": now,
                            "updated_count": report.updated_count,
                            "entity_ids": report.audit_entity_ids,
                            **report.details,
                        },
                        user_id=self._actor_id,
                    )
                session.commit()
            except Exception as exc:
                session.rollback()
                elapsed = int((time.monotonic() - started) * 1000)
                logger.exception(
                    "job_failed",
                    extra={"execution_time_ms": elapsed},
                )
                return JobResult(
                    job_name=self.name,
                    success=False,
                    updated_count=0,
                    execution_time_ms=elapsed,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    error_message=str(exc),
                )
            finally:
                session.close()

            elapsed = int((time.monotonic() - started) * 1000)
            logger.info(
                "job_completed",
                extra={
                    "updated_count": report.updated_count,
                    "execution_time_ms": elapsed,
                },
            )
            return JobResult(
                job_name=self.name,
                success=True,
                updated_count=report.updated_count,
                execution_time_ms=elapsed,
                details=report.details,
            )
