"""
AuditService -- append-only audit sink.

Responsibility:
    Writes one AuditLogModel row per state-changing event.  ``changes`` is
    stored as canonical JSON together with its SHA-256 so a later reader
    can verify the stored document was not altered.

Architecture position:
    Kernel > Services.  Consumed by the maker-checker service, the apply
    steps, the rate provider and the batch jobs.  Never read by them.

Failure modes:
    - ``log`` propagates database errors.  Inside a decision transaction
      this is what keeps the audit entry and the mutation atomic.
    - ``log_safely`` catches and logs them instead, for call sites whose
      business transaction must not depend on the audit write.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.logging_config import get_logger
from registry_kernel.models.audit_log import SYSTEM_IP_ADDRESS, AuditAction, AuditLogModel
from registry_kernel.utils.hashing import hash_payload, to_json_document

logger = get_logger("services.audit")


class AuditService:
    """Append-only writer for audit_logs."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def log(
        self,
        action: AuditAction | str,
        entity_type: str,
        entity_id: str | UUID,
        changes: dict[str, Any],
        user_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> AuditLogModel:
        """Add an audit row to the current transaction and flush it."""
        document = to_json_document(changes)
        entry = AuditLogModel(
            user_id=user_id,
            action_type=AuditAction(action).value,
            entity_type=entity_type,
            entity_id=str(entity_id),
            changes=document,
            payload_hash=hash_payload(document),
            timestamp=self._clock.now(),
            ip_address=ip_address or SYSTEM_IP_ADDRESS,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def log_safely(
        self,
        action: AuditAction | str,
        entity_type: str,
        entity_id: str | UUID,
        changes: dict[str, Any],
        user_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> AuditLogModel | None:
        """Like ``log`` but isolated in a SAVEPOINT; failures are logged, not raised."""
        try:
            with self._session.begin_nested():
                return self.log(action, entity_type, entity_id, changes, user_id, ip_address)
        except SQLAlchemyError:
            logger.exception(
                "audit_write_failed",
                extra={
                    "action": str(action),
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
            )
            return None

    def entries_for(self, entity_type: str, entity_id: str | UUID) -> list[AuditLogModel]:
        """Audit history of one entity, oldest first."""
        return list(
            self._session.execute(
                select(AuditLogModel)
                .where(
                    AuditLogModel.entity_type == entity_type,
                    AuditLogModel.entity_id == str(entity_id),
                )
                .order_by(AuditLogModel.timestamp)
            ).scalars()
        )

    @staticmethod
    def verify(entry: AuditLogModel) -> bool:
        """True when the stored changes still match their hash."""
        return hash_payload(entry.changes) == entry.payload_hash
