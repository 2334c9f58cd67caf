"""
Module: registry_kernel.models.audit_log
Responsibility: Append-only audit sink for every state-changing event.

Invariants enforced:
    - Rows are never updated or deleted (ORM listeners).
    - payload_hash is the SHA-256 of the canonical ``changes`` document.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import Base, UUIDString
from registry_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Audit action types."""

    # Approval lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"

    # Entity mutations from apply steps
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_SOFT_DELETED = "entity_soft_deleted"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    OWNER_ADDED = "owner_added"
    PARCEL_SUBDIVIDED = "parcel_subdivided"
    LEASE_BILLS_GENERATED = "lease_bills_generated"

    # Rates
    RATE_CREATED = "rate_created"

    # Batch jobs
    BILLS_MARKED_OVERDUE = "bills_marked_overdue"
    INTEREST_ACCRUED = "interest_accrued"
    PENALTY_ACCRUED = "penalty_accrued"
    ACCRUAL_CYCLE_RUN = "accrual_cycle_run"
    LEASES_EXPIRED = "leases_expired"


SYSTEM_IP_ADDRESS = "SYSTEM"


class AuditLogModel(Base):
    """One immutable audit record."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id", "timestamp"),
        Index("ix_audit_logs_user", "user_id", "timestamp"),
    )

    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str] = mapped_column(
        String(64), nullable=False, default=SYSTEM_IP_ADDRESS,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog {self.action_type} {self.entity_type}/{self.entity_id} "
            f"by={self.user_id}>"
        )


@event.listens_for(AuditLogModel, "before_update")
def prevent_audit_log_update(mapper, connection, target):
    """Audit log rows are immutable."""
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit log entries are immutable -- cannot modify",
    )


@event.listens_for(AuditLogModel, "before_delete")
def prevent_audit_log_delete(mapper, connection, target):
    """Audit log rows are immutable."""
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit log entries are immutable -- cannot delete",
    )
