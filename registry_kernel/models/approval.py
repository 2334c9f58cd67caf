"""
Module: registry_kernel.models.approval
Responsibility: ORM persistence for maker-checker change requests and their
    per-request transition log.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - At most one PENDING request per (entity_type, entity_id, action_type):
      partial unique index, declared for both PostgreSQL and SQLite.
    - Status values limited by a check constraint.
    - approval_logs rows are append-only (ORM listeners below).

Failure modes:
    - IntegrityError on a second PENDING insert for the same tuple.
    - ImmutabilityViolationError on approval log UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import Base, UUIDString
from registry_kernel.domain.approval import (
    ActionType,
    ApprovalRequest,
    EntityType,
    RequestStatus,
    Role,
)
from registry_kernel.exceptions import ImmutabilityViolationError

_PENDING_ONLY = text("status = 'PENDING'")


class ApprovalRequestModel(Base):
    """Persistent change request.

    Rows are never physically deleted.  ``status`` leaves PENDING exactly
    once, through the compare-and-swap update in MakerCheckerService.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approval_requests_valid_status",
        ),
        Index(
            "ix_approval_requests_pending_unique",
            "entity_type", "entity_id", "action_type",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
        Index(
            "ix_approval_requests_queue",
            "status", "approver_role", "sub_city_id", "created_at",
        ),
        Index("ix_approval_requests_maker", "maker_id", "created_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    request_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    maker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    maker_role: Mapped[str] = mapped_column(String(50), nullable=False)
    sub_city_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestStatus.PENDING.value,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decision_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    result_entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} "
            f"{self.entity_type}/{self.entity_id} {self.action_type} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        return ApprovalRequest(
            request_id=self.id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            action_type=ActionType(self.action_type),
            request_data=dict(self.request_data or {}),
            maker_id=self.maker_id,
            maker_role=Role(self.maker_role),
            sub_city_id=self.sub_city_id,
            approver_role=Role(self.approver_role),
            status=RequestStatus(self.status),
            comments=self.comments,
            created_at=self.created_at,
            decision_comments=self.decision_comments,
            decided_at=self.decided_at,
            decided_by=self.decided_by,
            result_entity_id=self.result_entity_id,
        )


class ApprovalLogModel(Base):
    """Append-only transition log of a change request."""

    __tablename__ = "approval_logs"

    __table_args__ = (
        Index("ix_approval_logs_request", "request_id", "performed_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    performed_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalLog request={self.request_id} {self.action} "
            f"{self.previous_status}->{self.new_status}>"
        )


@event.listens_for(ApprovalLogModel, "before_update")
def prevent_approval_log_update(mapper, connection, target):
    """Approval log entries are immutable."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot modify",
    )


@event.listens_for(ApprovalLogModel, "before_delete")
def prevent_approval_log_delete(mapper, connection, target):
    """Approval log entries are immutable."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log entries are immutable -- cannot delete",
    )
