"""
Module: registry_kernel.models.parcel
Responsibility: Land parcels, their ownership links and the ownership
    history written by transfer, add-owner and subdivision apply steps.

Invariants enforced:
    - upin and file_number are unique.  A soft-deleted parcel frees its
      file_number by suffixing it.
    - ownership_history rows are append-only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Numeric,
    String,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import Base, SoftDeleteMixin, TrackedBase, UUIDString
from registry_kernel.domain.land import ParcelStatus, TenureType
from registry_kernel.exceptions import ImmutabilityViolationError


class LandParcelModel(SoftDeleteMixin, TrackedBase):
    """A registered land parcel, identified by its UPIN."""

    __tablename__ = "land_parcels"

    __table_args__ = (
        Index("ix_land_parcels_sub_city", "sub_city_id", "status"),
        Index("ix_land_parcels_parent", "parent_upin"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    file_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sub_city_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tabia: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    ketena: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    block: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    total_area_m2: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    land_use: Mapped[str | None] = mapped_column(String(50), nullable=True)
    land_grade: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("1.0"),
    )
    tenure_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=TenureType.OLD_POSSESSION.value,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ParcelStatus.ACTIVE.value,
    )
    parent_upin: Mapped[str | None] = mapped_column(String(50), nullable=True)
    boundary_north: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_south: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_east: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_west: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<LandParcel {self.upin} status={self.status} tenure={self.tenure_type}>"


class ParcelOwnerModel(TrackedBase):
    """Link between a parcel and one of its owners."""

    __tablename__ = "parcel_owners"

    __table_args__ = (
        Index("ix_parcel_owners_parcel_active", "upin", "is_active"),
        Index("ix_parcel_owners_owner_active", "owner_id", "is_active"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ParcelOwner {self.upin}:{self.owner_id} active={self.is_active}>"


class OwnershipHistoryModel(Base):
    """Append-only snapshot of an ownership change."""

    __tablename__ = "ownership_history"

    __table_args__ = (
        Index("ix_ownership_history_parcel", "upin", "occurred_at"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False)
    transfer_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    to_owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    transfer_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    reference_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


@event.listens_for(OwnershipHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Ownership history is immutable."""
    raise ImmutabilityViolationError(
        entity_type="OwnershipHistory",
        entity_id=str(target.id),
        reason="Ownership history is immutable -- cannot modify",
    )


@event.listens_for(OwnershipHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Ownership history is immutable."""
    raise ImmutabilityViolationError(
        entity_type="OwnershipHistory",
        entity_id=str(target.id),
        reason="Ownership history is immutable -- cannot delete",
    )
