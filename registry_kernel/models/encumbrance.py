"""Module: registry_kernel.models.encumbrance -- liens, court orders and similar restrictions on a parcel."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import SoftDeleteMixin, TrackedBase
from registry_kernel.domain.land import EncumbranceStatus


class EncumbranceModel(SoftDeleteMixin, TrackedBase):
    __tablename__ = "encumbrances"

    __table_args__ = (
        Index("ix_encumbrances_upin_status", "upin", "status"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    issuing_entity: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EncumbranceStatus.ACTIVE.value,
    )
    registration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Encumbrance {self.reference_number} upin={self.upin} status={self.status}>"
