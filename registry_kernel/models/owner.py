"""Module: registry_kernel.models.owner -- natural or legal persons holding parcels."""

from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import SoftDeleteMixin, TrackedBase


class OwnerModel(SoftDeleteMixin, TrackedBase):
    """Registered owner.  national_id is unique across live and deleted rows."""

    __tablename__ = "owners"

    __table_args__ = (
        Index("ix_owners_sub_city", "sub_city_id"),
    )

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    national_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    tin_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    sub_city_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Owner {self.id} {self.full_name}>"
