"""
Module: registry_kernel.models.rate
Responsibility: Effective-dated rate rows read by the accrual jobs.

Invariants enforced:
    - UNIQUE(rate_type, effective_from).
    - Lookup index on (rate_type, is_active, effective_from).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import TrackedBase


class RateConfigurationModel(TrackedBase):
    __tablename__ = "rate_configurations"

    __table_args__ = (
        UniqueConstraint(
            "rate_type", "effective_from",
            name="uq_rate_configurations_type_from",
        ),
        Index(
            "ix_rate_configurations_lookup",
            "rate_type", "is_active", "effective_from",
        ),
    )

    rate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<RateConfiguration {self.rate_type}={self.value} "
            f"[{self.effective_from}, {self.effective_until})>"
        )
