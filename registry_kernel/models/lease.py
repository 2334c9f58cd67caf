"""
Module: registry_kernel.models.lease
Responsibility: Lease agreements.  Created and updated by approval apply
    steps; moved from ACTIVE to EXPIRED by the lease expiry job only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import SoftDeleteMixin, TrackedBase
from registry_kernel.domain.billing import LeaseStatus


class LeaseAgreementModel(SoftDeleteMixin, TrackedBase):
    __tablename__ = "lease_agreements"

    __table_args__ = (
        Index("ix_lease_agreements_upin", "upin"),
        Index("ix_lease_agreements_expiry", "status", "expiry_date"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False)
    total_lease_amount: Mapped[Decimal] = mapped_column(nullable=False)
    down_payment_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    other_payment: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    annual_installment: Mapped[Decimal] = mapped_column(nullable=False)
    price_per_m2: Mapped[Decimal | None] = mapped_column(nullable=True)
    lease_period_years: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_term_years: Mapped[int] = mapped_column(Integer, nullable=False)
    legal_framework: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    contract_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LeaseStatus.ACTIVE.value,
    )

    def __repr__(self) -> str:
        return f"<LeaseAgreement {self.id} upin={self.upin} status={self.status}>"
