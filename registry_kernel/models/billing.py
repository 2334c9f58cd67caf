"""
Module: registry_kernel.models.billing
Responsibility: Installment bills.  Status, interest and penalty columns are
    written by the accrual jobs; amount_paid and remaining_amount by the
    payment collaborator.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from registry_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString
from registry_kernel.domain.billing import PaymentStatus

_ZERO = Decimal("0")


class BillingRecordModel(SoftDeleteMixin, TrackedBase):
    __tablename__ = "billing_records"

    __table_args__ = (
        Index("ix_billing_records_accrual", "fiscal_year", "payment_status", "due_date"),
        Index("ix_billing_records_lease", "lease_id", "installment_number"),
        Index("ix_billing_records_upin", "upin"),
    )

    upin: Mapped[str] = mapped_column(String(50), nullable=False)
    lease_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bill_type: Mapped[str] = mapped_column(String(20), nullable=False, default="LEASE")
    base_payment: Mapped[Decimal] = mapped_column(nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    interest_rate_used: Mapped[Decimal | None] = mapped_column(nullable=True)
    penalty_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    penalty_rate_used: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value,
    )
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    flag_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<BillingRecord {self.upin} fy={self.fiscal_year} "
            f"#{self.installment_number} {self.payment_status} due={self.amount_due}>"
        )
