"""
Lease billing -- installment bill generation for lease agreements.

Responsibility:
    Turns a lease's financial terms into one UNPAID bill per year of the
    payment term, and rebuilds the outstanding part of that schedule when
    the terms change.

Invariants enforced:
    - principal = total - down payment - other payment, and must be > 0.
    - Installment n is due n years after start_date; its fiscal year is
      the due year; base_payment = amount_due = annual installment.
    - Regeneration never touches PAID bills.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import (
    Installment,
    PaymentStatus,
    annual_installment,
    installment_plan,
    lease_principal,
)
from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.exceptions import ActionRejectedError
from registry_kernel.logging_config import get_logger
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.models.lease import LeaseAgreementModel

logger = get_logger("services.lease_billing")

_ZERO = Decimal("0")


def compute_installment(
    total_lease_amount: Decimal,
    down_payment_amount: Decimal,
    other_payment: Decimal,
    payment_term_years: int,
) -> tuple[Decimal, Decimal]:
    """Return (principal, annual installment) for a set of lease terms.

    Raises:
        ActionRejectedError: Non-positive principal or payment term.
    """
    principal = lease_principal(total_lease_amount, down_payment_amount, other_payment)
    if principal <= _ZERO:
        raise ActionRejectedError(
            "NON_POSITIVE_PRINCIPAL",
            "Down payment plus other payment must be less than total lease amount",
        )
    if payment_term_years <= 0:
        raise ActionRejectedError(
            "INVALID_PAYMENT_TERM", "Payment term years must be greater than 0",
        )
    return principal, annual_installment(principal, payment_term_years)


def _bill_for(
    lease: LeaseAgreementModel, item: Installment, actor_id: UUID,
) -> BillingRecordModel:
    return BillingRecordModel(
        upin=lease.upin,
        lease_id=lease.id,
        fiscal_year=item.fiscal_year,
        installment_number=item.installment_number,
        base_payment=item.amount,
        amount_due=item.amount,
        remaining_amount=item.remaining_amount,
        payment_status=PaymentStatus.UNPAID.value,
        due_date=item.due_date,
        created_by_id=actor_id,
    )


class LeaseBillingService:
    """Generates and regenerates installment bills for a lease."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def generate_installment_bills(
        self, lease: LeaseAgreementModel, actor_id: UUID,
    ) -> list[BillingRecordModel]:
        """Create the full bill schedule for a newly created lease."""
        principal, installment = compute_installment(
            lease.total_lease_amount,
            lease.down_payment_amount,
            lease.other_payment,
            lease.payment_term_years,
        )
        bills = [
            _bill_for(lease, item, actor_id)
            for item in installment_plan(
                principal, installment, lease.payment_term_years, lease.start_date,
            )
        ]
        self._session.add_all(bills)
        self._session.flush()
        logger.info(
            "lease_bills_generated",
            extra={
                "lease_id": str(lease.id),
                "upin": lease.upin,
                "bill_count": len(bills),
                "annual_installment": str(installment),
            },
        )
        return bills

    def regenerate_unpaid_bills(
        self, lease: LeaseAgreementModel, actor_id: UUID,
    ) -> tuple[int, list[BillingRecordModel]]:
        """Soft-delete outstanding bills and rebuild their installments.

        Installment numbers that already have a PAID bill are kept as is.

        Returns:
            (number of bills retired, newly created bills)
        """
        now = self._clock.now()
        existing = list(
            self._session.execute(
                select(BillingRecordModel)
                .where(
                    BillingRecordModel.lease_id == lease.id,
                    BillingRecordModel.is_deleted.is_(False),
                )
                .with_for_update()
            ).scalars()
        )
        paid_installments = {
            bill.installment_number
            for bill in existing
            if bill.payment_status == PaymentStatus.PAID.value
        }
        retired = 0
        for bill in existing:
            if bill.payment_status != PaymentStatus.PAID.value:
                bill.mark_deleted(actor_id, now)
                bill.updated_by_id = actor_id
                retired += 1

        principal, installment = compute_installment(
            lease.total_lease_amount,
            lease.down_payment_amount,
            lease.other_payment,
            lease.payment_term_years,
        )
        created = [
            _bill_for(lease, item, actor_id)
            for item in installment_plan(
                principal, installment, lease.payment_term_years, lease.start_date,
            )
            if item.installment_number not in paid_installments
        ]
        self._session.add_all(created)
        self._session.flush()
        logger.info(
            "lease_bills_regenerated",
            extra={
                "lease_id": str(lease.id),
                "bills_retired": retired,
                "bills_created": len(created),
                "paid_kept": len(paid_installments),
            },
        )
        return retired, created
