"""
Interest accrual.

For every UNPAID or OVERDUE bill of the current fiscal year with a positive
remaining amount: interest = remaining_amount * lease interest rate and
amount_due = base_payment + interest.  Any penalty previously folded into
amount_due is dropped here; the penalty step adds it back, so interest must
run before penalty (see AccrualCycleJob).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import (
    OUTSTANDING_STATUSES,
    RateType,
    compute_interest,
    fiscal_year_of,
)
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.services.rate_config_service import RateConfigService

from registry_batch.jobs.base import RunReport, SessionJob


def accrue_interest(session: Session, now: datetime, actor_id: UUID) -> RunReport:
    """Interest step, shared by InterestJob and AccrualCycleJob.

    Raises:
        NoActiveRateError: No lease interest rate is effective at ``now``.
    """
    rate = RateConfigService(session).get_current_rate(RateType.LEASE_INTEREST_RATE, now)
    fiscal_year = fiscal_year_of(now)
    bills = session.execute(
        select(BillingRecordModel)
        .where(
            BillingRecordModel.fiscal_year == fiscal_year,
            BillingRecordModel.payment_status.in_([s.value for s in OUTSTANDING_STATUSES]),
            BillingRecordModel.is_deleted.is_(False),
        )
        .with_for_update()
    ).scalars().all()

    updated = []
    for bill in bills:
        if bill.remaining_amount is None or bill.remaining_amount <= 0:
            continue
        accrual = compute_interest(bill.remaining_amount, bill.base_payment, rate)
        bill.interest_amount = accrual.interest_amount
        bill.interest_rate_used = rate
        bill.amount_due = accrual.amount_due
        bill.updated_by_id = actor_id
        updated.append(str(bill.id))
    session.flush()

    return RunReport(
        updated_count=len(updated),
        audit_entity_ids=updated,
        details={"fiscal_year": fiscal_year, "interest_rate": str(rate)},
    )


class InterestJob(SessionJob):
    name = "interest_calculation"
    description = "Accrue lease interest on outstanding bills of the current fiscal year"
    audit_action = AuditAction.INTEREST_ACCRUED
    audit_entity_type = "BILLING_RECORDS"

    def execute(self, session: Session, now: datetime) -> RunReport:
        return accrue_interest(session, now, self._actor_id)
