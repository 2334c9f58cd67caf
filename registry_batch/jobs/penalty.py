"""
Penalty accrual.

For every OVERDUE bill of the current fiscal year with a due date:
days = ceil(|now - due_date| / 1 day), skipped when <= 0;
base = base_payment + interest_amount;
penalty = base * (penalty_rate + lease_interest_rate) * days / 365;
amount_due = base + penalty.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import (
    PaymentStatus,
    RateType,
    compute_penalty,
    days_overdue,
    fiscal_year_of,
)
from registry_kernel.domain.clock import align_to
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.services.rate_config_service import RateConfigService

from registry_batch.jobs.base import RunReport, SessionJob


def accrue_penalty(session: Session, now: datetime, actor_id: UUID) -> RunReport:
    """Penalty step, shared by PenaltyJob and AccrualCycleJob.

    Raises:
        NoActiveRateError: No penalty or lease interest rate is effective.
    """
    rates = RateConfigService(session)
    penalty_rate = rates.get_current_rate(RateType.PENALTY_RATE, now)
    interest_rate = rates.get_current_rate(RateType.LEASE_INTEREST_RATE, now)
    fiscal_year = fiscal_year_of(now)
    bills = session.execute(
        select(BillingRecordModel)
        .where(
            BillingRecordModel.fiscal_year == fiscal_year,
            BillingRecordModel.payment_status == PaymentStatus.OVERDUE.value,
            BillingRecordModel.due_date.is_not(None),
            BillingRecordModel.is_deleted.is_(False),
        )
        .with_for_update()
    ).scalars().all()

    updated = []
    for bill in bills:
        overdue_days = days_overdue(align_to(bill.due_date, now), now)
        if overdue_days <= 0:
            continue
        accrual = compute_penalty(
            bill.base_payment,
            bill.interest_amount,
            penalty_rate,
            interest_rate,
            overdue_days,
        )
        bill.penalty_amount = accrual.penalty_amount
        bill.penalty_rate_used = penalty_rate
        bill.amount_due = accrual.amount_due
        bill.updated_by_id = actor_id
        updated.append(str(bill.id))
    session.flush()

    return RunReport(
        updated_count=len(updated),
        audit_entity_ids=updated,
        details={
            "fiscal_year": fiscal_year,
            "penalty_rate": str(penalty_rate),
            "interest_rate": str(interest_rate),
        },
    )


class PenaltyJob(SessionJob):
    name = "penalty_calculation"
    description = "Accrue late-payment penalty on OVERDUE bills of the current fiscal year"
    audit_action = AuditAction.PENALTY_ACCRUED
    audit_entity_type = "BILLING_RECORDS"

    def execute(self, session: Session, now: datetime) -> RunReport:
        return accrue_penalty(session, now, self._actor_id)
