"""Bill status job: UNPAID bills of the current fiscal year past their due date become OVERDUE."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import PaymentStatus, fiscal_year_of
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel

from registry_batch.jobs.base import RunReport, SessionJob


class BillStatusJob(SessionJob):
    name = "bill_status_update"
    description = "Mark past-due UNPAID bills of the current fiscal year OVERDUE"
    audit_action = AuditAction.BILLS_MARKED_OVERDUE
    audit_entity_type = "BILLING_RECORDS"

    def execute(self, session: Session, now: datetime) -> RunReport:
        fiscal_year = fiscal_year_of(now)
        bills = session.execute(
            select(BillingRecordModel)
            .where(
                BillingRecordModel.fiscal_year == fiscal_year,
                BillingRecordModel.payment_status == PaymentStatus.UNPAID.value,
                BillingRecordModel.due_date.is_not(None),
                BillingRecordModel.due_date < now,
                BillingRecordModel.is_deleted.is_(False),
            )
            .with_for_update()
        ).scalars().all()

        for bill in bills:
            bill.payment_status = PaymentStatus.OVERDUE.value
            bill.updated_by_id = self._actor_id
        session.flush()

        return RunReport(
            updated_count=len(bills),
            audit_entity_ids=[str(bill.id) for bill in bills],
            details={"fiscal_year": fiscal_year},
        )
