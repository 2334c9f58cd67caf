"""
Lease expiry job: ACTIVE leases past their expiry date become EXPIRED.

What happens to the expired lease's outstanding bills is a policy:
    keep   -- bills are left untouched (default)
    flag   -- UNPAID/OVERDUE bills get flag_reason = LEASE_EXPIRED
    cancel -- UNPAID/OVERDUE bills become CANCELLED and are flagged
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import (
    LEASE_EXPIRED_FLAG,
    OUTSTANDING_STATUSES,
    LeaseExpiryBillAction,
    LeaseStatus,
    PaymentStatus,
)
from registry_kernel.domain.clock import Clock
from registry_kernel.logging_config import get_logger
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.models.lease import LeaseAgreementModel

from registry_batch.domain.types import SYSTEM_ACTOR_ID
from registry_batch.jobs.base import RunReport, SessionJob

logger = get_logger("batch.jobs.lease_expiry")


class LeaseExpiryJob(SessionJob):
    name = "lease_status_update"
    description = "Expire ACTIVE leases whose expiry date has passed"
    audit_action = AuditAction.LEASES_EXPIRED
    audit_entity_type = "LEASE_AGREEMENTS"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        bill_action: LeaseExpiryBillAction | str = LeaseExpiryBillAction.KEEP,
    ):
        super().__init__(session_factory, clock, actor_id)
        self._bill_action = LeaseExpiryBillAction(bill_action)

    @property
    def bill_action(self) -> LeaseExpiryBillAction:
        return self._bill_action

    def execute(self, session: Session, now: datetime) -> RunReport:
        leases = session.execute(
            select(LeaseAgreementModel)
            .where(
                LeaseAgreementModel.status == LeaseStatus.ACTIVE.value,
                LeaseAgreementModel.expiry_date < now,
                LeaseAgreementModel.is_deleted.is_(False),
            )
            .with_for_update()
        ).scalars().all()

        for lease in leases:
            lease.status = LeaseStatus.EXPIRED.value
            lease.updated_by_id = self._actor_id
        session.flush()

        bills_touched = 0
        if leases and self._bill_action != LeaseExpiryBillAction.KEEP:
            bills_touched = self._follow_up_bills(session, [lease.id for lease in leases])

        return RunReport(
            updated_count=len(leases),
            audit_entity_ids=[str(lease.id) for lease in leases],
            details={
                "bill_action": self._bill_action.value,
                "bills_touched": bills_touched,
            },
        )

    def _follow_up_bills(self, session: Session, lease_ids: list[UUID]) -> int:
        bills = session.execute(
            select(BillingRecordModel)
            .where(
                BillingRecordModel.lease_id.in_(lease_ids),
                BillingRecordModel.payment_status.in_([s.value for s in OUTSTANDING_STATUSES]),
                BillingRecordModel.is_deleted.is_(False),
            )
            .with_for_update()
        ).scalars().all()

        for bill in bills:
            if self._bill_action == LeaseExpiryBillAction.CANCEL:
                bill.payment_status = PaymentStatus.CANCELLED.value
            bill.flag_reason = LEASE_EXPIRED_FLAG
            bill.updated_by_id = self._actor_id
        session.flush()

        logger.info(
            "expired_lease_bills_followed_up",
            extra={"bill_action": self._bill_action.value, "bill_count": len(bills)},
        )
        return len(bills)
