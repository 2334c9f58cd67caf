"""
Accrual cycle: interest then penalty, in one transaction and one clock reading.

Running the two steps as separately scheduled jobs leaves a window in which
amount_due holds interest without penalty.  The cycle removes that window
and fixes the order.  A missing rate aborts both steps.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from registry_kernel.models.audit_log import AuditAction

from registry_batch.jobs.base import RunReport, SessionJob
from registry_batch.jobs.interest import accrue_interest
from registry_batch.jobs.penalty import accrue_penalty


class AccrualCycleJob(SessionJob):
    name = "accrual_cycle"
    description = "Accrue interest, then penalty, on current fiscal year bills"
    audit_action = AuditAction.ACCRUAL_CYCLE_RUN
    audit_entity_type = "BILLING_RECORDS"

    def execute(self, session: Session, now: datetime) -> RunReport:
        interest = accrue_interest(session, now, self._actor_id)
        penalty = accrue_penalty(session, now, self._actor_id)
        touched = list(dict.fromkeys(interest.audit_entity_ids + penalty.audit_entity_ids))
        return RunReport(
            updated_count=len(touched),
            audit_entity_ids=touched,
            details={
                "interest_updated": interest.updated_count,
                "penalty_updated": penalty.updated_count,
                **interest.details,
                **penalty.details,
            },
        )
