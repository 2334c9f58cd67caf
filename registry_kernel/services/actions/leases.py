"""
Apply steps for LEASE_AGREEMENTS requests.

A lease is only registered on a LEASE-tenure parcel, at most one live lease
per parcel.  Creating it generates the installment schedule.  Updating any
financial term recomputes the annual installment and rebuilds the unpaid
part of the schedule.
"""

from __future__ import annotations

from sqlalchemy import func, select

from registry_kernel.domain.billing import OUTSTANDING_STATUSES, LeaseStatus, add_years
from registry_kernel.domain.land import TenureType
from registry_kernel.domain.payloads import (
    EntityDeletePayload,
    EntityUpdatePayload,
    LeaseCreatePayload,
)
from registry_kernel.exceptions import ActionRejectedError, EntityConflictError
from registry_kernel.logging_config import get_logger
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.models.lease import LeaseAgreementModel
from registry_kernel.services.actions.common import (
    ApplyContext,
    ApplyOutcome,
    apply_changes,
    as_datetime,
    as_decimal,
    as_int,
    as_text,
    load_lease,
    load_parcel,
    snapshot,
)
from registry_kernel.services.lease_billing import compute_installment

logger = get_logger("services.actions.leases")

ENTITY = "LEASE_AGREEMENTS"

LEASE_FIELDS = (
    "upin", "total_lease_amount", "down_payment_amount", "other_payment",
    "annual_installment", "price_per_m2", "lease_period_years",
    "payment_term_years", "legal_framework", "start_date", "expiry_date",
    "contract_date", "status",
)

# annual_installment and expiry_date are derived and never taken from a maker
UPDATABLE_FIELDS = {
    "total_lease_amount": as_decimal,
    "down_payment_amount": as_decimal,
    "other_payment": as_decimal,
    "price_per_m2": as_decimal,
    "lease_period_years": as_int,
    "payment_term_years": as_int,
    "legal_framework": as_text,
    "start_date": as_datetime,
    "contract_date": as_datetime,
}

BILLING_TERMS = frozenset({
    "total_lease_amount", "down_payment_amount", "other_payment",
    "payment_term_years", "start_date",
})
EXPIRY_TERMS = frozenset({"start_date", "lease_period_years"})


def _check_period(lease_period_years: int) -> None:
    if lease_period_years <= 0:
        raise ActionRejectedError("INVALID_LEASE_PERIOD", "Lease period years must be greater than 0")


def build_lease(ctx: ApplyContext, payload: LeaseCreatePayload) -> LeaseAgreementModel:
    parcel = load_parcel(ctx.session, payload.upin)
    if parcel.tenure_type != TenureType.LEASE.value:
        raise ActionRejectedError(
            "PARCEL_NOT_LEASEHOLD",
            f"Parcel {parcel.upin} has tenure {parcel.tenure_type}, expected LEASE",
        )
    existing = ctx.session.execute(
        select(LeaseAgreementModel.id).where(
            LeaseAgreementModel.upin == parcel.upin,
            LeaseAgreementModel.is_deleted.is_(False),
        )
    ).first()
    if existing is not None:
        raise EntityConflictError(ENTITY, "upin", parcel.upin)

    _check_period(payload.lease_period_years)
    _, installment = compute_installment(
        payload.total_lease_amount,
        payload.down_payment_amount,
        payload.other_payment,
        payload.payment_term_years,
    )
    lease = LeaseAgreementModel(
        upin=parcel.upin,
        total_lease_amount=payload.total_lease_amount,
        down_payment_amount=payload.down_payment_amount,
        other_payment=payload.other_payment,
        annual_installment=installment,
        price_per_m2=payload.price_per_m2,
        lease_period_years=payload.lease_period_years,
        payment_term_years=payload.payment_term_years,
        legal_framework=payload.legal_framework,
        start_date=payload.start_date,
        expiry_date=add_years(payload.start_date, payload.lease_period_years),
        contract_date=payload.contract_date or ctx.now,
        status=LeaseStatus.ACTIVE.value,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(lease)
    ctx.session.flush()
    bills = ctx.billing.generate_installment_bills(lease, ctx.actor_id)
    ctx.record(AuditAction.ENTITY_CREATED, ENTITY, lease.id, {"created": snapshot(lease, LEASE_FIELDS)})
    ctx.record(
        AuditAction.LEASE_BILLS_GENERATED,
        ENTITY,
        lease.id,
        {"bill_count": len(bills), "annual_installment": installment},
    )
    return lease


def create_lease(ctx: ApplyContext, payload: LeaseCreatePayload) -> ApplyOutcome:
    lease = build_lease(ctx, payload)
    return ApplyOutcome(entity_id=str(lease.id), summary={"upin": lease.upin})


def update_lease(ctx: ApplyContext, payload: EntityUpdatePayload) -> ApplyOutcome:
    lease = load_lease(ctx.session, ctx.entity_id)
    diff = apply_changes(lease, payload.changes, UPDATABLE_FIELDS)
    changed = set(diff)

    if changed & EXPIRY_TERMS:
        _check_period(lease.lease_period_years)
        expiry = add_years(lease.start_date, lease.lease_period_years)
        diff["expiry_date"] = {"from": lease.expiry_date.isoformat(), "to": expiry.isoformat()}
        lease.expiry_date = expiry

    regenerated = None
    if changed & BILLING_TERMS:
        _, installment = compute_installment(
            lease.total_lease_amount,
            lease.down_payment_amount,
            lease.other_payment,
            lease.payment_term_years,
        )
        if installment != lease.annual_installment:
            diff["annual_installment"] = {"from": str(lease.annual_installment), "to": str(installment)}
            lease.annual_installment = installment
        ctx.session.flush()
        retired, created = ctx.billing.regenerate_unpaid_bills(lease, ctx.actor_id)
        regenerated = {"bills_retired": retired, "bills_created": len(created)}

    lease.updated_by_id = ctx.actor_id
    ctx.session.flush()
    changes = {"changes": diff}
    if regenerated is not None:
        changes["bill_regeneration"] = regenerated
    ctx.record(AuditAction.ENTITY_UPDATED, ENTITY, lease.id, changes)
    logger.info(
        "lease_updated",
        extra={
            "lease_id": str(lease.id),
            "changed_fields": sorted(diff),
            "bills_regenerated": regenerated is not None,
        },
    )
    return ApplyOutcome(entity_id=str(lease.id), summary={"changed_fields": sorted(diff)})


def delete_lease(ctx: ApplyContext, payload: EntityDeletePayload) -> ApplyOutcome:
    lease = load_lease(ctx.session, ctx.entity_id)
    unpaid = ctx.session.execute(
        select(func.count())
        .select_from(BillingRecordModel)
        .where(
            BillingRecordModel.lease_id == lease.id,
            BillingRecordModel.is_deleted.is_(False),
            BillingRecordModel.payment_status.in_([s.value for s in OUTSTANDING_STATUSES]),
        )
    ).scalar_one()
    if unpaid:
        raise ActionRejectedError(
            "LEASE_HAS_UNPAID_BILLS", f"Cannot delete lease with {unpaid} unpaid bills",
        )
    before = snapshot(lease, LEASE_FIELDS)
    lease.mark_deleted(ctx.actor_id, ctx.now)
    lease.status = LeaseStatus.EXPIRED.value
    lease.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(
        AuditAction.ENTITY_SOFT_DELETED,
        ENTITY,
        lease.id,
        {"before": before, "reason": payload.reason, "maker_snapshot": payload.snapshot},
    )
    return ApplyOutcome(entity_id=str(lease.id))
