"""Apply steps for OWNERS requests."""

from __future__ import annotations

from sqlalchemy import func, select

from registry_kernel.domain.payloads import (
    EntityDeletePayload,
    EntityUpdatePayload,
    OwnerCreatePayload,
)
from registry_kernel.exceptions import ActionRejectedError, EntityConflictError
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.owner import OwnerModel
from registry_kernel.models.parcel import ParcelOwnerModel
from registry_kernel.services.actions.common import (
    ApplyContext,
    ApplyOutcome,
    apply_changes,
    as_text,
    load_owner,
    snapshot,
)

ENTITY = "OWNERS"

OWNER_FIELDS = ("full_name", "national_id", "tin_number", "phone_number", "sub_city_id")

UPDATABLE_FIELDS = {
    "full_name": as_text,
    "national_id": as_text,
    "tin_number": as_text,
    "phone_number": as_text,
    "sub_city_id": as_text,
}


def find_by_national_id(ctx: ApplyContext, national_id: str) -> OwnerModel | None:
    return ctx.session.execute(
        select(OwnerModel).where(OwnerModel.national_id == national_id)
    ).scalar_one_or_none()


def build_owner(ctx: ApplyContext, payload: OwnerCreatePayload) -> OwnerModel:
    if find_by_national_id(ctx, payload.national_id) is not None:
        raise EntityConflictError(ENTITY, "national_id", payload.national_id)
    owner = OwnerModel(
        full_name=payload.full_name,
        national_id=payload.national_id,
        tin_number=payload.tin_number,
        phone_number=payload.phone_number,
        sub_city_id=payload.sub_city_id or ctx.sub_city_id,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(owner)
    ctx.session.flush()
    ctx.record(AuditAction.ENTITY_CREATED, ENTITY, owner.id, {"created": snapshot(owner, OWNER_FIELDS)})
    return owner


def create_owner(ctx: ApplyContext, payload: OwnerCreatePayload) -> ApplyOutcome:
    owner = build_owner(ctx, payload)
    return ApplyOutcome(entity_id=str(owner.id))


def update_owner(ctx: ApplyContext, payload: EntityUpdatePayload) -> ApplyOutcome:
    owner = load_owner(ctx.session, ctx.entity_id)
    new_national_id = payload.changes.get("national_id")
    if new_national_id is not None and str(new_national_id) != owner.national_id:
        if find_by_national_id(ctx, str(new_national_id)) is not None:
            raise EntityConflictError(ENTITY, "national_id", str(new_national_id))
    diff = apply_changes(owner, payload.changes, UPDATABLE_FIELDS)
    owner.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(AuditAction.ENTITY_UPDATED, ENTITY, owner.id, {"changes": diff})
    return ApplyOutcome(entity_id=str(owner.id), summary={"changed_fields": sorted(diff)})


def delete_owner(ctx: ApplyContext, payload: EntityDeletePayload) -> ApplyOutcome:
    owner = load_owner(ctx.session, ctx.entity_id)
    active_links = ctx.session.execute(
        select(func.count())
        .select_from(ParcelOwnerModel)
        .where(ParcelOwnerModel.owner_id == owner.id, ParcelOwnerModel.is_active.is_(True))
    ).scalar_one()
    if active_links:
        raise ActionRejectedError(
            "OWNER_HAS_ACTIVE_PARCELS",
            f"Cannot delete owner with {active_links} active parcel links",
        )
    before = snapshot(owner, OWNER_FIELDS)
    owner.mark_deleted(ctx.actor_id, ctx.now)
    owner.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(
        AuditAction.ENTITY_SOFT_DELETED,
        ENTITY,
        owner.id,
        {"before": before, "reason": payload.reason, "maker_snapshot": payload.snapshot},
    )
    return ApplyOutcome(entity_id=str(owner.id))
