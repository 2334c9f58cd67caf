"""Apply steps for ENCUMBRANCES requests."""

from __future__ import annotations

from sqlalchemy import select

from registry_kernel.domain.land import EncumbranceStatus
from registry_kernel.domain.payloads import (
    EncumbranceCreatePayload,
    EntityDeletePayload,
    EntityUpdatePayload,
)
from registry_kernel.exceptions import EntityConflictError, EntityNotFoundError
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.encumbrance import EncumbranceModel
from registry_kernel.services.actions.common import (
    ApplyContext,
    ApplyOutcome,
    apply_changes,
    as_datetime,
    as_enum_value,
    as_text,
    load_parcel,
    parse_uuid,
    snapshot,
)

ENTITY = "ENCUMBRANCES"

ENCUMBRANCE_FIELDS = (
    "upin", "type", "issuing_entity", "reference_number", "description",
    "status", "registration_date",
)

UPDATABLE_FIELDS = {
    "type": as_text,
    "issuing_entity": as_text,
    "reference_number": as_text,
    "description": as_text,
    "status": as_enum_value(EncumbranceStatus),
    "registration_date": as_datetime,
}


def _reference_taken(ctx: ApplyContext, reference_number: str) -> bool:
    return ctx.session.execute(
        select(EncumbranceModel.id).where(EncumbranceModel.reference_number == reference_number)
    ).first() is not None


def _load(ctx: ApplyContext) -> EncumbranceModel:
    encumbrance_id = parse_uuid(ENTITY, ctx.entity_id)
    encumbrance = ctx.session.execute(
        select(EncumbranceModel)
        .where(EncumbranceModel.id == encumbrance_id, EncumbranceModel.is_deleted.is_(False))
        .with_for_update()
    ).scalar_one_or_none()
    if encumbrance is None:
        raise EntityNotFoundError(ENTITY, ctx.entity_id)
    return encumbrance


def create_encumbrance(ctx: ApplyContext, payload: EncumbranceCreatePayload) -> ApplyOutcome:
    parcel = load_parcel(ctx.session, payload.upin)
    if _reference_taken(ctx, payload.reference_number):
        raise EntityConflictError(ENTITY, "reference_number", payload.reference_number)
    encumbrance = EncumbranceModel(
        upin=parcel.upin,
        type=payload.type,
        issuing_entity=payload.issuing_entity,
        reference_number=payload.reference_number,
        description=payload.description,
        status=EncumbranceStatus.ACTIVE.value,
        registration_date=payload.registration_date or ctx.now,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(encumbrance)
    ctx.session.flush()
    ctx.record(
        AuditAction.ENTITY_CREATED,
        ENTITY,
        encumbrance.id,
        {"created": snapshot(encumbrance, ENCUMBRANCE_FIELDS)},
    )
    return ApplyOutcome(entity_id=str(encumbrance.id), summary={"upin": parcel.upin})


def update_encumbrance(ctx: ApplyContext, payload: EntityUpdatePayload) -> ApplyOutcome:
    encumbrance = _load(ctx)
    new_reference = payload.changes.get("reference_number")
    if new_reference is not None and str(new_reference) != encumbrance.reference_number:
        if _reference_taken(ctx, str(new_reference)):
            raise EntityConflictError(ENTITY, "reference_number", str(new_reference))
    diff = apply_changes(encumbrance, payload.changes, UPDATABLE_FIELDS)
    encumbrance.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(AuditAction.ENTITY_UPDATED, ENTITY, encumbrance.id, {"changes": diff})
    return ApplyOutcome(entity_id=str(encumbrance.id), summary={"changed_fields": sorted(diff)})


def delete_encumbrance(ctx: ApplyContext, payload: EntityDeletePayload) -> ApplyOutcome:
    encumbrance = _load(ctx)
    before = snapshot(encumbrance, ENCUMBRANCE_FIELDS)
    encumbrance.mark_deleted(ctx.actor_id, ctx.now)
    encumbrance.status = EncumbranceStatus.RELEASED.value
    encumbrance.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(
        AuditAction.ENTITY_SOFT_DELETED,
        ENTITY,
        encumbrance.id,
        {"before": before, "reason": payload.reason, "maker_snapshot": payload.snapshot},
    )
    return ApplyOutcome(entity_id=str(encumbrance.id))
