"""
Apply steps for LAND_PARCELS requests.

Covers create, update, soft delete, ownership transfer, owner addition and
subdivision.  Ownership changes always leave an ownership_history snapshot
next to the audit entry.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select

from registry_kernel.domain.billing import OUTSTANDING_STATUSES, LeaseStatus
from registry_kernel.domain.clock import align_to
from registry_kernel.domain.land import (
    DEFAULT_LAND_GRADE,
    EARLIEST_ACQUISITION,
    SUBDIVISION_AREA_TOLERANCE_M2,
    EncumbranceStatus,
    OwnershipEventType,
    ParcelStatus,
    TenureType,
    TransferType,
)
from registry_kernel.domain.payloads import (
    AddOwnerPayload,
    EntityDeletePayload,
    EntityUpdatePayload,
    OwnershipTransferPayload,
    ParcelCreatePayload,
    SubdividePayload,
)
from registry_kernel.exceptions import ActionRejectedError, EntityConflictError
from registry_kernel.logging_config import get_logger
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.models.encumbrance import EncumbranceModel
from registry_kernel.models.lease import LeaseAgreementModel
from registry_kernel.models.parcel import (
    LandParcelModel,
    OwnershipHistoryModel,
    ParcelOwnerModel,
)
from registry_kernel.services.actions.common import (
    ApplyContext,
    ApplyOutcome,
    apply_changes,
    as_decimal,
    as_enum_value,
    as_text,
    load_owner,
    load_parcel,
    snapshot,
)
from registry_kernel.utils.hashing import to_json_document

logger = get_logger("services.actions.parcels")

ENTITY = "LAND_PARCELS"

PARCEL_FIELDS = (
    "upin", "file_number", "sub_city_id", "tabia", "ketena", "block",
    "total_area_m2", "land_use", "land_grade", "tenure_type", "status",
    "parent_upin",
)

_INHERITED = (
    "tabia", "ketena", "block", "land_use",
    "boundary_north", "boundary_south", "boundary_east", "boundary_west",
)

UPDATABLE_FIELDS = {
    "file_number": as_text,
    "sub_city_id": as_text,
    "tabia": as_text,
    "ketena": as_text,
    "block": as_text,
    "total_area_m2": as_decimal,
    "land_use": as_text,
    "land_grade": as_decimal,
    "tenure_type": as_enum_value(TenureType),
    "boundary_north": as_text,
    "boundary_south": as_text,
    "boundary_east": as_text,
    "boundary_west": as_text,
}


def _ensure_unused(ctx: ApplyContext, upin: str, file_number: str) -> None:
    clash = ctx.session.execute(
        select(LandParcelModel).where(
            or_(LandParcelModel.upin == upin, LandParcelModel.file_number == file_number)
        )
    ).scalars().first()
    if clash is None:
        return
    if clash.upin == upin:
        raise EntityConflictError(ENTITY, "upin", upin)
    raise EntityConflictError(ENTITY, "file_number", file_number)


def _active_links(ctx: ApplyContext, upin: str) -> list[ParcelOwnerModel]:
    return list(
        ctx.session.execute(
            select(ParcelOwnerModel)
            .where(ParcelOwnerModel.upin == upin, ParcelOwnerModel.is_active.is_(True))
            .order_by(ParcelOwnerModel.acquired_at)
            .with_for_update()
        ).scalars()
    )


def _count(ctx: ApplyContext, model: type, *criteria: Any) -> int:
    return ctx.session.execute(
        select(func.count()).select_from(model).where(*criteria)
    ).scalar_one()


def build_parcel(ctx: ApplyContext, payload: ParcelCreatePayload) -> LandParcelModel:
    """Insert a parcel from a create payload (shared with the wizard)."""
    _ensure_unused(ctx, payload.upin, payload.file_number)
    if payload.total_area_m2 <= 0:
        raise ActionRejectedError("INVALID_AREA", "total_area_m2 must be greater than 0")
    parcel = LandParcelModel(
        upin=payload.upin,
        file_number=payload.file_number,
        sub_city_id=payload.sub_city_id or ctx.sub_city_id,
        tabia=payload.tabia,
        ketena=payload.ketena,
        block=payload.block,
        total_area_m2=payload.total_area_m2,
        land_use=payload.land_use,
        land_grade=(
            payload.land_grade if payload.land_grade is not None
            else Decimal(str(DEFAULT_LAND_GRADE))
        ),
        tenure_type=(payload.tenure_type or TenureType.OLD_POSSESSION).value,
        status=ParcelStatus.ACTIVE.value,
        boundary_north=payload.boundary_north,
        boundary_south=payload.boundary_south,
        boundary_east=payload.boundary_east,
        boundary_west=payload.boundary_west,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(parcel)
    ctx.session.flush()
    ctx.record(AuditAction.ENTITY_CREATED, ENTITY, parcel.upin, {"created": snapshot(parcel, PARCEL_FIELDS)})
    return parcel


def link_owner(
    ctx: ApplyContext,
    parcel: LandParcelModel,
    owner_id,
    acquired_at,
    is_first: bool,
) -> ParcelOwnerModel:
    """Activate an owner link and write its history row (shared with the wizard)."""
    link = ParcelOwnerModel(
        upin=parcel.upin,
        owner_id=owner_id,
        is_active=True,
        acquired_at=acquired_at,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(link)
    event = OwnershipEventType.FIRST_OWNER if is_first else OwnershipEventType.CO_OWNER_ADDITION
    ctx.session.add(OwnershipHistoryModel(
        upin=parcel.upin,
        transfer_type=event.value,
        to_owner_id=owner_id,
        event_snapshot={
            "event": event.value,
            "owner_id": str(owner_id),
            "acquired_at": acquired_at.isoformat(),
            "approval_request_id": str(ctx.request_id),
        },
        actor_id=ctx.actor_id,
        occurred_at=ctx.now,
    ))
    ctx.session.flush()
    ctx.record(
        AuditAction.OWNER_ADDED,
        ENTITY,
        parcel.upin,
        {"owner_id": owner_id, "event": event.value, "acquired_at": acquired_at},
    )
    return link


# =========================================================================
# Handlers
# =========================================================================


def create_parcel(ctx: ApplyContext, payload: ParcelCreatePayload) -> ApplyOutcome:
    parcel = build_parcel(ctx, payload)
    return ApplyOutcome(entity_id=parcel.upin, summary={"upin": parcel.upin})


def update_parcel(ctx: ApplyContext, payload: EntityUpdatePayload) -> ApplyOutcome:
    parcel = load_parcel(ctx.session, ctx.entity_id)
    new_file_number = payload.changes.get("file_number")
    if new_file_number is not None and str(new_file_number) != parcel.file_number:
        taken = ctx.session.execute(
            select(LandParcelModel.id).where(LandParcelModel.file_number == str(new_file_number))
        ).first()
        if taken is not None:
            raise EntityConflictError(ENTITY, "file_number", str(new_file_number))
    diff = apply_changes(parcel, payload.changes, UPDATABLE_FIELDS)
    parcel.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(AuditAction.ENTITY_UPDATED, ENTITY, parcel.upin, {"changes": diff})
    return ApplyOutcome(entity_id=parcel.upin, summary={"changed_fields": sorted(diff)})


def delete_parcel(ctx: ApplyContext, payload: EntityDeletePayload) -> ApplyOutcome:
    parcel = load_parcel(ctx.session, ctx.entity_id)
    upin = parcel.upin
    blockers = {
        "active_owners": _count(
            ctx, ParcelOwnerModel,
            ParcelOwnerModel.upin == upin, ParcelOwnerModel.is_active.is_(True),
        ),
        "unpaid_bills": _count(
            ctx, BillingRecordModel,
            BillingRecordModel.upin == upin,
            BillingRecordModel.is_deleted.is_(False),
            BillingRecordModel.payment_status.in_([s.value for s in OUTSTANDING_STATUSES]),
        ),
        "child_parcels": _count(
            ctx, LandParcelModel,
            LandParcelModel.parent_upin == upin, LandParcelModel.is_deleted.is_(False),
        ),
        "active_leases": _count(
            ctx, LeaseAgreementModel,
            LeaseAgreementModel.upin == upin,
            LeaseAgreementModel.is_deleted.is_(False),
            LeaseAgreementModel.status == LeaseStatus.ACTIVE.value,
        ),
        "active_encumbrances": _count(
            ctx, EncumbranceModel,
            EncumbranceModel.upin == upin,
            EncumbranceModel.is_deleted.is_(False),
            EncumbranceModel.status == EncumbranceStatus.ACTIVE.value,
        ),
    }
    blocking = {name: n for name, n in blockers.items() if n}
    if blocking:
        detail = ", ".join(f"{n} {name.replace('_', ' ')}" for name, n in blocking.items())
        raise ActionRejectedError("PARCEL_HAS_DEPENDENCIES", f"Cannot delete parcel with {detail}")

    before = snapshot(parcel, PARCEL_FIELDS)
    parcel.mark_deleted(ctx.actor_id, ctx.now)
    parcel.status = ParcelStatus.RETIRED.value
    parcel.file_number = f"{parcel.file_number}_deleted_{int(ctx.now.timestamp())}"
    parcel.updated_by_id = ctx.actor_id
    ctx.session.flush()
    ctx.record(
        AuditAction.ENTITY_SOFT_DELETED,
        ENTITY,
        upin,
        {"before": before, "reason": payload.reason, "maker_snapshot": payload.snapshot},
    )
    return ApplyOutcome(entity_id=upin)


def transfer_ownership(ctx: ApplyContext, payload: OwnershipTransferPayload) -> ApplyOutcome:
    if payload.from_owner_id is not None and payload.from_owner_id == payload.to_owner_id:
        raise ActionRejectedError("SELF_TRANSFER", "Cannot transfer ownership to the same owner")
    parcel = load_parcel(ctx.session, ctx.entity_id)
    active = _active_links(ctx, parcel.upin)
    if not active:
        raise ActionRejectedError("NO_ACTIVE_OWNERS", f"Parcel {parcel.upin} has no active owners")
    owners_before = [str(link.owner_id) for link in active]

    if payload.from_owner_id is not None:
        from_link = next((link for link in active if link.owner_id == payload.from_owner_id), None)
        if from_link is None:
            raise ActionRejectedError(
                "FROM_OWNER_NOT_ACTIVE",
                f"Owner {payload.from_owner_id} has no active link to parcel {parcel.upin}",
            )
        from_link.is_active = False
        from_link.retired_at = ctx.now
        from_link.updated_by_id = ctx.actor_id

    to_owner = load_owner(ctx.session, payload.to_owner_id)
    existing = ctx.session.execute(
        select(ParcelOwnerModel)
        .where(ParcelOwnerModel.upin == parcel.upin, ParcelOwnerModel.owner_id == to_owner.id)
        .order_by(ParcelOwnerModel.acquired_at.desc())
        .with_for_update()
    ).scalars().first()
    if existing is not None:
        existing.is_active = True
        existing.acquired_at = ctx.now
        existing.retired_at = None
        existing.updated_by_id = ctx.actor_id
    else:
        ctx.session.add(ParcelOwnerModel(
            upin=parcel.upin,
            owner_id=to_owner.id,
            is_active=True,
            acquired_at=ctx.now,
            created_by_id=ctx.actor_id,
        ))

    tenure_before = parcel.tenure_type
    if payload.transfer_type != TransferType.HEREDITY:
        parcel.tenure_type = TenureType.LEASE.value
    parcel.updated_by_id = ctx.actor_id
    ctx.session.flush()

    owners_after = [str(link.owner_id) for link in _active_links(ctx, parcel.upin)]
    event_snapshot = {
        "owners_before": owners_before,
        "owners_after": owners_after,
        "tenure_before": tenure_before,
        "tenure_after": parcel.tenure_type,
        "transfer_type": payload.transfer_type.value,
        "transfer_price": payload.transfer_price,
        "reference_no": payload.reference_no,
        "approval_request_id": str(ctx.request_id),
    }
    ctx.session.add(OwnershipHistoryModel(
        upin=parcel.upin,
        transfer_type=payload.transfer_type.value,
        from_owner_id=payload.from_owner_id,
        to_owner_id=to_owner.id,
        transfer_price=payload.transfer_price,
        reference_no=payload.reference_no,
        event_snapshot=to_json_document(event_snapshot),
        actor_id=ctx.actor_id,
        occurred_at=ctx.now,
    ))
    ctx.session.flush()
    ctx.record(AuditAction.OWNERSHIP_TRANSFERRED, ENTITY, parcel.upin, event_snapshot)
    logger.info(
        "ownership_transferred",
        extra={
            "upin": parcel.upin,
            "transfer_type": payload.transfer_type.value,
            "to_owner_id": str(to_owner.id),
        },
    )
    return ApplyOutcome(entity_id=parcel.upin, summary={"owners_after": owners_after})


def add_owner(ctx: ApplyContext, payload: AddOwnerPayload) -> ApplyOutcome:
    parcel = load_parcel(ctx.session, ctx.entity_id)
    owner = load_owner(ctx.session, payload.owner_id)
    active = _active_links(ctx, parcel.upin)
    if any(link.owner_id == owner.id for link in active):
        raise ActionRejectedError(
            "OWNER_ALREADY_ACTIVE", f"Owner {owner.id} already holds parcel {parcel.upin}",
        )
    is_first = not active
    acquired_at = align_to(payload.acquired_at, ctx.now) if payload.acquired_at else ctx.now
    if acquired_at > ctx.now:
        raise ActionRejectedError("ACQUIRED_AT_IN_FUTURE", "acquired_at cannot be in the future")
    if is_first and acquired_at < align_to(EARLIEST_ACQUISITION, ctx.now):
        raise ActionRejectedError(
            "ACQUIRED_AT_TOO_EARLY",
            f"acquired_at cannot be before {EARLIEST_ACQUISITION.date().isoformat()}",
        )
    link_owner(ctx, parcel, owner.id, acquired_at, is_first)
    return ApplyOutcome(
        entity_id=parcel.upin,
        summary={"owner_id": str(owner.id), "first_owner": is_first},
    )


def subdivide_parcel(ctx: ApplyContext, payload: SubdividePayload) -> ApplyOutcome:
    children = payload.children
    if len(children) < 2:
        raise ActionRejectedError("TOO_FEW_CHILDREN", "Subdivision requires at least 2 child parcels")
    parent = load_parcel(ctx.session, ctx.entity_id)
    if parent.status != ParcelStatus.ACTIVE.value:
        raise ActionRejectedError("PARENT_NOT_ACTIVE", f"Parcel {parent.upin} is not ACTIVE")

    seen: set[str] = set()
    for child in children:
        if child.total_area_m2 <= 0:
            raise ActionRejectedError(
                "INVALID_CHILD_AREA", f"Child {child.upin} must have an area greater than 0",
            )
        if child.upin in seen:
            raise ActionRejectedError("DUPLICATE_CHILD_UPIN", f"Child UPIN {child.upin} is repeated")
        seen.add(child.upin)
        _ensure_unused(ctx, child.upin, child.file_number)

    total_children = sum((c.total_area_m2 for c in children), Decimal("0"))
    parent_area = Decimal(parent.total_area_m2)
    if abs(total_children - parent_area) > Decimal(str(SUBDIVISION_AREA_TOLERANCE_M2)):
        raise ActionRejectedError(
            "AREA_MISMATCH",
            f"Child areas total {total_children} m2 but parent is {parent_area} m2",
        )

    links = _active_links(ctx, parent.upin)
    parent.status = ParcelStatus.RETIRED.value
    parent.updated_by_id = ctx.actor_id

    created = []
    for child in children:
        inherited = {
            name: getattr(child, name) if getattr(child, name) is not None else getattr(parent, name)
            for name in _INHERITED
        }
        row = LandParcelModel(
            upin=child.upin,
            file_number=child.file_number,
            sub_city_id=parent.sub_city_id,
            total_area_m2=child.total_area_m2,
            land_grade=parent.land_grade,
            tenure_type=parent.tenure_type,
            status=ParcelStatus.ACTIVE.value,
            parent_upin=parent.upin,
            created_by_id=ctx.actor_id,
            **inherited,
        )
        ctx.session.add(row)
        for link in links:
            ctx.session.add(ParcelOwnerModel(
                upin=child.upin,
                owner_id=link.owner_id,
                is_active=True,
                acquired_at=ctx.now,
                created_by_id=ctx.actor_id,
            ))
        created.append(row)
    ctx.session.flush()

    event_snapshot = {
        "parent_parcel": {
            "upin": parent.upin,
            "area_m2": parent_area,
            "owners": [str(link.owner_id) for link in links],
        },
        "child_parcels": [
            {"upin": c.upin, "file_number": c.file_number, "area_m2": c.total_area_m2}
            for c in created
        ],
        "approval_request_id": str(ctx.request_id),
    }
    ctx.session.add(OwnershipHistoryModel(
        upin=parent.upin,
        transfer_type=OwnershipEventType.SUBDIVISION.value,
        reference_no=f"SUBDIVISION-{int(ctx.now.timestamp())}",
        event_snapshot=to_json_document(event_snapshot),
        actor_id=ctx.actor_id,
        occurred_at=ctx.now,
    ))
    ctx.session.flush()
    ctx.record(AuditAction.PARCEL_SUBDIVIDED, ENTITY, parent.upin, event_snapshot)
    logger.info(
        "parcel_subdivided",
        extra={"upin": parent.upin, "child_count": len(created)},
    )
    return ApplyOutcome(
        entity_id=parent.upin,
        summary={"children": [c.upin for c in created]},
    )
