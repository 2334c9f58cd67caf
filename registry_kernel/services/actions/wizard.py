"""
Apply step for WIZARD_SESSION / CREATE: a parcel, its owners and an
optional lease registered by one approval.

Owners are matched on national_id first; a known owner is linked rather
than created again.
"""

from __future__ import annotations

from registry_kernel.domain.clock import align_to
from registry_kernel.domain.land import TenureType
from registry_kernel.domain.payloads import WizardSubmissionPayload
from registry_kernel.exceptions import ActionRejectedError
from registry_kernel.logging_config import get_logger
from registry_kernel.services.actions.common import ApplyContext, ApplyOutcome
from registry_kernel.services.actions.leases import build_lease
from registry_kernel.services.actions.owners import build_owner, find_by_national_id
from registry_kernel.services.actions.parcels import build_parcel, link_owner

logger = get_logger("services.actions.wizard")


def submit_wizard(ctx: ApplyContext, payload: WizardSubmissionPayload) -> ApplyOutcome:
    if not payload.owners:
        raise ActionRejectedError("NO_OWNERS", "At least one owner is required")
    for entry in payload.owners:
        if not entry.owner.phone_number:
            raise ActionRejectedError(
                "INCOMPLETE_OWNER",
                f"Owner {entry.owner.national_id} requires full_name, national_id and phone_number",
            )
    if payload.lease is not None and payload.parcel.tenure_type != TenureType.LEASE:
        raise ActionRejectedError(
            "PARCEL_NOT_LEASEHOLD", "A lease can only be registered on a LEASE tenure parcel",
        )

    parcel = build_parcel(ctx, payload.parcel)

    owner_ids = []
    reused = 0
    for position, entry in enumerate(payload.owners):
        owner = find_by_national_id(ctx, entry.owner.national_id)
        if owner is not None and not owner.is_deleted:
            reused += 1
        else:
            owner = build_owner(ctx, entry.owner)
        if owner.id in owner_ids:
            continue
        acquired_at = align_to(entry.acquired_at, ctx.now) if entry.acquired_at else ctx.now
        if acquired_at > ctx.now:
            raise ActionRejectedError("ACQUIRED_AT_IN_FUTURE", "acquired_at cannot be in the future")
        link_owner(ctx, parcel, owner.id, acquired_at, is_first=position == 0)
        owner_ids.append(owner.id)

    lease = build_lease(ctx, payload.lease) if payload.lease is not None else None

    logger.info(
        "wizard_submission_applied",
        extra={
            "upin": parcel.upin,
            "owner_count": len(owner_ids),
            "owners_reused": reused,
            "lease_created": lease is not None,
        },
    )
    return ApplyOutcome(
        entity_id=parcel.upin,
        summary={
            "upin": parcel.upin,
            "owner_ids": [str(owner_id) for owner_id in owner_ids],
            "lease_id": str(lease.id) if lease is not None else None,
        },
    )
