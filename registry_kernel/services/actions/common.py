"""
Shared plumbing for approval apply steps.

Every handler receives an ``ApplyContext`` carrying the open session, the
audit sink, the lease billing service, the checker and one clock reading,
and returns an ``ApplyOutcome`` naming the entity it touched.  Handlers
flush but never commit: the maker-checker service owns the SAVEPOINT.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_kernel.exceptions import ActionRejectedError, EntityNotFoundError
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.lease import LeaseAgreementModel
from registry_kernel.models.owner import OwnerModel
from registry_kernel.models.parcel import LandParcelModel
from registry_kernel.services.audit_service import AuditService
from registry_kernel.services.lease_billing import LeaseBillingService
from registry_kernel.utils.hashing import to_json_document


@dataclass(frozen=True)
class ApplyContext:
    session: Session
    audit: AuditService
    billing: LeaseBillingService
    request_id: UUID
    entity_id: str
    actor_id: UUID
    sub_city_id: str | None
    now: datetime

    def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str | UUID,
        changes: dict[str, Any],
    ) -> None:
        """Audit entry attributed to the checker, tagged with the request."""
        self.audit.log(
            action,
            entity_type,
            entity_id,
            {**changes, "approval_request_id": str(self.request_id)},
            user_id=self.actor_id,
        )


@dataclass(frozen=True)
class ApplyOutcome:
    entity_id: str
    summary: dict[str, Any] = field(default_factory=dict)


# =========================================================================
# Value coercion for UPDATE changes
# =========================================================================


def as_text(value: Any) -> str:
    return str(value)


def as_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}") from None


def as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


def as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def as_enum_value(enum_type: type[Enum]) -> Callable[[Any], str]:
    def convert(value: Any) -> str:
        return enum_type(value).value

    return convert


def apply_changes(
    target: Any,
    changes: Mapping[str, Any],
    allowed: Mapping[str, Callable[[Any], Any]],
) -> dict[str, dict[str, Any]]:
    """Set the allowed fields present in ``changes`` and return the from/to diff.

    Keys outside ``allowed`` are ignored.  ``None`` clears a nullable column.
    Values equal to the stored value are left out of the diff, so a request
    that restates the current record succeeds with an empty diff.

    Raises:
        ActionRejectedError: No allowed key is present, a value cannot be
            coerced, or ``None`` targets a required column.
    """
    present = [name for name in changes if name in allowed]
    if not present:
        raise ActionRejectedError("NO_VALID_CHANGES", "No valid changes to apply")

    columns = target.__table__.c
    diff: dict[str, dict[str, Any]] = {}
    for name in present:
        raw = changes[name]
        if raw is None:
            if not columns[name].nullable:
                raise ActionRejectedError("INVALID_FIELD_VALUE", f"'{name}' cannot be cleared")
            value = None
        else:
            try:
                value = allowed[name](raw)
            except (TypeError, ValueError) as exc:
                raise ActionRejectedError(
                    "INVALID_FIELD_VALUE", f"Invalid value for '{name}': {exc}",
                ) from exc
        current = getattr(target, name)
        if current == value:
            continue
        diff[name] = {"from": current, "to": value}
        setattr(target, name, value)
    return to_json_document(diff)


def snapshot(model: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return to_json_document({name: getattr(model, name) for name in fields})


# =========================================================================
# Loaders
# =========================================================================


def parse_uuid(entity_type: str, raw: str) -> UUID:
    try:
        return UUID(str(raw))
    except ValueError:
        raise EntityNotFoundError(entity_type, raw) from None


def load_parcel(session: Session, upin: str) -> LandParcelModel:
    parcel = session.execute(
        select(LandParcelModel)
        .where(LandParcelModel.upin == upin, LandParcelModel.is_deleted.is_(False))
        .with_for_update()
    ).scalar_one_or_none()
    if parcel is None:
        raise EntityNotFoundError("LAND_PARCELS", upin)
    return parcel


def load_owner(session: Session, owner_id: UUID | str) -> OwnerModel:
    owner_uuid = parse_uuid("OWNERS", owner_id)
    owner = session.execute(
        select(OwnerModel).where(OwnerModel.id == owner_uuid, OwnerModel.is_deleted.is_(False))
    ).scalar_one_or_none()
    if owner is None:
        raise EntityNotFoundError("OWNERS", str(owner_id))
    return owner


def load_lease(session: Session, lease_id: UUID | str) -> LeaseAgreementModel:
    lease_uuid = parse_uuid("LEASE_AGREEMENTS", lease_id)
    lease = session.execute(
        select(LeaseAgreementModel)
        .where(LeaseAgreementModel.id == lease_uuid, LeaseAgreementModel.is_deleted.is_(False))
        .with_for_update()
    ).scalar_one_or_none()
    if lease is None:
        raise EntityNotFoundError("LEASE_AGREEMENTS", str(lease_id))
    return lease
