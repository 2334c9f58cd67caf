"""
Typed change-request payloads (``registry_kernel.domain.payloads``).

Responsibility
--------------
One frozen dataclass per (entity type, action type) pair a maker may
request.  ``PAYLOAD_TYPES`` is the closed registry of variants; the action
executor keeps one apply handler per key of the same registry, so applying
a request is a total match rather than field inspection of an opaque dict.

Serialization
-------------
``request_data`` is stored as canonical JSON.  ``payload_to_dict`` writes
it, ``parse_payload`` reads it back through each variant's ``from_dict``,
which coerces ISO dates, Decimal strings and enum values and raises
``InvalidPayloadError`` on missing or malformed fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Union
from uuid import UUID

from registry_kernel.domain.approval import ActionType, EntityType
from registry_kernel.domain.land import TenureType, TransferType
from registry_kernel.exceptions import InvalidPayloadError, UnsupportedActionError
from registry_kernel.utils.hashing import to_json_document


# =========================================================================
# Field coercion
# =========================================================================


class _Reader:
    """Reads typed fields out of a raw dict for one payload key."""

    def __init__(self, data: dict[str, Any], entity_type: EntityType, action_type: ActionType):
        if not isinstance(data, dict):
            raise InvalidPayloadError(entity_type.value, action_type.value, "payload must be an object")
        self._data = data
        self._entity_type = entity_type
        self._action_type = action_type

    def fail(self, reason: str) -> InvalidPayloadError:
        return InvalidPayloadError(self._entity_type.value, self._action_type.value, reason)

    def raw(self, key: str, required: bool = False) -> Any:
        value = self._data.get(key)
        if required and (value is None or value == ""):
            raise self.fail(f"missing required field '{key}'")
        return value

    def text(self, key: str, required: bool = False, default: str | None = None) -> str | None:
        value = self.raw(key, required)
        return default if value is None else str(value)

    def decimal(self, key: str, required: bool = False, default: Decimal | None = None) -> Decimal | None:
        value = self.raw(key, required)
        if value is None:
            return default
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise self.fail(f"field '{key}' is not a number: {value!r}") from None

    def integer(self, key: str, required: bool = False) -> int | None:
        value = self.raw(key, required)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise self.fail(f"field '{key}' is not an integer: {value!r}") from None

    def timestamp(self, key: str, required: bool = False) -> datetime | None:
        value = self.raw(key, required)
        if value is None or isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            raise self.fail(f"field '{key}' is not an ISO date: {value!r}") from None

    def uuid(self, key: str, required: bool = False) -> UUID | None:
        value = self.raw(key, required)
        if value is None or isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise self.fail(f"field '{key}' is not a UUID: {value!r}") from None

    def enum(self, key: str, enum_type: type, required: bool = False):
        value = self.raw(key, required)
        if value is None:
            return None
        try:
            return enum_type(value)
        except ValueError:
            allowed = ", ".join(m.value for m in enum_type)
            raise self.fail(f"field '{key}' must be one of: {allowed}") from None

    def mapping(self, key: str) -> dict[str, Any]:
        value = self.raw(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise self.fail(f"field '{key}' must be an object")
        return dict(value)

    def items(self, key: str, required: bool = False) -> list[dict[str, Any]]:
        value = self.raw(key, required)
        if value is None:
            return []
        if not isinstance(value, list):
            raise self.fail(f"field '{key}' must be a list")
        return value


# =========================================================================
# Generic variants
# =========================================================================


@dataclass(frozen=True)
class EntityUpdatePayload:
    """Field changes for an existing entity.

    Only ``changes`` is applied.  ``current_data`` is the maker's view of
    the entity when the request was raised and never mutates anything.
    """

    changes: dict[str, Any]
    current_data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> EntityUpdatePayload:
        r = _Reader(data, entity_type, action_type)
        changes = r.mapping("changes")
        if not changes:
            raise r.fail("'changes' must contain at least one field")
        return cls(changes=changes, current_data=r.mapping("current_data"))


@dataclass(frozen=True)
class EntityDeletePayload:
    """Soft-delete request with the maker's validation snapshot."""

    reason: str | None = None
    snapshot: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> EntityDeletePayload:
        r = _Reader(data, entity_type, action_type)
        return cls(reason=r.text("reason"), snapshot=r.mapping("snapshot"))


# =========================================================================
# Parcels
# =========================================================================


@dataclass(frozen=True)
class ParcelCreatePayload:
    upin: str
    file_number: str
    total_area_m2: Decimal
    sub_city_id: str | None = None
    tabia: str = ""
    ketena: str = ""
    block: str = ""
    land_use: str | None = None
    land_grade: Decimal | None = None
    tenure_type: TenureType | None = None
    boundary_north: str | None = None
    boundary_south: str | None = None
    boundary_east: str | None = None
    boundary_west: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> ParcelCreatePayload:
        r = _Reader(data, entity_type, action_type)
        return cls(
            upin=r.text("upin", required=True),
            file_number=r.text("file_number", required=True),
            total_area_m2=r.decimal("total_area_m2", required=True),
            sub_city_id=r.text("sub_city_id"),
            tabia=r.text("tabia", default=""),
            ketena=r.text("ketena", default=""),
            block=r.text("block", default=""),
            land_use=r.text("land_use"),
            land_grade=r.decimal("land_grade"),
            tenure_type=r.enum("tenure_type", TenureType),
            boundary_north=r.text("boundary_north"),
            boundary_south=r.text("boundary_south"),
            boundary_east=r.text("boundary_east"),
            boundary_west=r.text("boundary_west"),
        )


@dataclass(frozen=True)
class OwnershipTransferPayload:
    to_owner_id: UUID
    transfer_type: TransferType
    from_owner_id: UUID | None = None
    transfer_price: Decimal | None = None
    reference_no: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> OwnershipTransferPayload:
        r = _Reader(data, entity_type, action_type)
        return cls(
            to_owner_id=r.uuid("to_owner_id", required=True),
            transfer_type=r.enum("transfer_type", TransferType, required=True),
            from_owner_id=r.uuid("from_owner_id"),
            transfer_price=r.decimal("transfer_price"),
            reference_no=r.text("reference_no"),
        )


@dataclass(frozen=True)
class AddOwnerPayload:
    owner_id: UUID
    acquired_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> AddOwnerPayload:
        r = _Reader(data, entity_type, action_type)
        return cls(owner_id=r.uuid("owner_id", required=True), acquired_at=r.timestamp("acquired_at"))


@dataclass(frozen=True)
class SubdivisionChild:
    upin: str
    file_number: str
    total_area_m2: Decimal
    land_use: str | None = None
    tabia: str | None = None
    ketena: str | None = None
    block: str | None = None
    boundary_north: str | None = None
    boundary_south: str | None = None
    boundary_east: str | None = None
    boundary_west: str | None = None


@dataclass(frozen=True)
class SubdividePayload:
    children: tuple[SubdivisionChild, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> SubdividePayload:
        r = _Reader(data, entity_type, action_type)
        children = []
        for raw_child in r.items("children", required=True):
            c = _Reader(raw_child, entity_type, action_type)
            children.append(SubdivisionChild(
                upin=c.text("upin", required=True),
                file_number=c.text("file_number", required=True),
                total_area_m2=c.decimal("total_area_m2", required=True),
                land_use=c.text("land_use"),
                tabia=c.text("tabia"),
                ketena=c.text("ketena"),
                block=c.text("block"),
                boundary_north=c.text("boundary_north"),
                boundary_south=c.text("boundary_south"),
                boundary_east=c.text("boundary_east"),
                boundary_west=c.text("boundary_west"),
            ))
        return cls(children=tuple(children))


# =========================================================================
# Owners
# =========================================================================


@dataclass(frozen=True)
class OwnerCreatePayload:
    full_name: str
    national_id: str
    phone_number: str | None = None
    tin_number: str | None = None
    sub_city_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> OwnerCreatePayload:
        r = _Reader(data, entity_type, action_type)
        return cls(
            full_name=r.text("full_name", required=True),
            national_id=r.text("national_id", required=True),
            phone_number=r.text("phone_number"),
            tin_number=r.text("tin_number"),
            sub_city_id=r.text("sub_city_id"),
        )


# =========================================================================
# Leases
# =========================================================================


@dataclass(frozen=True)
class LeaseCreatePayload:
    upin: str
    total_lease_amount: Decimal
    down_payment_amount: Decimal
    lease_period_years: int
    payment_term_years: int
    start_date: datetime
    contract_date: datetime | None = None
    other_payment: Decimal = Decimal("0")
    price_per_m2: Decimal | None = None
    legal_framework: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> LeaseCreatePayload:
        r = _Reader(data, entity_type, action_type)
        return cls(
            upin=r.text("upin", required=True),
            total_lease_amount=r.decimal("total_lease_amount", required=True),
            down_payment_amount=r.decimal("down_payment_amount", default=Decimal("0")),
            lease_period_years=r.integer("lease_period_years", required=True),
            payment_term_years=r.integer("payment_term_years", required=True),
            start_date=r.timestamp("start_date", required=True),
            contract_date=r.timestamp("contract_date"),
            other_payment=r.decimal("other_payment", default=Decimal("0")),
            price_per_m2=r.decimal("price_per_m2"),
            legal_framework=r.text("legal_framework", default=""),
        )


# =========================================================================
# Encumbrances
# =========================================================================


@dataclass(frozen=True)
class EncumbranceCreatePayload:
    upin: str
    type: str
    issuing_entity: str
    reference_number: str
    description: str | None = None
    registration_date: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> EncumbranceCreatePayload:
        r = _Reader(data, entity_type, action_type)
        return cls(
            upin=r.text("upin", required=True),
            type=r.text("type", required=True),
            issuing_entity=r.text("issuing_entity", required=True),
            reference_number=r.text("reference_number", required=True),
            description=r.text("description"),
            registration_date=r.timestamp("registration_date"),
        )


# =========================================================================
# Registration wizard
# =========================================================================


@dataclass(frozen=True)
class WizardOwnerEntry:
    owner: OwnerCreatePayload
    acquired_at: datetime | None = None


@dataclass(frozen=True)
class WizardSubmissionPayload:
    """A parcel, its owners and an optional lease registered in one request."""

    parcel: ParcelCreatePayload
    owners: tuple[WizardOwnerEntry, ...]
    lease: LeaseCreatePayload | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_type: EntityType, action_type: ActionType) -> WizardSubmissionPayload:
        r = _Reader(data, entity_type, action_type)
        parcel_raw = r.mapping("parcel")
        if not parcel_raw:
            raise r.fail("missing required field 'parcel'")
        parcel = ParcelCreatePayload.from_dict(parcel_raw, entity_type, action_type)
        owners = []
        for raw_owner in r.items("owners", required=True):
            o = _Reader(raw_owner, entity_type, action_type)
            owners.append(WizardOwnerEntry(
                owner=OwnerCreatePayload.from_dict(o.mapping("owner"), entity_type, action_type),
                acquired_at=o.timestamp("acquired_at"),
            ))
        lease_raw = r.mapping("lease")
        lease = (
            LeaseCreatePayload.from_dict({**lease_raw, "upin": parcel.upin}, entity_type, action_type)
            if lease_raw else None
        )
        return cls(parcel=parcel, owners=tuple(owners), lease=lease)


# =========================================================================
# Registry of variants
# =========================================================================

RequestPayload = Union[
    EntityUpdatePayload,
    EntityDeletePayload,
    ParcelCreatePayload,
    OwnershipTransferPayload,
    AddOwnerPayload,
    SubdividePayload,
    OwnerCreatePayload,
    LeaseCreatePayload,
    EncumbranceCreatePayload,
    WizardSubmissionPayload,
]

PayloadKey = tuple[EntityType, ActionType]

PAYLOAD_TYPES: dict[PayloadKey, type] = {
    (EntityType.LAND_PARCELS, ActionType.CREATE): ParcelCreatePayload,
    (EntityType.LAND_PARCELS, ActionType.UPDATE): EntityUpdatePayload,
    (EntityType.LAND_PARCELS, ActionType.DELETE): EntityDeletePayload,
    (EntityType.LAND_PARCELS, ActionType.TRANSFER): OwnershipTransferPayload,
    (EntityType.LAND_PARCELS, ActionType.ADD_OWNER): AddOwnerPayload,
    (EntityType.LAND_PARCELS, ActionType.SUBDIVIDE): SubdividePayload,
    (EntityType.OWNERS, ActionType.CREATE): OwnerCreatePayload,
    (EntityType.OWNERS, ActionType.UPDATE): EntityUpdatePayload,
    (EntityType.OWNERS, ActionType.DELETE): EntityDeletePayload,
    (EntityType.LEASE_AGREEMENTS, ActionType.CREATE): LeaseCreatePayload,
    (EntityType.LEASE_AGREEMENTS, ActionType.UPDATE): EntityUpdatePayload,
    (EntityType.LEASE_AGREEMENTS, ActionType.DELETE): EntityDeletePayload,
    (EntityType.ENCUMBRANCES, ActionType.CREATE): EncumbranceCreatePayload,
    (EntityType.ENCUMBRANCES, ActionType.UPDATE): EntityUpdatePayload,
    (EntityType.ENCUMBRANCES, ActionType.DELETE): EntityDeletePayload,
    (EntityType.WIZARD_SESSION, ActionType.CREATE): WizardSubmissionPayload,
}


def payload_type_for(entity_type: EntityType | str, action_type: ActionType | str) -> type:
    """Return the payload class registered for the pair.

    Raises:
        UnsupportedActionError: If the pair has no registered variant.
    """
    try:
        key = (EntityType(entity_type), ActionType(action_type))
    except ValueError:
        raise UnsupportedActionError(str(entity_type), str(action_type)) from None
    payload_type = PAYLOAD_TYPES.get(key)
    if payload_type is None:
        raise UnsupportedActionError(key[0].value, key[1].value)
    return payload_type


def check_payload(
    entity_type: EntityType, action_type: ActionType, payload: RequestPayload,
) -> None:
    """Raise unless ``payload`` is the variant registered for the pair."""
    expected = payload_type_for(entity_type, action_type)
    if not isinstance(payload, expected):
        raise InvalidPayloadError(
            entity_type.value,
            action_type.value,
            f"expected {expected.__name__}, got {type(payload).__name__}",
        )


def parse_payload(
    entity_type: EntityType | str, action_type: ActionType | str, data: dict[str, Any],
) -> RequestPayload:
    """Build the typed variant for the pair from raw JSON data."""
    payload_type = payload_type_for(entity_type, action_type)
    return payload_type.from_dict(data, EntityType(entity_type), ActionType(action_type))


def payload_to_dict(payload: RequestPayload) -> dict[str, Any]:
    """Canonical JSON document stored in ``approval_requests.request_data``."""
    return to_json_document(asdict(payload))
