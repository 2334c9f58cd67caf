"""
Approval domain types (``registry_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the maker-checker engine: roles, regulated entity
types, requested actions, the request lifecycle state machine and the
request DTO returned by the service.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  No imports from ``db/``,
``models/`` or ``services/``.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` is the only source of legal status changes.
  PENDING moves to APPROVED or REJECTED; terminal states have no edges.
* ``approver_role`` on a request is fixed at creation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Actors
# =========================================================================


class Role(str, Enum):
    """Registry user roles supplied by the authentication collaborator."""

    CITY_ADMIN = "CITY_ADMIN"
    SUBCITY_NORMAL = "SUBCITY_NORMAL"
    SUBCITY_AUDITOR = "SUBCITY_AUDITOR"
    SUBCITY_ADMIN = "SUBCITY_ADMIN"
    REVENUE_ADMIN = "REVENUE_ADMIN"
    REVENUE_USER = "REVENUE_USER"


# =========================================================================
# Request key
# =========================================================================


class EntityType(str, Enum):
    """Regulated entity kinds that go through maker-checker."""

    LAND_PARCELS = "LAND_PARCELS"
    OWNERS = "OWNERS"
    LEASE_AGREEMENTS = "LEASE_AGREEMENTS"
    ENCUMBRANCES = "ENCUMBRANCES"
    WIZARD_SESSION = "WIZARD_SESSION"  # parcel + owners + optional lease in one request


class ActionType(str, Enum):
    """Mutations a maker can request."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRANSFER = "TRANSFER"
    SUBDIVIDE = "SUBDIVIDE"
    MERGE = "MERGE"
    TERMINATE = "TERMINATE"
    EXTEND = "EXTEND"
    ADD_OWNER = "ADD_OWNER"


NEW_ENTITY_PLACEHOLDER = "NEW"


# =========================================================================
# Lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVAL_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    status for status, targets in APPROVAL_TRANSITIONS.items() if not targets
)


class Decision(str, Enum):
    """Checker decisions."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def target_status(self) -> RequestStatus:
        return RequestStatus(self.value)


class ApprovalLogAction(str, Enum):
    """Entries written to the per-request approval log."""

    CREATED = "CREATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


# =========================================================================
# DTO
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequest:
    """Read model of a persisted change request."""

    request_id: UUID
    entity_type: EntityType
    entity_id: str
    action_type: ActionType
    request_data: dict[str, Any]
    maker_id: UUID
    maker_role: Role
    sub_city_id: str | None
    approver_role: Role
    status: RequestStatus
    comments: str | None
    created_at: datetime
    decision_comments: str | None = None
    decided_at: datetime | None = None
    decided_by: UUID | None = None
    result_entity_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
