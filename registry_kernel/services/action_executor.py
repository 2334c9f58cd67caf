"""
ActionExecutor -- applies an approved change request to the entity stores.

Responsibility:
    Dispatches a typed payload to the apply handler registered for its
    (entity type, action type) key.  ``APPLY_HANDLERS`` must cover exactly
    the keys of ``PAYLOAD_TYPES``; the module refuses to import otherwise,
    so a new payload variant cannot ship without its apply step.

Architecture position:
    Kernel > Services.  Called only by MakerCheckerService.decide, inside
    the decision SAVEPOINT.  Never commits.

Failure modes:
    - UnsupportedActionError for a key with no handler.
    - InvalidPayloadError when the payload is not the registered variant.
    - ActionError subclasses (not found, conflict, rejected) from handlers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from registry_kernel.domain.approval import ActionType, EntityType
from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.domain.payloads import (
    PAYLOAD_TYPES,
    PayloadKey,
    RequestPayload,
    check_payload,
)
from registry_kernel.exceptions import UnsupportedActionError
from registry_kernel.logging_config import get_logger
from registry_kernel.services.actions import encumbrances, leases, owners, parcels, wizard
from registry_kernel.services.actions.common import ApplyContext, ApplyOutcome
from registry_kernel.services.audit_service import AuditService
from registry_kernel.services.lease_billing import LeaseBillingService

logger = get_logger("services.action_executor")

ApplyHandler = Callable[[ApplyContext, Any], ApplyOutcome]

APPLY_HANDLERS: dict[PayloadKey, ApplyHandler] = {
    (EntityType.LAND_PARCELS, ActionType.CREATE): parcels.create_parcel,
    (EntityType.LAND_PARCELS, ActionType.UPDATE): parcels.update_parcel,
    (EntityType.LAND_PARCELS, ActionType.DELETE): parcels.delete_parcel,
    (EntityType.LAND_PARCELS, ActionType.TRANSFER): parcels.transfer_ownership,
    (EntityType.LAND_PARCELS, ActionType.ADD_OWNER): parcels.add_owner,
    (EntityType.LAND_PARCELS, ActionType.SUBDIVIDE): parcels.subdivide_parcel,
    (EntityType.OWNERS, ActionType.CREATE): owners.create_owner,
    (EntityType.OWNERS, ActionType.UPDATE): owners.update_owner,
    (EntityType.OWNERS, ActionType.DELETE): owners.delete_owner,
    (EntityType.LEASE_AGREEMENTS, ActionType.CREATE): leases.create_lease,
    (EntityType.LEASE_AGREEMENTS, ActionType.UPDATE): leases.update_lease,
    (EntityType.LEASE_AGREEMENTS, ActionType.DELETE): leases.delete_lease,
    (EntityType.ENCUMBRANCES, ActionType.CREATE): encumbrances.create_encumbrance,
    (EntityType.ENCUMBRANCES, ActionType.UPDATE): encumbrances.update_encumbrance,
    (EntityType.ENCUMBRANCES, ActionType.DELETE): encumbrances.delete_encumbrance,
    (EntityType.WIZARD_SESSION, ActionType.CREATE): wizard.submit_wizard,
}

if set(APPLY_HANDLERS) != set(PAYLOAD_TYPES):
    _missing = sorted(f"{e.value}/{a.value}" for e, a in set(PAYLOAD_TYPES) - set(APPLY_HANDLERS))
    _extra = sorted(f"{e.value}/{a.value}" for e, a in set(APPLY_HANDLERS) - set(PAYLOAD_TYPES))
    raise ImportError(
        f"Apply handlers out of sync with payload types: missing={_missing} extra={_extra}"
    )


class ActionExecutor:
    """Runs the apply step of an approved request."""

    def __init__(
        self,
        session: Session,
        audit: AuditService,
        clock: Clock | None = None,
        billing: LeaseBillingService | None = None,
    ):
        self._session = session
        self._audit = audit
        self._clock = clock or SystemClock()
        self._billing = billing or LeaseBillingService(session, self._clock)

    def apply(
        self,
        request_id: UUID,
        entity_type: EntityType,
        action_type: ActionType,
        entity_id: str,
        payload: RequestPayload,
        actor_id: UUID,
        sub_city_id: str | None = None,
        now: datetime | None = None,
    ) -> ApplyOutcome:
        """Apply ``payload`` and return the entity it produced or changed."""
        handler = APPLY_HANDLERS.get((entity_type, action_type))
        if handler is None:
            raise UnsupportedActionError(entity_type.value, action_type.value)
        check_payload(entity_type, action_type, payload)

        ctx = ApplyContext(
            session=self._session,
            audit=self._audit,
            billing=self._billing,
            request_id=request_id,
            entity_id=entity_id,
            actor_id=actor_id,
            sub_city_id=sub_city_id,
            now=now or self._clock.now(),
        )
        outcome = handler(ctx, payload)
        logger.info(
            "apply_step_completed",
            extra={
                "request_id": str(request_id),
                "entity_type": entity_type.value,
                "action_type": action_type.value,
                "result_entity_id": outcome.entity_id,
            },
        )
        return outcome
