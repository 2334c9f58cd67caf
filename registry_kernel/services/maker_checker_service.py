"""
MakerCheckerService -- two-person approval of registry mutations.

Responsibility:
    Queues a maker's typed change request for the approver role the routing
    policy assigns, and records a checker's decision.  An approval applies
    the request through the ActionExecutor in the same SAVEPOINT as the
    status change.

Architecture position:
    Kernel > Services.  Callers own the outer transaction (session_scope);
    this service flushes and uses SAVEPOINTs but never commits.

Invariants enforced:
    - At most one PENDING request per (entity_type, entity_id, action_type).
      Checked by query, backed by a partial unique index under races.
    - approver_role is derived once at creation and never changes.
    - A request leaves PENDING exactly once.  The transition is a
      compare-and-swap UPDATE guarded by ``status = 'PENDING'``; the loser
      of a concurrent decision gets AlreadyDecidedError.
    - A failing apply step rolls back its SAVEPOINT: the request stays
      PENDING and no entity is partially mutated.
    - Every transition writes an approval_logs row.  Decisions also write
      an audit entry inside the decision SAVEPOINT.

Failure modes:
    - UnsupportedActionError, InvalidPayloadError, UnroutableRoleError,
      DuplicatePendingRequestError from create_request.
    - RequestNotFoundError, AlreadyDecidedError, ForbiddenApproverError,
      ApplyStepFailedError from decide.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from registry_kernel.domain.approval import (
    ActionType,
    ApprovalLogAction,
    ApprovalRequest,
    Decision,
    EntityType,
    NEW_ENTITY_PLACEHOLDER,
    RequestStatus,
    Role,
)
from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.domain.payloads import (
    RequestPayload,
    check_payload,
    parse_payload,
    payload_to_dict,
)
from registry_kernel.domain.routing import RoutingPolicy
from registry_kernel.exceptions import (
    AlreadyDecidedError,
    ApplyStepFailedError,
    DuplicatePendingRequestError,
    ForbiddenApproverError,
    RequestNotFoundError,
    UnsupportedActionError,
)
from registry_kernel.logging_config import LogContext, get_logger
from registry_kernel.models.approval import ApprovalLogModel, ApprovalRequestModel
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.services.action_executor import ActionExecutor
from registry_kernel.services.actions.common import ApplyOutcome
from registry_kernel.services.audit_service import AuditService

logger = get_logger("services.maker_checker")

AUDIT_ENTITY = "APPROVAL_REQUESTS"


class MakerCheckerService:
    """Creates change requests and records checker decisions."""

    def __init__(
        self,
        session: Session,
        audit: AuditService,
        routing: RoutingPolicy | None = None,
        executor: ActionExecutor | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._audit = audit
        self._routing = routing or RoutingPolicy()
        self._clock = clock or SystemClock()
        self._executor = executor or ActionExecutor(session, audit, self._clock)

    # -------------------------------------------------------------------------
    # Maker side
    # -------------------------------------------------------------------------

    def create_request(
        self,
        entity_type: EntityType | str,
        entity_id: str | None,
        action_type: ActionType | str,
        payload: RequestPayload,
        maker_id: UUID,
        maker_role: Role | str,
        sub_city_id: str | None = None,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """Queue a change request for its checker.

        The caller validates the domain content of ``payload`` beforehand
        and writes the APPROVAL_REQUESTED audit entry afterwards.
        An ``entity_id`` of None (a CREATE with no natural key) is stored
        as "NEW".
        """
        try:
            entity_type = EntityType(entity_type)
            action_type = ActionType(action_type)
        except ValueError:
            raise UnsupportedActionError(str(entity_type), str(action_type)) from None
        check_payload(entity_type, action_type, payload)
        approver_role = self._routing.approver_for(maker_role)
        maker_role = Role(maker_role)
        entity_id = str(entity_id) if entity_id else NEW_ENTITY_PLACEHOLDER

        existing = self._find_pending(entity_type, entity_id, action_type)
        if existing is not None:
            raise DuplicatePendingRequestError(
                entity_type.value, entity_id, action_type.value,
                existing_request_id=str(existing.id),
            )

        now = self._clock.now()
        row = ApprovalRequestModel(
            entity_type=entity_type.value,
            entity_id=entity_id,
            action_type=action_type.value,
            request_data=payload_to_dict(payload),
            maker_id=maker_id,
            maker_role=maker_role.value,
            sub_city_id=sub_city_id,
            approver_role=approver_role.value,
            status=RequestStatus.PENDING.value,
            comments=comments,
            created_at=now,
        )
        try:
            with self._session.begin_nested():
                self._session.add(row)
                self._session.flush()
        except IntegrityError:
            # Another maker inserted the same PENDING tuple after our check
            logger.warning(
                "concurrent_pending_request_conflict",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                    "action_type": action_type.value,
                },
            )
            blocking = self._find_pending(entity_type, entity_id, action_type)
            raise DuplicatePendingRequestError(
                entity_type.value, entity_id, action_type.value,
                existing_request_id=str(blocking.id) if blocking is not None else None,
            ) from None

        self._write_log(
            row.id, ApprovalLogAction.CREATED, maker_id, maker_role.value,
            None, RequestStatus.PENDING, comments, now,
        )
        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(row.id),
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "action_type": action_type.value,
                "maker_role": maker_role.value,
                "approver_role": approver_role.value,
            },
        )
        return row.to_dto()

    # -------------------------------------------------------------------------
    # Checker side
    # -------------------------------------------------------------------------

    def decide(
        self,
        request_id: UUID,
        decision: Decision | str,
        checker_id: UUID,
        checker_role: Role | str,
        decision_comments: str | None = None,
        checker_sub_city_id: str | None = None,
    ) -> ApprovalRequest:
        """Approve or reject a PENDING request.

        On approval the apply step runs in the same SAVEPOINT as the status
        change.  If it raises, the SAVEPOINT is rolled back and the request
        is still PENDING.

        Raises:
            RequestNotFoundError: Unknown request id.
            AlreadyDecidedError: Not PENDING, or lost the compare-and-swap.
            ForbiddenApproverError: Checker role or sub-city may not decide.
            ApplyStepFailedError: The apply step raised (wraps the cause).
        """
        decision = Decision(decision)
        row = self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if row is None:
            raise RequestNotFoundError(str(request_id))
        if row.status != RequestStatus.PENDING.value:
            raise AlreadyDecidedError(str(request_id), row.status)
        self._check_checker(row, checker_role, checker_sub_city_id)

        checker_role = Role(checker_role)
        target = decision.target_status
        now = self._clock.now()

        with LogContext.bind(request_id=str(request_id), actor_id=str(checker_id)):
            with self._session.begin_nested():
                result = self._session.execute(
                    update(ApprovalRequestModel)
                    .where(
                        ApprovalRequestModel.id == row.id,
                        ApprovalRequestModel.status == RequestStatus.PENDING.value,
                    )
                    .values(
                        status=target.value,
                        decided_at=now,
                        decided_by=checker_id,
                        decision_comments=decision_comments,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    current = self._session.execute(
                        select(ApprovalRequestModel.status).where(ApprovalRequestModel.id == row.id)
                    ).scalar_one()
                    logger.warning(
                        "approval_decision_lost_race",
                        extra={"request_id": str(row.id), "current_status": current},
                    )
                    raise AlreadyDecidedError(str(row.id), current)

                outcome = None
                if decision == Decision.APPROVED:
                    outcome = self._apply(row, checker_id, now)
                    self._session.execute(
                        update(ApprovalRequestModel)
                        .where(ApprovalRequestModel.id == row.id)
                        .values(result_entity_id=outcome.entity_id)
                        .execution_options(synchronize_session=False)
                    )

                self._write_log(
                    row.id,
                    ApprovalLogAction(decision.value),
                    checker_id,
                    checker_role.value,
                    RequestStatus.PENDING,
                    target,
                    decision_comments,
                    now,
                )
                self._audit.log(
                    AuditAction.APPROVAL_GRANTED if decision == Decision.APPROVED
                    else AuditAction.APPROVAL_REJECTED,
                    AUDIT_ENTITY,
                    row.id,
                    self._decision_context(row, target, checker_id, checker_role, decision_comments, outcome),
                    user_id=checker_id,
                )

        self._session.refresh(row)
        logger.info(
            "approval_request_decided",
            extra={
                "request_id": str(row.id),
                "decision": decision.value,
                "checker_role": checker_role.value,
                "result_entity_id": row.result_entity_id,
            },
        )
        return row.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        row = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id, ApprovalRequestModel.is_deleted.is_(False))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise RequestNotFoundError(str(request_id))
        return row.to_dto()

    def list_pending(
        self, checker_role: Role | str, sub_city_id: str | None = None,
    ) -> list[ApprovalRequest]:
        """PENDING requests the checker may decide, oldest first.

        A superior role sees every queue.  A sub-city scoped role sees only
        its own sub-city when ``sub_city_id`` is given.
        """
        checker_role = Role(checker_role)
        query = select(ApprovalRequestModel).where(
            ApprovalRequestModel.status == RequestStatus.PENDING.value,
            ApprovalRequestModel.is_deleted.is_(False),
        )
        if checker_role not in self._routing.superior_roles:
            query = query.where(ApprovalRequestModel.approver_role == checker_role.value)
            if self._routing.is_sub_city_scoped(checker_role) and sub_city_id is not None:
                query = query.where(ApprovalRequestModel.sub_city_id == sub_city_id)
        rows = self._session.execute(
            query.order_by(ApprovalRequestModel.created_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def list_by_maker(
        self, maker_id: UUID, status: RequestStatus | str | None = None,
    ) -> list[ApprovalRequest]:
        query = select(ApprovalRequestModel).where(
            ApprovalRequestModel.maker_id == maker_id,
            ApprovalRequestModel.is_deleted.is_(False),
        )
        if status is not None:
            query = query.where(ApprovalRequestModel.status == RequestStatus(status).value)
        rows = self._session.execute(
            query.order_by(ApprovalRequestModel.created_at.desc())
        ).scalars()
        return [row.to_dto() for row in rows]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _find_pending(
        self, entity_type: EntityType, entity_id: str, action_type: ActionType,
    ) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.entity_type == entity_type.value,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.action_type == action_type.value,
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
            )
        ).scalars().first()

    def _check_checker(
        self,
        row: ApprovalRequestModel,
        checker_role: Role | str,
        checker_sub_city_id: str | None,
    ) -> None:
        if not self._routing.can_decide(checker_role, row.approver_role):
            raise ForbiddenApproverError(str(row.id), str(checker_role), row.approver_role)
        if (
            self._routing.is_sub_city_scoped(checker_role)
            and checker_sub_city_id is not None
            and row.sub_city_id is not None
            and checker_sub_city_id != row.sub_city_id
        ):
            raise ForbiddenApproverError(
                str(row.id), str(Role(checker_role).value), row.approver_role,
                reason=f"request belongs to sub-city {row.sub_city_id}",
            )

    def _apply(self, row: ApprovalRequestModel, checker_id: UUID, now) -> ApplyOutcome:
        try:
            payload = parse_payload(row.entity_type, row.action_type, row.request_data)
            return self._executor.apply(
                request_id=row.id,
                entity_type=EntityType(row.entity_type),
                action_type=ActionType(row.action_type),
                entity_id=row.entity_id,
                payload=payload,
                actor_id=checker_id,
                sub_city_id=row.sub_city_id,
                now=now,
            )
        except Exception as exc:
            logger.warning(
                "apply_step_failed",
                extra={
                    "request_id": str(row.id),
                    "entity_type": row.entity_type,
                    "action_type": row.action_type,
                    "cause": getattr(exc, "code", type(exc).__name__),
                },
            )
            raise ApplyStepFailedError(str(row.id), exc) from exc

    def _write_log(
        self,
        request_id: UUID,
        action: ApprovalLogAction,
        performed_by: UUID,
        performed_by_role: str,
        previous_status: RequestStatus | None,
        new_status: RequestStatus,
        comments: str | None,
        performed_at,
    ) -> None:
        self._session.add(ApprovalLogModel(
            request_id=request_id,
            action=action.value,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            previous_status=previous_status.value if previous_status is not None else None,
            new_status=new_status.value,
            comments=comments,
            performed_at=performed_at,
        ))
        self._session.flush()

    @staticmethod
    def _decision_context(
        row: ApprovalRequestModel,
        target: RequestStatus,
        checker_id: UUID,
        checker_role: Role,
        decision_comments: str | None,
        outcome: ApplyOutcome | None,
    ) -> dict[str, Any]:
        return {
            "entity_type": row.entity_type,
            "entity_id": row.entity_id,
            "action_type": row.action_type,
            "request_data": row.request_data,
            "maker_id": row.maker_id,
            "maker_role": row.maker_role,
            "approver_role": row.approver_role,
            "before": {"status": RequestStatus.PENDING.value},
            "after": {
                "status": target.value,
                "decided_by": checker_id,
                "decided_by_role": checker_role.value,
                "decision_comments": decision_comments,
                "result_entity_id": outcome.entity_id if outcome is not None else None,
            },
            "apply_summary": outcome.summary if outcome is not None else None,
        }
