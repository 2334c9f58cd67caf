"""
Tests for MakerCheckerService: request creation, routing, decisions and queues.

Uses in-memory SQLite with a DeterministicClock.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from registry_kernel.domain.approval import (
    ActionType,
    ApprovalLogAction,
    Decision,
    EntityType,
    RequestStatus,
    Role,
)
from registry_kernel.domain.payloads import (
    EntityUpdatePayload,
    OwnerCreatePayload,
    ParcelCreatePayload,
)
from registry_kernel.exceptions import (
    AlreadyDecidedError,
    ApplyStepFailedError,
    DuplicatePendingRequestError,
    ForbiddenApproverError,
    InvalidPayloadError,
    RequestNotFoundError,
    UnroutableRoleError,
    UnsupportedActionError,
)
from registry_kernel.models import (
    ApprovalLogModel,
    AuditAction,
    AuditLogModel,
    LandParcelModel,
    OwnerModel,
)


def _owner_payload(national_id: str = "NID-1001") -> OwnerCreatePayload:
    return OwnerCreatePayload(
        full_name="Hirut Tesfaye",
        national_id=national_id,
        phone_number="+251911223344",
    )


def _request_owner(service, maker_id, national_id="NID-1001", maker_role=Role.SUBCITY_NORMAL, sub_city_id="SC-01"):
    return service.create_request(
        entity_type=EntityType.OWNERS,
        entity_id=national_id,
        action_type=ActionType.CREATE,
        payload=_owner_payload(national_id),
        maker_id=maker_id,
        maker_role=maker_role,
        sub_city_id=sub_city_id,
        comments="new owner",
    )


def _owner_count(session) -> int:
    return session.execute(select(func.count()).select_from(OwnerModel)).scalar_one()


# =============================================================================
# create_request
# =============================================================================


class TestCreateRequest:
    """Queueing a maker's change request."""

    def test_subcity_maker_routes_to_subcity_admin(self, maker_checker, test_actor_id):
        request = _request_owner(maker_checker, test_actor_id)

        assert request.status == RequestStatus.PENDING
        assert request.approver_role == Role.SUBCITY_ADMIN
        assert request.maker_role == Role.SUBCITY_NORMAL
        assert request.entity_id == "NID-1001"
        assert request.request_data["national_id"] == "NID-1001"

    def test_revenue_maker_routes_to_revenue_admin(self, maker_checker, test_actor_id):
        request = _request_owner(maker_checker, test_actor_id, maker_role=Role.REVENUE_USER)
        assert request.approver_role == Role.REVENUE_ADMIN

    def test_auditor_maker_routes_to_subcity_admin(self, maker_checker, test_actor_id):
        request = _request_owner(maker_checker, test_actor_id, maker_role=Role.SUBCITY_AUDITOR)
        assert request.approver_role == Role.SUBCITY_ADMIN

    def test_admin_role_cannot_be_a_maker(self, maker_checker, test_actor_id):
        with pytest.raises(UnroutableRoleError) as exc_info:
            _request_owner(maker_checker, test_actor_id, maker_role=Role.CITY_ADMIN)
        assert exc_info.value.maker_role == "CITY_ADMIN"

    def test_duplicate_pending_request_rejected(self, maker_checker, test_actor_id):
        first = _request_owner(maker_checker, test_actor_id)

        with pytest.raises(DuplicatePendingRequestError) as exc_info:
            _request_owner(maker_checker, uuid4())

        assert exc_info.value.existing_request_id == str(first.request_id)
        assert exc_info.value.code == "DUPLICATE_PENDING_REQUEST"

    def test_missing_entity_id_stored_as_new(self, maker_checker, test_actor_id):
        request = maker_checker.create_request(
            EntityType.OWNERS, None, ActionType.CREATE, _owner_payload("NID-2002"),
            test_actor_id, Role.SUBCITY_NORMAL,
        )

        assert request.entity_id == "NEW"
        with pytest.raises(DuplicatePendingRequestError):
            maker_checker.create_request(
                EntityType.OWNERS, "", ActionType.CREATE, _owner_payload("NID-2003"),
                test_actor_id, Role.SUBCITY_NORMAL,
            )

    def test_same_entity_different_action_allowed(self, maker_checker, test_actor_id):
        _request_owner(maker_checker, test_actor_id)
        update = maker_checker.create_request(
            EntityType.OWNERS, "NID-1001", ActionType.UPDATE,
            EntityUpdatePayload(changes={"phone_number": "+251900000000"}),
            test_actor_id, Role.SUBCITY_NORMAL,
        )
        assert update.status == RequestStatus.PENDING

    def test_new_request_allowed_after_rejection(self, maker_checker, test_actor_id, checker_id):
        first = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(first.request_id, Decision.REJECTED, checker_id, Role.SUBCITY_ADMIN)

        second = _request_owner(maker_checker, test_actor_id)

        assert second.request_id != first.request_id
        assert second.status == RequestStatus.PENDING

    def test_new_request_allowed_after_approval(self, maker_checker, create_owner, test_actor_id, checker_id):
        owner = create_owner()
        first = maker_checker.create_request(
            EntityType.OWNERS, str(owner.id), ActionType.UPDATE,
            EntityUpdatePayload(changes={"phone_number": "+251900000001"}),
            test_actor_id, Role.SUBCITY_NORMAL,
        )
        decided = maker_checker.decide(first.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)
        assert decided.status == RequestStatus.APPROVED

        again = maker_checker.create_request(
            EntityType.OWNERS, str(owner.id), ActionType.UPDATE,
            EntityUpdatePayload(changes={"phone_number": "+251900000002"}),
            test_actor_id, Role.SUBCITY_NORMAL,
        )
        assert again.status == RequestStatus.PENDING

    def test_unsupported_action_rejected(self, maker_checker, test_actor_id):
        with pytest.raises(UnsupportedActionError):
            maker_checker.create_request(
                EntityType.LAND_PARCELS, "UP-1", ActionType.MERGE,
                EntityUpdatePayload(changes={"x": 1}),
                test_actor_id, Role.SUBCITY_NORMAL,
            )

    def test_unknown_entity_type_rejected(self, maker_checker, test_actor_id):
        with pytest.raises(UnsupportedActionError):
            maker_checker.create_request(
                "BANKS", "B-1", ActionType.CREATE,
                _owner_payload(), test_actor_id, Role.SUBCITY_NORMAL,
            )

    def test_payload_variant_must_match_key(self, maker_checker, test_actor_id):
        with pytest.raises(InvalidPayloadError):
            maker_checker.create_request(
                EntityType.LAND_PARCELS, "UP-1", ActionType.CREATE,
                _owner_payload(), test_actor_id, Role.SUBCITY_NORMAL,
            )

    def test_created_log_row_written(self, maker_checker, db_session, test_actor_id):
        request = _request_owner(maker_checker, test_actor_id)

        logs = db_session.execute(
            select(ApprovalLogModel).where(ApprovalLogModel.request_id == request.request_id)
        ).scalars().all()
        assert len(logs) == 1
        assert logs[0].action == ApprovalLogAction.CREATED.value
        assert logs[0].previous_status is None
        assert logs[0].new_status == RequestStatus.PENDING.value
        assert logs[0].performed_by == test_actor_id

    def test_creation_is_logged(self, maker_checker, test_actor_id, captured_logs):
        _request_owner(maker_checker, test_actor_id)

        created = [r for r in captured_logs() if r["message"] == "approval_request_created"]
        assert len(created) == 1
        assert created[0]["approver_role"] == "SUBCITY_ADMIN"

    def test_nothing_applied_before_decision(self, maker_checker, db_session, test_actor_id):
        _request_owner(maker_checker, test_actor_id)
        assert _owner_count(db_session) == 0


# =============================================================================
# decide
# =============================================================================


class TestDecide:
    """Checker decisions and the apply step."""

    def test_approve_applies_mutation_once(self, maker_checker, db_session, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)

        decided = maker_checker.decide(
            request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN,
            decision_comments="documents verified", checker_sub_city_id="SC-01",
        )

        assert decided.status == RequestStatus.APPROVED
        assert decided.decided_by == checker_id
        assert decided.decision_comments == "documents verified"
        owner = db_session.execute(
            select(OwnerModel).where(OwnerModel.national_id == "NID-1001")
        ).scalar_one()
        assert decided.result_entity_id == str(owner.id)
        assert owner.created_by_id == checker_id
        assert owner.sub_city_id == "SC-01"

    def test_reject_never_mutates(self, maker_checker, db_session, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)

        decided = maker_checker.decide(request.request_id, Decision.REJECTED, checker_id, Role.SUBCITY_ADMIN)

        assert decided.status == RequestStatus.REJECTED
        assert decided.result_entity_id is None
        assert _owner_count(db_session) == 0

    def test_second_decision_is_already_decided(self, maker_checker, db_session, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        with pytest.raises(AlreadyDecidedError) as exc_info:
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        assert exc_info.value.status == "APPROVED"
        assert _owner_count(db_session) == 1

    def test_unknown_request(self, maker_checker, checker_id):
        with pytest.raises(RequestNotFoundError):
            maker_checker.decide(uuid4(), Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

    def test_wrong_approver_role_forbidden(self, maker_checker, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)

        with pytest.raises(ForbiddenApproverError) as exc_info:
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.REVENUE_ADMIN)

        assert exc_info.value.approver_role == "SUBCITY_ADMIN"
        assert maker_checker.get_request(request.request_id).status == RequestStatus.PENDING

    def test_maker_role_cannot_decide(self, maker_checker, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)
        with pytest.raises(ForbiddenApproverError):
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_NORMAL)

    def test_city_admin_may_decide_any_queue(self, maker_checker, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id, maker_role=Role.REVENUE_USER)

        decided = maker_checker.decide(request.request_id, Decision.REJECTED, checker_id, Role.CITY_ADMIN)

        assert decided.status == RequestStatus.REJECTED

    def test_subcity_admin_limited_to_own_sub_city(self, maker_checker, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id, sub_city_id="SC-01")

        with pytest.raises(ForbiddenApproverError) as exc_info:
            maker_checker.decide(
                request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN,
                checker_sub_city_id="SC-02",
            )
        assert "SC-01" in exc_info.value.reason

    def test_apply_failure_leaves_request_pending(self, maker_checker, db_session, test_actor_id, checker_id):
        request = maker_checker.create_request(
            EntityType.LAND_PARCELS, "UP-MISSING", ActionType.UPDATE,
            EntityUpdatePayload(changes={"land_use": "COMMERCIAL"}),
            test_actor_id, Role.SUBCITY_NORMAL,
        )

        with pytest.raises(ApplyStepFailedError) as exc_info:
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        assert exc_info.value.cause_code == "ENTITY_NOT_FOUND"
        reloaded = maker_checker.get_request(request.request_id)
        assert reloaded.status == RequestStatus.PENDING
        assert reloaded.decided_by is None
        decisions = db_session.execute(
            select(func.count()).select_from(ApprovalLogModel).where(
                ApprovalLogModel.request_id == request.request_id,
                ApprovalLogModel.action != ApprovalLogAction.CREATED.value,
            )
        ).scalar_one()
        assert decisions == 0

    def test_failed_apply_can_still_be_rejected(self, maker_checker, test_actor_id, checker_id):
        request = maker_checker.create_request(
            EntityType.LAND_PARCELS, "UP-MISSING", ActionType.UPDATE,
            EntityUpdatePayload(changes={"land_use": "COMMERCIAL"}),
            test_actor_id, Role.SUBCITY_NORMAL,
        )
        with pytest.raises(ApplyStepFailedError):
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        decided = maker_checker.decide(request.request_id, Decision.REJECTED, checker_id, Role.SUBCITY_ADMIN)
        assert decided.status == RequestStatus.REJECTED

    def test_failed_apply_rolls_back_partial_writes(self, maker_checker, db_session, create_parcel, test_actor_id, checker_id):
        create_parcel(upin="UP-TAKEN")
        request = maker_checker.create_request(
            EntityType.LAND_PARCELS, "UP-TAKEN", ActionType.CREATE,
            ParcelCreatePayload(upin="UP-TAKEN", file_number="FN-NEW", total_area_m2=Decimal("250")),
            test_actor_id, Role.SUBCITY_NORMAL,
        )

        with pytest.raises(ApplyStepFailedError) as exc_info:
            maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        assert exc_info.value.cause_code == "ENTITY_CONFLICT"
        count = db_session.execute(
            select(func.count()).select_from(LandParcelModel).where(LandParcelModel.upin == "UP-TAKEN")
        ).scalar_one()
        assert count == 1

    def test_decision_log_and_audit_written(self, maker_checker, db_session, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        logs = db_session.execute(
            select(ApprovalLogModel)
            .where(ApprovalLogModel.request_id == request.request_id)
            .order_by(ApprovalLogModel.performed_at, ApprovalLogModel.action.desc())
        ).scalars().all()
        assert [log.action for log in logs] == ["CREATED", "APPROVED"]
        assert logs[1].previous_status == "PENDING"
        assert logs[1].new_status == "APPROVED"

        audit = db_session.execute(
            select(AuditLogModel).where(
                AuditLogModel.entity_type == "APPROVAL_REQUESTS",
                AuditLogModel.entity_id == str(request.request_id),
            )
        ).scalar_one()
        assert audit.action_type == AuditAction.APPROVAL_GRANTED.value
        assert audit.user_id == checker_id
        assert audit.changes["before"] == {"status": "PENDING"}
        assert audit.changes["after"]["status"] == "APPROVED"

    def test_rejection_audited(self, maker_checker, db_session, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(request.request_id, "REJECTED", checker_id, "SUBCITY_ADMIN", decision_comments="incomplete")

        audit = db_session.execute(
            select(AuditLogModel).where(AuditLogModel.entity_id == str(request.request_id))
        ).scalar_one()
        assert audit.action_type == AuditAction.APPROVAL_REJECTED.value
        assert audit.changes["after"]["decision_comments"] == "incomplete"

    def test_decision_is_logged(self, maker_checker, test_actor_id, checker_id, captured_logs):
        request = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(request.request_id, Decision.APPROVED, checker_id, Role.SUBCITY_ADMIN)

        decided = [r for r in captured_logs() if r["message"] == "approval_request_decided"]
        assert len(decided) == 1
        assert decided[0]["decision"] == "APPROVED"


# =============================================================================
# Queues
# =============================================================================


class TestQueues:
    """Pending queues and maker history."""

    def test_pending_queue_filtered_by_approver_role(self, maker_checker, test_actor_id):
        _request_owner(maker_checker, test_actor_id, national_id="NID-A")
        _request_owner(maker_checker, test_actor_id, national_id="NID-B", maker_role=Role.REVENUE_USER)

        subcity = maker_checker.list_pending(Role.SUBCITY_ADMIN)
        revenue = maker_checker.list_pending(Role.REVENUE_ADMIN)

        assert [r.entity_id for r in subcity] == ["NID-A"]
        assert [r.entity_id for r in revenue] == ["NID-B"]

    def test_city_admin_sees_every_queue(self, maker_checker, test_actor_id):
        _request_owner(maker_checker, test_actor_id, national_id="NID-A")
        _request_owner(maker_checker, test_actor_id, national_id="NID-B", maker_role=Role.REVENUE_USER)

        assert {r.entity_id for r in maker_checker.list_pending(Role.CITY_ADMIN)} == {"NID-A", "NID-B"}

    def test_subcity_queue_scoped_to_sub_city(self, maker_checker, test_actor_id):
        _request_owner(maker_checker, test_actor_id, national_id="NID-A", sub_city_id="SC-01")
        _request_owner(maker_checker, test_actor_id, national_id="NID-B", sub_city_id="SC-02")

        queue = maker_checker.list_pending(Role.SUBCITY_ADMIN, sub_city_id="SC-02")

        assert [r.entity_id for r in queue] == ["NID-B"]

    def test_decided_requests_leave_the_queue(self, maker_checker, test_actor_id, checker_id):
        request = _request_owner(maker_checker, test_actor_id)
        maker_checker.decide(request.request_id, Decision.REJECTED, checker_id, Role.SUBCITY_ADMIN)

        assert maker_checker.list_pending(Role.SUBCITY_ADMIN) == []

    def test_list_by_maker_with_status(self, maker_checker, test_actor_id, checker_id):
        first = _request_owner(maker_checker, test_actor_id, national_id="NID-A")
        _request_owner(maker_checker, test_actor_id, national_id="NID-B")
        _request_owner(maker_checker, uuid4(), national_id="NID-C")
        maker_checker.decide(first.request_id, Decision.REJECTED, checker_id, Role.SUBCITY_ADMIN)

        mine = maker_checker.list_by_maker(test_actor_id)
        pending = maker_checker.list_by_maker(test_actor_id, status=RequestStatus.PENDING)

        assert {r.entity_id for r in mine} == {"NID-A", "NID-B"}
        assert [r.entity_id for r in pending] == ["NID-B"]
