"""Fixtures for apply-step tests: raise a request and approve it in one call."""

import pytest

from registry_kernel.domain.approval import Decision, Role


@pytest.fixture
def approve(maker_checker, test_actor_id, checker_id):
    """Create a request as SUBCITY_NORMAL and approve it as CITY_ADMIN."""

    def _approve(entity_type, entity_id, action_type, payload, sub_city_id="SC-01"):
        request = maker_checker.create_request(
            entity_type=entity_type,
            entity_id=entity_id,
            action_type=action_type,
            payload=payload,
            maker_id=test_actor_id,
            maker_role=Role.SUBCITY_NORMAL,
            sub_city_id=sub_city_id,
        )
        return maker_checker.decide(
            request.request_id, Decision.APPROVED, checker_id, Role.CITY_ADMIN,
        )

    return _approve
