"""
RateConfigService: effective-dated lookup and rate creation.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from registry_kernel.domain.billing import RateType
from registry_kernel.exceptions import DuplicateRateError, InvalidRateError, NoActiveRateError
from registry_kernel.models import AuditLogModel
from registry_kernel.services.rate_config_service import RateConfigService


@pytest.fixture
def rates(db_session, clock):
    return RateConfigService(db_session, clock)


class TestRateLookup:

    def test_missing_rate_raises(self, rates):
        with pytest.raises(NoActiveRateError) as exc_info:
            rates.get_current_rate(RateType.LEASE_INTEREST_RATE)
        assert exc_info.value.rate_type == "LEASE_INTEREST_RATE"
        assert exc_info.value.code == "NO_ACTIVE_RATE"

    def test_latest_effective_from_wins(self, rates, create_rate):
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.05"), effective_from=datetime(2024, 1, 1))
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.07"), effective_from=datetime(2025, 6, 1))

        assert rates.get_current_rate(RateType.LEASE_INTEREST_RATE) == Decimal("0.07")

    def test_future_rate_not_yet_effective(self, rates, create_rate):
        create_rate(RateType.PENALTY_RATE, Decimal("0.02"), effective_from=datetime(2025, 1, 1))
        create_rate(RateType.PENALTY_RATE, Decimal("0.09"), effective_from=datetime(2027, 1, 1))

        assert rates.get_current_rate(RateType.PENALTY_RATE) == Decimal("0.02")

    def test_expired_window_ignored(self, rates, create_rate):
        create_rate(
            RateType.PENALTY_RATE, Decimal("0.02"),
            effective_from=datetime(2024, 1, 1), effective_until=datetime(2025, 1, 1),
        )

        with pytest.raises(NoActiveRateError):
            rates.get_current_rate(RateType.PENALTY_RATE)

    def test_inactive_row_ignored(self, rates, create_rate):
        create_rate(RateType.PENALTY_RATE, Decimal("0.02"), is_active=False)

        assert rates.find_effective(RateType.PENALTY_RATE) is None

    def test_lookup_as_of_past_instant(self, rates, create_rate):
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.05"), effective_from=datetime(2024, 1, 1))
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.07"), effective_from=datetime(2025, 6, 1))

        assert rates.get_current_rate("LEASE_INTEREST_RATE", as_of=datetime(2025, 1, 1)) == Decimal("0.05")

    def test_grace_days_default(self, rates):
        assert rates.get_grace_days() == 30

    def test_grace_days_configured(self, rates, create_rate):
        create_rate(RateType.LATE_PAYMENT_GRACE_DAYS, Decimal("45"))
        assert rates.get_grace_days() == 45

    def test_rates_are_separate_per_type(self, rates, create_rate):
        create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.05"))

        with pytest.raises(NoActiveRateError):
            rates.get_current_rate(RateType.PENALTY_RATE)


class TestCreateRate:

    def test_create_closes_previous_open_window(self, rates, create_rate, test_actor_id):
        old = create_rate(RateType.LEASE_INTEREST_RATE, Decimal("0.05"), effective_from=datetime(2024, 1, 1))

        new = rates.create_rate(
            RateType.LEASE_INTEREST_RATE, Decimal("0.06"), datetime(2026, 1, 1), test_actor_id,
            source="Council decision 12/2025",
        )

        assert old.effective_until == datetime(2026, 1, 1)
        assert new.effective_until is None
        assert new.source == "Council decision 12/2025"
        assert rates.get_current_rate(RateType.LEASE_INTEREST_RATE) == Decimal("0.06")
        assert [r.value for r in rates.list_rates(RateType.LEASE_INTEREST_RATE)] == [
            Decimal("0.06"), Decimal("0.05"),
        ]

    def test_duplicate_effective_from_rejected(self, rates, create_rate, test_actor_id):
        create_rate(RateType.PENALTY_RATE, Decimal("0.02"), effective_from=datetime(2025, 1, 1))

        with pytest.raises(DuplicateRateError):
            rates.create_rate(RateType.PENALTY_RATE, Decimal("0.03"), datetime(2025, 1, 1), test_actor_id)

    @pytest.mark.parametrize("value", [Decimal("-0.01"), Decimal("1.5"), Decimal("NaN")])
    def test_rate_value_range(self, rates, test_actor_id, value):
        with pytest.raises(InvalidRateError):
            rates.create_rate(RateType.PENALTY_RATE, value, datetime(2025, 1, 1), test_actor_id)

    def test_grace_days_must_be_whole(self, rates, test_actor_id):
        with pytest.raises(InvalidRateError):
            rates.create_rate(RateType.LATE_PAYMENT_GRACE_DAYS, Decimal("2.5"), datetime(2025, 1, 1), test_actor_id)

    def test_inverted_window_rejected(self, rates, test_actor_id):
        with pytest.raises(InvalidRateError):
            rates.create_rate(
                RateType.PENALTY_RATE, Decimal("0.02"), datetime(2025, 1, 1), test_actor_id,
                effective_until=datetime(2024, 1, 1),
            )

    def test_creation_audited(self, rates, db_session, audit_service, test_actor_id):
        rate = rates.create_rate(
            RateType.PENALTY_RATE, Decimal("0.02"), datetime(2025, 1, 1), test_actor_id, audit=audit_service,
        )

        entry = db_session.execute(
            select(AuditLogModel).where(AuditLogModel.entity_id == str(rate.id))
        ).scalar_one()
        assert entry.action_type == "rate_created"
        assert entry.changes["value"] == "0.02"
        assert entry.changes["closed_previous"] is None
