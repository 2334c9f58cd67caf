"""
Pytest fixtures for the registry test suite.

Provides:
- In-memory SQLite engine, session factory and session per test
- A DeterministicClock fixed at 2026-02-01 12:00 (naive, as SQLite returns it)
- Factories for parcels, owners, leases, bills and rates
- Structured log capture
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from registry_kernel.db.base import Base
from registry_kernel.db.engine import enable_sqlite_savepoints
from registry_kernel.domain.billing import LeaseStatus, PaymentStatus, RateType, add_years
from registry_kernel.domain.clock import DeterministicClock
from registry_kernel.domain.land import ParcelStatus, TenureType
from registry_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from registry_kernel.models import (
    BillingRecordModel,
    LandParcelModel,
    LeaseAgreementModel,
    OwnerModel,
    ParcelOwnerModel,
    RateConfigurationModel,
    import_all_models,
)
from registry_kernel.services.audit_service import AuditService
from registry_kernel.services.maker_checker_service import MakerCheckerService

# Test actor IDs for all test operations
TEST_ACTOR_ID = uuid4()
TEST_CHECKER_ID = uuid4()

FIXED_NOW = datetime(2026, 2, 1, 12, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture registry_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, maker_checker):
            maker_checker.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("registry_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database per test.

    StaticPool shares the one connection between every session and thread,
    so job sessions and scheduler threads see the same data.  Sessions
    must not hold overlapping transactions: commit before running a job.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    import_all_models()
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session for arranging and asserting.  Commit before running a job."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(fixed_time=FIXED_NOW)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent maker ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def checker_id() -> UUID:
    return TEST_CHECKER_ID


@pytest.fixture
def audit_service(db_session, clock) -> AuditService:
    return AuditService(db_session, clock)


@pytest.fixture
def maker_checker(db_session, audit_service, clock) -> MakerCheckerService:
    return MakerCheckerService(db_session, audit_service, clock=clock)


# =============================================================================
# Entity factories
# =============================================================================


@pytest.fixture
def create_parcel(db_session, test_actor_id):
    """Insert an ACTIVE parcel directly (no approval)."""
    counter = iter(range(1, 10_000))

    def _create(
        upin: str | None = None,
        total_area_m2: Decimal = Decimal("500.00"),
        tenure_type: TenureType = TenureType.LEASE,
        sub_city_id: str | None = "SC-01",
        status: ParcelStatus = ParcelStatus.ACTIVE,
    ) -> LandParcelModel:
        n = next(counter)
        parcel = LandParcelModel(
            upin=upin or f"UP-{n:04d}",
            file_number=f"FN-{upin or n}",
            sub_city_id=sub_city_id,
            tabia="Tabia 1",
            ketena="Ketena 2",
            block="B-7",
            total_area_m2=total_area_m2,
            land_use="RESIDENTIAL",
            land_grade=Decimal("1.0"),
            tenure_type=tenure_type.value,
            status=status.value,
            created_by_id=test_actor_id,
        )
        db_session.add(parcel)
        db_session.flush()
        return parcel

    return _create


@pytest.fixture
def create_owner(db_session, test_actor_id):
    counter = iter(range(1, 10_000))

    def _create(national_id: str | None = None, full_name: str = "Abebe Kebede") -> OwnerModel:
        n = next(counter)
        owner = OwnerModel(
            full_name=full_name,
            national_id=national_id or f"NID-{n:05d}",
            phone_number="+251911000000",
            sub_city_id="SC-01",
            created_by_id=test_actor_id,
        )
        db_session.add(owner)
        db_session.flush()
        return owner

    return _create


@pytest.fixture
def link_owner(db_session, test_actor_id, clock):
    def _link(parcel: LandParcelModel, owner: OwnerModel, acquired_at: datetime | None = None) -> ParcelOwnerModel:
        link = ParcelOwnerModel(
            upin=parcel.upin,
            owner_id=owner.id,
            is_active=True,
            acquired_at=acquired_at or clock.now() - timedelta(days=365),
            created_by_id=test_actor_id,
        )
        db_session.add(link)
        db_session.flush()
        return link

    return _link


@pytest.fixture
def create_lease(db_session, test_actor_id):
    def _create(
        upin: str,
        start_date: datetime,
        lease_period_years: int = 10,
        payment_term_years: int = 5,
        total_lease_amount: Decimal = Decimal("100000.00"),
        down_payment_amount: Decimal = Decimal("20000.00"),
        status: LeaseStatus = LeaseStatus.ACTIVE,
        expiry_date: datetime | None = None,
    ) -> LeaseAgreementModel:
        lease = LeaseAgreementModel(
            upin=upin,
            total_lease_amount=total_lease_amount,
            down_payment_amount=down_payment_amount,
            other_payment=Decimal("0"),
            annual_installment=(total_lease_amount - down_payment_amount) / payment_term_years,
            lease_period_years=lease_period_years,
            payment_term_years=payment_term_years,
            start_date=start_date,
            expiry_date=expiry_date or add_years(start_date, lease_period_years),
            status=status.value,
            created_by_id=test_actor_id,
        )
        db_session.add(lease)
        db_session.flush()
        return lease

    return _create


@pytest.fixture
def create_bill(db_session, test_actor_id, clock):
    def _create(
        upin: str = "UP-BILL",
        base_payment: Decimal = Decimal("1000.00"),
        remaining_amount: Decimal = Decimal("1000.00"),
        interest_amount: Decimal = Decimal("0"),
        payment_status: PaymentStatus = PaymentStatus.UNPAID,
        due_date: datetime | None = None,
        fiscal_year: int | None = None,
        lease_id: UUID | None = None,
        installment_number: int | None = None,
    ) -> BillingRecordModel:
        bill = BillingRecordModel(
            upin=upin,
            lease_id=lease_id,
            fiscal_year=fiscal_year if fiscal_year is not None else clock.now().year,
            installment_number=installment_number,
            base_payment=base_payment,
            interest_amount=interest_amount,
            amount_due=base_payment + interest_amount,
            remaining_amount=remaining_amount,
            payment_status=payment_status.value,
            due_date=due_date,
            created_by_id=test_actor_id,
        )
        db_session.add(bill)
        db_session.flush()
        return bill

    return _create


@pytest.fixture
def create_rate(db_session, test_actor_id):
    def _create(
        rate_type: RateType,
        value: Decimal,
        effective_from: datetime = datetime(2025, 1, 1),
        effective_until: datetime | None = None,
        is_active: bool = True,
    ) -> RateConfigurationModel:
        rate = RateConfigurationModel(
            rate_type=rate_type.value,
            value=value,
            effective_from=effective_from,
            effective_until=effective_until,
            is_active=is_active,
            created_by_id=test_actor_id,
        )
        db_session.add(rate)
        db_session.flush()
        return rate

    return _create
