"""
WIZARD_SESSION / CREATE: parcel, owners and optional lease in one approval.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from registry_kernel.domain.approval import ActionType, EntityType
from registry_kernel.domain.land import OwnershipEventType, TenureType
from registry_kernel.domain.payloads import (
    LeaseCreatePayload,
    OwnerCreatePayload,
    ParcelCreatePayload,
    WizardOwnerEntry,
    WizardSubmissionPayload,
)
from registry_kernel.exceptions import ApplyStepFailedError
from registry_kernel.models import (
    BillingRecordModel,
    LandParcelModel,
    LeaseAgreementModel,
    OwnerModel,
    OwnershipHistoryModel,
    ParcelOwnerModel,
)


def _parcel(upin="UP-W1", tenure=TenureType.LEASE):
    return ParcelCreatePayload(
        upin=upin, file_number=f"FN-{upin}", total_area_m2=Decimal("400.00"), tenure_type=tenure,
    )


def _owner(national_id, phone="+251911555000"):
    return OwnerCreatePayload(full_name=f"Owner {national_id}", national_id=national_id, phone_number=phone)


def _count(session, model, *criteria):
    return session.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


class TestWizardSubmission:

    def test_registers_parcel_owners_and_lease(self, approve, db_session):
        payload = WizardSubmissionPayload(
            parcel=_parcel(),
            owners=(
                WizardOwnerEntry(owner=_owner("NID-W1"), acquired_at=datetime(2020, 3, 1)),
                WizardOwnerEntry(owner=_owner("NID-W2")),
            ),
            lease=LeaseCreatePayload(
                upin="UP-W1",
                total_lease_amount=Decimal("60000.00"),
                down_payment_amount=Decimal("0"),
                lease_period_years=20,
                payment_term_years=3,
                start_date=datetime(2025, 1, 1),
            ),
        )

        decided = approve(EntityType.WIZARD_SESSION, "UP-W1", ActionType.CREATE, payload)

        assert decided.result_entity_id == "UP-W1"
        assert _count(db_session, LandParcelModel, LandParcelModel.upin == "UP-W1") == 1
        assert _count(db_session, OwnerModel) == 2
        assert _count(db_session, ParcelOwnerModel, ParcelOwnerModel.upin == "UP-W1") == 2
        events = db_session.execute(
            select(OwnershipHistoryModel.transfer_type)
            .where(OwnershipHistoryModel.upin == "UP-W1")
            .order_by(OwnershipHistoryModel.transfer_type.desc())
        ).scalars().all()
        assert sorted(events) == sorted([
            OwnershipEventType.FIRST_OWNER.value, OwnershipEventType.CO_OWNER_ADDITION.value,
        ])
        lease = db_session.execute(
            select(LeaseAgreementModel).where(LeaseAgreementModel.upin == "UP-W1")
        ).scalar_one()
        assert lease.annual_installment == Decimal("20000.00")
        assert _count(db_session, BillingRecordModel, BillingRecordModel.lease_id == lease.id) == 3

    def test_existing_owner_reused_by_national_id(self, approve, db_session, create_owner):
        known = create_owner(national_id="NID-KNOWN")

        approve(
            EntityType.WIZARD_SESSION, "UP-W2", ActionType.CREATE,
            WizardSubmissionPayload(
                parcel=_parcel("UP-W2", TenureType.OLD_POSSESSION),
                owners=(WizardOwnerEntry(owner=_owner("NID-KNOWN")),),
            ),
        )

        assert _count(db_session, OwnerModel) == 1
        link = db_session.execute(
            select(ParcelOwnerModel).where(ParcelOwnerModel.upin == "UP-W2")
        ).scalar_one()
        assert link.owner_id == known.id

    def test_owner_listed_twice_linked_once(self, approve, db_session):
        approve(
            EntityType.WIZARD_SESSION, "UP-W3", ActionType.CREATE,
            WizardSubmissionPayload(
                parcel=_parcel("UP-W3"),
                owners=(WizardOwnerEntry(owner=_owner("NID-DUP")), WizardOwnerEntry(owner=_owner("NID-DUP"))),
            ),
        )

        assert _count(db_session, ParcelOwnerModel, ParcelOwnerModel.upin == "UP-W3") == 1

    def test_owner_without_phone_rejects_whole_submission(self, approve, db_session):
        with pytest.raises(ApplyStepFailedError) as exc_info:
            approve(
                EntityType.WIZARD_SESSION, "UP-W4", ActionType.CREATE,
                WizardSubmissionPayload(
                    parcel=_parcel("UP-W4"),
                    owners=(WizardOwnerEntry(owner=_owner("NID-W4", phone=None)),),
                ),
            )

        assert exc_info.value.__cause__.reason_code == "INCOMPLETE_OWNER"
        assert _count(db_session, LandParcelModel) == 0

    def test_no_owners_rejected(self, approve):
        with pytest.raises(ApplyStepFailedError) as exc_info:
            approve(
                EntityType.WIZARD_SESSION, "UP-W5", ActionType.CREATE,
                WizardSubmissionPayload(parcel=_parcel("UP-W5"), owners=()),
            )
        assert exc_info.value.__cause__.reason_code == "NO_OWNERS"

    def test_lease_on_non_lease_tenure_rejected(self, approve, db_session):
        with pytest.raises(ApplyStepFailedError) as exc_info:
            approve(
                EntityType.WIZARD_SESSION, "UP-W6", ActionType.CREATE,
                WizardSubmissionPayload(
                    parcel=_parcel("UP-W6", TenureType.OLD_POSSESSION),
                    owners=(WizardOwnerEntry(owner=_owner("NID-W6")),),
                    lease=LeaseCreatePayload(
                        upin="UP-W6",
                        total_lease_amount=Decimal("1000"),
                        down_payment_amount=Decimal("0"),
                        lease_period_years=10,
                        payment_term_years=2,
                        start_date=datetime(2025, 1, 1),
                    ),
                ),
            )

        assert exc_info.value.__cause__.reason_code == "PARCEL_NOT_LEASEHOLD"
        assert _count(db_session, OwnerModel) == 0

    def test_failing_lease_rolls_back_parcel_and_owners(self, approve, db_session):
        with pytest.raises(ApplyStepFailedError):
            approve(
                EntityType.WIZARD_SESSION, "UP-W7", ActionType.CREATE,
                WizardSubmissionPayload(
                    parcel=_parcel("UP-W7"),
                    owners=(WizardOwnerEntry(owner=_owner("NID-W7")),),
                    lease=LeaseCreatePayload(
                        upin="UP-W7",
                        total_lease_amount=Decimal("1000"),
                        down_payment_amount=Decimal("1000"),
                        lease_period_years=10,
                        payment_term_years=2,
                        start_date=datetime(2025, 1, 1),
                    ),
                ),
            )

        assert _count(db_session, LandParcelModel) == 0
        assert _count(db_session, OwnerModel) == 0
        assert _count(db_session, ParcelOwnerModel) == 0
