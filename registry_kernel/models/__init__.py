"""ORM models for the registry kernel."""

from registry_kernel.models.approval import ApprovalLogModel, ApprovalRequestModel
from registry_kernel.models.audit_log import AuditAction, AuditLogModel
from registry_kernel.models.billing import BillingRecordModel
from registry_kernel.models.encumbrance import EncumbranceModel
from registry_kernel.models.lease import LeaseAgreementModel
from registry_kernel.models.owner import OwnerModel
from registry_kernel.models.parcel import (
    LandParcelModel,
    OwnershipHistoryModel,
    ParcelOwnerModel,
)
from registry_kernel.models.rate import RateConfigurationModel


def import_all_models() -> None:
    """Importing this package registers every table on Base.metadata."""


__all__ = [
    "ApprovalLogModel",
    "ApprovalRequestModel",
    "AuditAction",
    "AuditLogModel",
    "BillingRecordModel",
    "EncumbranceModel",
    "LandParcelModel",
    "LeaseAgreementModel",
    "OwnerModel",
    "OwnershipHistoryModel",
    "ParcelOwnerModel",
    "RateConfigurationModel",
    "import_all_models",
]
