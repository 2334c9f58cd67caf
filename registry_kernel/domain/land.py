"""Land record enums shared by models, payloads and apply steps."""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class ParcelStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"


class TenureType(str, Enum):
    OLD_POSSESSION = "OLD_POSSESSION"
    LEASE = "LEASE"
    LEASE_ALLOCATION = "LEASE_ALLOCATION"
    COURT_ORDER = "COURT_ORDER"


class TransferType(str, Enum):
    SALE = "SALE"
    GIFT = "GIFT"
    HEREDITY = "HEREDITY"  # inheritance keeps the parcel's tenure
    CONVERSION = "CONVERSION"


class OwnershipEventType(str, Enum):
    """Values of ``ownership_history.transfer_type`` written by apply steps."""

    SALE = "SALE"
    GIFT = "GIFT"
    HEREDITY = "HEREDITY"
    CONVERSION = "CONVERSION"
    FIRST_OWNER = "FIRST_OWNER"
    CO_OWNER_ADDITION = "CO_OWNER_ADDITION"
    SUBDIVISION = "SUBDIVISION"


class EncumbranceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


DEFAULT_LAND_GRADE = 1.0

# Children of a subdivision must add up to the parent within this many m2
SUBDIVISION_AREA_TOLERANCE_M2 = 0.1

# Earliest acquisition date accepted when backfilling a first owner
EARLIEST_ACQUISITION = datetime(1900, 1, 1)
