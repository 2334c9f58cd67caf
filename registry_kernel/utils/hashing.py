"""
Deterministic serialization and hashing.

Audit ``changes`` and approval ``request_data`` hold Decimals, dates, UUIDs
and enums.  They are stored as canonical JSON so that the same change
always produces the same stored document and the same payload hash.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """Sorted keys, no whitespace, Decimal/datetime/UUID/Enum as strings."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_document(data: dict | list | Any) -> Any:
    """Round-trip through canonical JSON so the value fits a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
