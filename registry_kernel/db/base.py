"""
Module: registry_kernel.db.base
Responsibility: Declarative base classes for every registry ORM model.
    Provides the UUID primary key convention, the type annotation map that
    pins money to Numeric, and the TrackedBase / SoftDeleteMixin column sets
    shared by parcels, owners, leases, encumbrances and bills.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel.  MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - UUID primary keys on every table.
    - Decimal maps to Numeric(38, 9).  Money is never a float.
    - Regulated entities are never physically deleted: SoftDeleteMixin
      carries the is_deleted flag and the deletion stamp.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID persisted as a 36-character string so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all registry models.

    Guarantees:
        - id is a uuid4 stored as String(36).
        - Decimal columns are Numeric(38, 9).
        - datetime columns are timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base recording who created and last touched a row.

    created_by_id is the maker (or the system actor for batch jobs);
    updated_by_id is the last checker or job that mutated the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


class SoftDeleteMixin:
    """Columns for logical deletion.  Queries filter on ``is_deleted``."""

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    deleted_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def mark_deleted(self, actor_id: PyUUID, when: datetime) -> None:
        self.is_deleted = True
        self.deleted_at = when
        self.deleted_by_id = actor_id


UUID = PyUUID
