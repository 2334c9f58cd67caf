"""
RateConfigService -- effective-dated rate resolution.

Responsibility:
    Resolves the rate of a given type that is effective "now" and records
    new rate rows, closing the previous open window.

Invariants enforced:
    - The effective row is: is_active, effective_from <= now, and
      effective_until is NULL or >= now; latest effective_from wins.
    - A missing required rate raises NoActiveRateError.  Only the grace
      period falls back to a default (30 days).
    - (rate_type, effective_from) is unique.

Failure modes:
    - NoActiveRateError, DuplicateRateError, InvalidRateError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from registry_kernel.domain.billing import DEFAULT_GRACE_DAYS, RateType
from registry_kernel.domain.clock import Clock, SystemClock
from registry_kernel.exceptions import (
    DuplicateRateError,
    InvalidRateError,
    NoActiveRateError,
)
from registry_kernel.logging_config import get_logger
from registry_kernel.models.audit_log import AuditAction
from registry_kernel.models.rate import RateConfigurationModel
from registry_kernel.services.audit_service import AuditService

logger = get_logger("services.rates")

_ZERO = Decimal("0")
_ONE = Decimal("1")


class RateConfigService:
    """Read and write effective-dated rate configuration rows."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_effective(
        self, rate_type: RateType | str, as_of: datetime | None = None,
    ) -> RateConfigurationModel | None:
        as_of = as_of or self._clock.now()
        rate_type = RateType(rate_type)
        return self._session.execute(
            select(RateConfigurationModel)
            .where(
                RateConfigurationModel.rate_type == rate_type.value,
                RateConfigurationModel.is_active.is_(True),
                RateConfigurationModel.effective_from <= as_of,
                or_(
                    RateConfigurationModel.effective_until.is_(None),
                    RateConfigurationModel.effective_until >= as_of,
                ),
            )
            .order_by(RateConfigurationModel.effective_from.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_current_rate(
        self, rate_type: RateType | str, as_of: datetime | None = None,
    ) -> Decimal:
        """Value of the rate effective at ``as_of`` (default: now).

        Raises:
            NoActiveRateError: If no row is effective.
        """
        as_of = as_of or self._clock.now()
        row = self.find_effective(rate_type, as_of)
        if row is None:
            raise NoActiveRateError(RateType(rate_type).value, as_of)
        return Decimal(row.value)

    def get_grace_days(self, as_of: datetime | None = None) -> int:
        """Late-payment grace period, defaulting to 30 days when unconfigured."""
        row = self.find_effective(RateType.LATE_PAYMENT_GRACE_DAYS, as_of)
        if row is None:
            logger.info("grace_days_defaulted", extra={"grace_days": DEFAULT_GRACE_DAYS})
            return DEFAULT_GRACE_DAYS
        return int(row.value)

    def list_rates(self, rate_type: RateType | str) -> list[RateConfigurationModel]:
        """Rate history for a type, newest effective_from first."""
        return list(
            self._session.execute(
                select(RateConfigurationModel)
                .where(RateConfigurationModel.rate_type == RateType(rate_type).value)
                .order_by(RateConfigurationModel.effective_from.desc())
            ).scalars()
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_rate(
        self,
        rate_type: RateType | str,
        value: Decimal,
        effective_from: datetime,
        actor_id: UUID,
        effective_until: datetime | None = None,
        source: str | None = None,
        audit: AuditService | None = None,
    ) -> RateConfigurationModel:
        """Record a new rate row.

        The previous active row of the same type whose window starts before
        ``effective_from`` is closed at ``effective_from``.

        Raises:
            InvalidRateError: Value out of range or window inverted.
            DuplicateRateError: (rate_type, effective_from) already exists.
        """
        rate_type = RateType(rate_type)
        value = Decimal(value)
        self._validate_value(rate_type, value)
        if effective_until is not None and effective_until <= effective_from:
            raise InvalidRateError(rate_type.value, value, "effective_until must be after effective_from")

        existing = self._session.execute(
            select(RateConfigurationModel).where(
                RateConfigurationModel.rate_type == rate_type.value,
                RateConfigurationModel.effective_from == effective_from,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateRateError(rate_type.value, effective_from)

        previous = self._session.execute(
            select(RateConfigurationModel)
            .where(
                RateConfigurationModel.rate_type == rate_type.value,
                RateConfigurationModel.is_active.is_(True),
                RateConfigurationModel.effective_from < effective_from,
            )
            .order_by(RateConfigurationModel.effective_from.desc())
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()
        if previous is not None and (
            previous.effective_until is None or previous.effective_until > effective_from
        ):
            previous.effective_until = effective_from
            previous.updated_by_id = actor_id

        rate = RateConfigurationModel(
            rate_type=rate_type.value,
            value=value,
            source=source,
            effective_from=effective_from,
            effective_until=effective_until,
            is_active=True,
            created_by_id=actor_id,
        )
        self._session.add(rate)
        self._session.flush()

        if audit is not None:
            audit.log(
                AuditAction.RATE_CREATED,
                "RATE_CONFIGURATIONS",
                rate.id,
                {
                    "rate_type": rate_type.value,
                    "value": value,
                    "effective_from": effective_from,
                    "effective_until": effective_until,
                    "closed_previous": str(previous.id) if previous is not None else None,
                },
                user_id=actor_id,
            )

        logger.info(
            "rate_created",
            extra={
                "rate_type": rate_type.value,
                "value": str(value),
                "effective_from": effective_from.isoformat(),
            },
        )
        return rate

    @staticmethod
    def _validate_value(rate_type: RateType, value: Decimal) -> None:
        if not value.is_finite():
            raise InvalidRateError(rate_type.value, value, "must be a finite number")
        if rate_type == RateType.LATE_PAYMENT_GRACE_DAYS:
            if value < _ZERO or value != value.to_integral_value():
                raise InvalidRateError(rate_type.value, value, "must be a non-negative whole number of days")
            return
        if value < _ZERO or value > _ONE:
            raise InvalidRateError(rate_type.value, value, "must be between 0 and 1 (inclusive)")
