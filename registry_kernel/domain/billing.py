"""
Billing domain: statuses, rate types and the pure accrual arithmetic.

Responsibility:
    Everything the accrual jobs and lease billing compute, with no I/O.
    Jobs select rows and persist results; the numbers come from here.

Invariants enforced:
    - Money is Decimal, rounded half-up to cents at each persisted value.
    - amount_due after interest = base_payment + interest (penalty dropped;
      the penalty step re-adds it).
    - amount_due after penalty = base_payment + interest + penalty.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

CENT = Decimal("0.01")
DAYS_PER_YEAR = Decimal(365)
SECONDS_PER_DAY = 86400

DEFAULT_GRACE_DAYS = 30


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


OUTSTANDING_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.UNPAID,
    PaymentStatus.OVERDUE,
})


class LeaseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class RateType(str, Enum):
    LEASE_INTEREST_RATE = "LEASE_INTEREST_RATE"
    PENALTY_RATE = "PENALTY_RATE"
    LATE_PAYMENT_GRACE_DAYS = "LATE_PAYMENT_GRACE_DAYS"
    PENALTY_CONSTRUCTION_DELAY = "PENALTY_CONSTRUCTION_DELAY"
    GRADE_FACTOR_MULTIPLIER = "GRADE_FACTOR_MULTIPLIER"
    ANNUAL_ESCALATION_RATE = "ANNUAL_ESCALATION_RATE"
    DOWN_PAYMENT_INTEREST = "DOWN_PAYMENT_INTEREST"
    BANK_REFERENCE_RATE = "BANK_REFERENCE_RATE"


class LeaseExpiryBillAction(str, Enum):
    """What the lease expiry job does to outstanding bills of an expired lease."""

    KEEP = "keep"
    FLAG = "flag"
    CANCEL = "cancel"


LEASE_EXPIRED_FLAG = "LEASE_EXPIRED"


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def fiscal_year_of(as_of: datetime) -> int:
    """The registry's fiscal year is the calendar year."""
    return as_of.year


def add_years(when: datetime, years: int) -> datetime:
    """Same month/day ``years`` later; 29 February falls back to the 28th."""
    try:
        return when.replace(year=when.year + years)
    except ValueError:
        return when.replace(year=when.year + years, day=28)


def days_overdue(due_date: datetime, as_of: datetime) -> int:
    """ceil(|as_of - due_date| / 1 day)."""
    seconds = abs((as_of - due_date).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


@dataclass(frozen=True)
class InterestAccrual:
    interest_amount: Decimal
    amount_due: Decimal


@dataclass(frozen=True)
class PenaltyAccrual:
    days_overdue: int
    base_amount: Decimal
    penalty_amount: Decimal
    amount_due: Decimal


def compute_interest(
    remaining_amount: Decimal,
    base_payment: Decimal,
    interest_rate: Decimal,
) -> InterestAccrual:
    interest = quantize_money(remaining_amount * interest_rate)
    return InterestAccrual(
        interest_amount=interest,
        amount_due=quantize_money(base_payment + interest),
    )


def compute_penalty(
    base_payment: Decimal,
    interest_amount: Decimal,
    penalty_rate: Decimal,
    interest_rate: Decimal,
    overdue_days: int,
) -> PenaltyAccrual:
    """penalty = (base + interest) * (penalty_rate + interest_rate) * days / 365."""
    base_amount = base_payment + interest_amount
    penalty = quantize_money(
        base_amount * (penalty_rate + interest_rate) * Decimal(overdue_days) / DAYS_PER_YEAR
    )
    return PenaltyAccrual(
        days_overdue=overdue_days,
        base_amount=base_amount,
        penalty_amount=penalty,
        amount_due=quantize_money(base_amount + penalty),
    )


# =========================================================================
# Lease installment plan
# =========================================================================


@dataclass(frozen=True)
class Installment:
    installment_number: int
    fiscal_year: int
    due_date: datetime
    amount: Decimal
    remaining_amount: Decimal


def lease_principal(
    total_lease_amount: Decimal,
    down_payment_amount: Decimal,
    other_payment: Decimal = Decimal("0"),
) -> Decimal:
    return total_lease_amount - down_payment_amount - other_payment


def annual_installment(principal: Decimal, payment_term_years: int) -> Decimal:
    return quantize_money(principal / Decimal(payment_term_years))


def installment_plan(
    principal: Decimal,
    installment: Decimal,
    payment_term_years: int,
    start_date: datetime,
) -> list[Installment]:
    """
    One installment per year of the payment term.

    Installment ``n`` is due ``n`` years after ``start_date`` and records
    the principal still outstanding before it is paid.
    """
    plan: list[Installment] = []
    remaining = principal
    for year in range(1, payment_term_years + 1):
        due = add_years(start_date, year)
        plan.append(Installment(
            installment_number=year,
            fiscal_year=due.year,
            due_date=due,
            amount=installment,
            remaining_amount=quantize_money(remaining),
        ))
        remaining = max(remaining - installment, Decimal("0"))
    return plan
