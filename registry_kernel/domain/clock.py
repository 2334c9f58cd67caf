"""
Clock -- injectable time source.

Responsibility:
    Services, apply steps and batch jobs read "now" from a Clock handed to
    their constructor, never from ``datetime.now()``.  Accrual arithmetic
    (days overdue, fiscal year) and lease expiry therefore replay exactly
    under a DeterministicClock.

Architecture position:
    Kernel > Domain.  SystemClock is the only I/O in this module.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    @abstractmethod
    def now_utc(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock returning timezone-aware UTC wall time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()``, ``advance_days()``
    or ``set_time()`` is called.  Tests against SQLite pass naive
    datetimes, since SQLite drops tzinfo on the way back.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def advance_days(self, days: int) -> None:
        """Advance the clock by whole days."""
        self._advance_seconds += days * 86400

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()


def align_to(value: datetime, reference: datetime) -> datetime:
    """Make ``value`` comparable with ``reference`` (naive vs aware).

    Naive values are read as being in the reference's zone; aware values
    compared against a naive reference are converted to naive UTC.
    """
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
