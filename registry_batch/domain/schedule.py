"""
Pure cron evaluation for the job scheduler.

Contract:
    ``parse_cron``, ``matches_cron`` and the fire-time helpers are PURE -- no
    I/O, no clock reads.  The scheduler passes the current time in.

Architecture: registry_batch/domain.  ZERO I/O.

Cron fields are evaluated in the schedule's timezone (IANA name, resolved
with ``zoneinfo``), so "0 2 * * *" in Africa/Addis_Ababa fires at 02:00
local time whatever the host timezone is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from registry_kernel.exceptions import InvalidCronExpressionError


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, lists, ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Supports:
        * -- all values
        N -- single value
        N-M -- range
        */N -- step from min
        N-M/S -- range with step

    Raises:
        ValueError: If the field is syntactically invalid or values out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty list element in '{field_str}'")

        if "/" in part:
            range_part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

            if range_part == "*":
                start, end = min_val, max_val
            elif "-" in range_part:
                s, e = range_part.split("-", 1)
                start, end = int(s), int(e)
            else:
                start = int(range_part)
                end = max_val
            if start < min_val or end > max_val or start > end:
                raise ValueError(
                    f"Range {start}-{end} outside [{min_val}, {max_val}]"
                )
            values.update(range(start, end + 1, step))

        elif part == "*":
            values.update(range(min_val, max_val + 1))

        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
            if start < min_val or end > max_val:
                raise ValueError(
                    f"Range {start}-{end} outside [{min_val}, {max_val}]"
                )
            values.update(range(start, end + 1))

        else:
            v = int(part)
            if v < min_val or v > max_val:
                raise ValueError(
                    f"Value {v} outside range [{min_val}, {max_val}]"
                )
            values.add(v)

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Format: ``minute hour day_of_month month day_of_week``

    Raises:
        InvalidCronExpressionError: If the expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise InvalidCronExpressionError(
            expression, f"expected 5 fields, got {len(parts)}",
        )

    try:
        return CronSpec(
            minutes=_parse_cron_field(parts[0], 0, 59),
            hours=_parse_cron_field(parts[1], 0, 23),
            days_of_month=_parse_cron_field(parts[2], 1, 31),
            months=_parse_cron_field(parts[3], 1, 12),
            days_of_week=_parse_cron_field(parts[4], 0, 6),
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a (local wall clock) datetime matches a cron spec.

    Cron convention: 0=Sunday, 1=Monday, ..., 6=Saturday.
    Python datetime.weekday(): 0=Monday, ..., 6=Sunday.
    """
    # Convert Python weekday (0=Mon) to cron weekday (0=Sun)
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Raises:
        InvalidCronExpressionError: Unknown IANA timezone name.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidCronExpressionError(name, f"unknown timezone '{name}'") from exc


def next_fire_time(
    spec: CronSpec | str,
    after: datetime,
    tz_name: str = "UTC",
) -> datetime:
    """First minute strictly after ``after`` matching ``spec`` in ``tz_name``.

    ``after`` may be naive (read as UTC) or aware.  The result is an aware
    datetime in ``tz_name``.
    """
    if isinstance(spec, str):
        spec = parse_cron(spec)
    zone = resolve_timezone(tz_name)
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    local = after.astimezone(zone).replace(tzinfo=None)
    match = _next_cron_match(spec, local)
    return match.replace(tzinfo=zone)


def following_fire_time(
    spec: CronSpec | str,
    now: datetime,
    previous: datetime | None,
    tz_name: str = "UTC",
) -> datetime:
    """Next fire after both ``now`` and the ``previous`` fire time.

    A timer can wake a little before the minute it was waiting for.  Counting
    from the later of the two keeps that minute from being picked again.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = now if previous is None or previous <= now else previous
    return next_fire_time(spec, start, tz_name)


def _next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """Find the next datetime after ``after`` that matches the cron spec.

    Scans minute-by-minute up to 366 days (bounded iteration).

    Raises:
        InvalidCronExpressionError: If no match found within 366 days
            (e.g. "0 0 31 2 *").
    """
    # Start from the next minute
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    max_iterations = 366 * 24 * 60  # ~1 year of minutes

    for _ in range(max_iterations):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise InvalidCronExpressionError(
        str(spec), f"no match within 366 days after {after.isoformat()}",
    )


def seconds_until(fire_at: datetime, now: datetime) -> float:
    """Non-negative delay from ``now`` to ``fire_at`` (naive ``now`` is UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max((fire_at - now).total_seconds(), 0.0)
