"""
registry_batch -- Scheduled lifecycle jobs for the land registry.

Provides the billing and lease lifecycle jobs (bill status, interest,
penalty, accrual cycle, lease expiry) and an in-process cron scheduler
that runs them on their configured timetable.

Architecture:
    registry_batch/ is a top-level package.  Nothing in registry_kernel
    imports from registry_batch.

Invariants:
    - Each job run is one transaction; a failed run updates nothing.
    - Clock injection: jobs read "now" once per run from a Clock.
    - One execution of a job at a time (per-job lock in the scheduler).
    - Interest accrues before penalty (AccrualCycleJob).
"""
