"""
registry_batch.jobs -- Registry lifecycle jobs.

Each job runs as one transaction through ``SessionJob.run()``.
"""

from registry_batch.jobs.accrual_cycle import AccrualCycleJob
from registry_batch.jobs.base import Job, JobRegistry, RunReport, SessionJob
from registry_batch.jobs.bill_status import BillStatusJob
from registry_batch.jobs.interest import InterestJob
from registry_batch.jobs.lease_expiry import LeaseExpiryJob
from registry_batch.jobs.penalty import PenaltyJob

__all__ = [
    "AccrualCycleJob",
    "BillStatusJob",
    "InterestJob",
    "Job",
    "JobRegistry",
    "LeaseExpiryJob",
    "PenaltyJob",
    "RunReport",
    "SessionJob",
]
