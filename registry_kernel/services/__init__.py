"""
Registry kernel services.

MakerCheckerService  -- change requests and checker decisions
ActionExecutor       -- apply steps for approved requests
AuditService         -- append-only audit sink
RateConfigService    -- effective-dated rates
LeaseBillingService  -- installment bill schedules
"""

from registry_kernel.services.action_executor import ActionExecutor
from registry_kernel.services.audit_service import AuditService
from registry_kernel.services.lease_billing import LeaseBillingService
from registry_kernel.services.maker_checker_service import MakerCheckerService
from registry_kernel.services.rate_config_service import RateConfigService

__all__ = [
    "ActionExecutor",
    "AuditService",
    "LeaseBillingService",
    "MakerCheckerService",
    "RateConfigService",
]
