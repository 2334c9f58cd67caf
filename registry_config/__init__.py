"""
registry_config -- runtime configuration for the registry services.

``load_config()`` is the entry point: packaged defaults, an optional
operator YAML file merged over them, then environment overrides.  The
kernel never imports this package; scripts and the batch orchestrator
pass the parsed values in.
"""

from registry_config.loader import load_config
from registry_config.schema import (
    DatabaseConfig,
    JobScheduleConfig,
    LeaseExpiryPolicy,
    RateSeed,
    RegistryConfig,
    SchedulerConfig,
)

__all__ = [
    "DatabaseConfig",
    "JobScheduleConfig",
    "LeaseExpiryPolicy",
    "RateSeed",
    "RegistryConfig",
    "SchedulerConfig",
    "load_config",
]
