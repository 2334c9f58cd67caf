from registry_batch.services.scheduler import CronScheduler

__all__ = ["CronScheduler"]
