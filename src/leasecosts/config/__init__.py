"""Environment-driven configuration for the Lambda entry points."""

from leasecosts.config.settings import (
    CleanupSettings,
    CollectorSettings,
    SchedulerSettings,
    load_settings,
)

__all__ = ["CleanupSettings", "CollectorSettings", "SchedulerSettings", "load_settings"]
