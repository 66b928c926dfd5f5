"""Lambda workflows: collection, scheduling and stale-schedule cleanup."""

from leasecosts.workers.cleanup import StaleScheduleCleaner
from leasecosts.workers.collector import CostCollector
from leasecosts.workers.scheduling import CollectionScheduler

__all__ = ["CollectionScheduler", "CostCollector", "StaleScheduleCleaner"]
