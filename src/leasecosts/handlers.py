"""AWS Lambda entry points.

Each handler builds its workflow once per container (cold start) and runs
one invocation with ``asyncio.run``. Domain errors are logged with their
problem detail and re-raised so Lambda records the failure and the
scheduler's retry policy applies.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, TypeVar

import structlog

from leasecosts.billing.cost_explorer import RemainingTime
from leasecosts.config.settings import (
    CleanupSettings,
    CollectorSettings,
    SchedulerSettings,
    load_settings,
)
from leasecosts.exceptions import LeaseCostsError
from leasecosts.observability.logging import configure_logging
from leasecosts.workers.cleanup import StaleScheduleCleaner
from leasecosts.workers.collector import CostCollector
from leasecosts.workers.scheduling import CollectionScheduler

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

_collector: CostCollector | None = None
_scheduler: CollectionScheduler | None = None
_cleaner: StaleScheduleCleaner | None = None


def remaining_time_probe(context: Any) -> RemainingTime | None:
    """Seconds left in the invocation, from the Lambda context if it has one."""
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if not callable(get_remaining):
        return None
    return lambda: get_remaining() / 1000.0


def _run(name: str, build: Callable[[], T], invoke: Callable[[T], Awaitable[R]]) -> R:
    """Build the workflow (cold start on first call) and run one invocation."""
    try:
        worker = build()
        return asyncio.run(invoke(worker))
    except LeaseCostsError as exc:
        logger.error("handler_failed", handler=name, **exc.to_problem_detail())
        raise


def get_collector() -> CostCollector:
    global _collector
    if _collector is None:
        settings = load_settings(CollectorSettings)
        configure_logging(settings.log_level)
        _collector = CostCollector.from_settings(settings)
    return _collector


def get_scheduler() -> CollectionScheduler:
    global _scheduler
    if _scheduler is None:
        settings = load_settings(SchedulerSettings)
        configure_logging(settings.log_level)
        _scheduler = CollectionScheduler.from_settings(settings)
    return _scheduler


def get_cleaner() -> StaleScheduleCleaner:
    global _cleaner
    if _cleaner is None:
        settings = load_settings(CleanupSettings)
        configure_logging(settings.log_level)
        _cleaner = StaleScheduleCleaner.from_settings(settings)
    return _cleaner


def cost_collector_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    probe = remaining_time_probe(context)
    result = _run(
        "cost_collector",
        get_collector,
        lambda collector: collector.collect(event, remaining_time=probe),
    )
    return result.model_dump(mode="json")


def scheduler_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    task = _run("scheduler", get_scheduler, lambda scheduler: scheduler.handle(event))
    return task.model_dump(by_alias=True)


def cleanup_handler(event: dict[str, Any] | None = None, context: Any = None) -> dict[str, Any]:
    result = _run("cleanup", get_cleaner, lambda cleaner: cleaner.run())
    return asdict(result)
