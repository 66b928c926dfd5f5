"""Daily sweep of schedules that fired (or were due) long ago but still exist."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from leasecosts.config.settings import CleanupSettings
from leasecosts.connectors.aws.clients import AwsClientFactory
from leasecosts.connectors.aws.scheduler import ScheduleManager, parse_schedule_expression
from leasecosts.utils.timestamps import utcnow

logger = structlog.get_logger()

DELETED_SAMPLE_SIZE = 5


@dataclass
class CleanupResult:
    total: int = 0
    stale: int = 0
    deleted: int = 0
    already_deleted: int = 0
    failed: int = 0
    deleted_names: list[str] = field(default_factory=list)
    failed_names: list[str] = field(default_factory=list)


class StaleScheduleCleaner:
    """Deletes one-time schedules whose fire time is older than ``max_age_hours``."""

    def __init__(
        self,
        schedules: ScheduleManager,
        max_age_hours: int = 72,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._schedules = schedules
        self.max_age = timedelta(hours=max_age_hours)
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: CleanupSettings, clients: AwsClientFactory | None = None
    ) -> StaleScheduleCleaner:
        clients = clients or AwsClientFactory(region=settings.aws_region)
        schedules = ScheduleManager(
            settings.scheduler_group, clients=clients, region=settings.aws_region
        )
        return cls(schedules, settings.max_schedule_age_hours)

    async def _is_stale(self, name: str, now: datetime) -> bool:
        try:
            expression = await self._schedules.get_expression(name)
        except Exception as exc:
            logger.error("cleanup.get_schedule_failed", schedule_name=name, error=str(exc))
            return False
        if expression is None:
            return False
        fire_at = parse_schedule_expression(expression)
        if fire_at is None:
            logger.warning(
                "cleanup.unparseable_expression", schedule_name=name, expression=expression
            )
            return False
        return now - fire_at > self.max_age

    async def run(self) -> CleanupResult:
        result = CleanupResult()
        schedules = await self._schedules.list_all()
        result.total = len(schedules)
        logger.info(
            "cleanup.started",
            group=self._schedules.group_name,
            total=result.total,
            max_age_hours=self.max_age.total_seconds() / 3600,
        )

        now = self._clock()
        stale: list[str] = []
        for summary in schedules:
            name = summary.get("Name")
            if not name:
                logger.warning("cleanup.schedule_without_name")
                continue
            if await self._is_stale(name, now):
                stale.append(name)
        result.stale = len(stale)

        for name in stale:
            try:
                deleted = await self._schedules.delete_schedule(name)
            except Exception as exc:
                logger.error("cleanup.delete_failed", schedule_name=name, error=str(exc))
                result.failed += 1
                result.failed_names.append(name)
                continue
            if deleted:
                result.deleted += 1
                result.deleted_names.append(name)
            else:
                result.already_deleted += 1

        logger.info(
            "cleanup.completed",
            total=result.total,
            stale=result.stale,
            deleted=result.deleted,
            already_deleted=result.already_deleted,
            failed=result.failed,
            deleted_sample=result.deleted_names[:DELETED_SAMPLE_SIZE],
        )
        if result.failed_names:
            logger.error("cleanup.failures", schedule_names=result.failed_names)
        return result
