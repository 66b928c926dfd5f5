"""Turns ``LeaseTerminated`` events into delayed cost-collection schedules."""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

import structlog

from leasecosts.config.settings import SchedulerSettings
from leasecosts.connectors.aws.clients import AwsClientFactory
from leasecosts.connectors.aws.scheduler import ScheduleManager, format_schedule_expression
from leasecosts.exceptions import FieldError, ValidationError
from leasecosts.models.events import LeaseTerminatedEvent, ScheduledCollectionTask, parse_model
from leasecosts.utils.timestamps import isoformat_utc, parse_timestamp, utcnow

logger = structlog.get_logger()

SCHEDULE_NAME_PREFIX = "lease-costs-"
SCHEDULE_NAME_MAX_LENGTH = 64
JITTER_MAX_MINUTES = 30
MAX_DELAY_HOURS = 720

_INVALID_NAME_CHARS = re.compile(r"[^.\-_A-Za-z0-9]+")


def sanitize_schedule_name(name: str) -> str:
    """Replace runs of disallowed characters with one ``-`` and cap at 64 chars."""
    cleaned = re.sub(r"-{2,}", "-", _INVALID_NAME_CHARS.sub("-", name))
    return cleaned[:SCHEDULE_NAME_MAX_LENGTH]


def schedule_name_for(lease_uuid: str) -> str:
    return sanitize_schedule_name(f"{SCHEDULE_NAME_PREFIX}{lease_uuid}")


def random_jitter(max_minutes: int = JITTER_MAX_MINUTES) -> timedelta:
    """Uniform jitter in ``[0, max_minutes)`` with millisecond resolution."""
    max_ms = max_minutes * 60 * 1000
    return timedelta(milliseconds=secrets.randbelow(max_ms) if max_ms > 0 else 0)


def compute_fire_time(
    event_time: datetime, delay_hours: int, jitter: timedelta = timedelta(0)
) -> datetime:
    if not 0 <= delay_hours <= MAX_DELAY_HOURS:
        raise ValidationError(
            f"delay_hours must be between 0 and {MAX_DELAY_HOURS}, got {delay_hours}",
            errors=[FieldError(field="delay_hours", message="out of range")],
        )
    return event_time + timedelta(hours=delay_hours) + jitter


class CollectionScheduler:
    """Validates a lease termination and schedules the collector to run later."""

    def __init__(
        self,
        settings: SchedulerSettings,
        schedules: ScheduleManager,
        *,
        clock: Callable[[], datetime] = utcnow,
        jitter: Callable[[], timedelta] = random_jitter,
    ) -> None:
        self.settings = settings
        self._schedules = schedules
        self._clock = clock
        self._jitter = jitter

    @classmethod
    def from_settings(
        cls, settings: SchedulerSettings, clients: AwsClientFactory | None = None
    ) -> CollectionScheduler:
        clients = clients or AwsClientFactory(region=settings.aws_region)
        return cls(
            settings,
            ScheduleManager(settings.scheduler_group, clients=clients, region=settings.aws_region),
        )

    async def handle(self, event: Mapping[str, Any]) -> ScheduledCollectionTask:
        envelope = parse_model(LeaseTerminatedEvent, event, source="LeaseTerminated event")
        lease_key = envelope.detail.lease_id
        account_id = envelope.detail.account_id

        lease_end = parse_timestamp(envelope.time) if envelope.time else self._clock()
        jitter = self._jitter()
        fire_at = compute_fire_time(lease_end, self.settings.delay_hours, jitter)
        schedule_name = schedule_name_for(lease_key.uuid)

        task = ScheduledCollectionTask(
            lease_id=lease_key.uuid,
            user_email=lease_key.user_email,
            account_id=account_id,
            lease_end_timestamp=isoformat_utc(lease_end),
            schedule_name=schedule_name,
        )
        log = logger.bind(
            component="scheduler",
            lease_id=lease_key.uuid,
            account_id=account_id,
            schedule_name=schedule_name,
        )

        created = await self._schedules.create_schedule(
            schedule_name,
            fire_at,
            target_arn=self.settings.cost_collector_lambda_arn,
            role_arn=self.settings.scheduler_role_arn,
            payload=task.model_dump(by_alias=True),
        )
        log.info(
            "scheduler.schedule_created" if created else "scheduler.schedule_exists",
            schedule_expression=format_schedule_expression(fire_at),
            delay_hours=self.settings.delay_hours,
            jitter_minutes=round(jitter.total_seconds() / 60),
            termination_reason=envelope.detail.reason.type,
        )
        return task
