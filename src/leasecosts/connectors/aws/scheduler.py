"""EventBridge Scheduler operations for delayed cost collection."""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

import structlog
from botocore.exceptions import ClientError

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws

logger = structlog.get_logger()

FLEXIBLE_WINDOW_MINUTES = 5
TARGET_MAX_RETRY_ATTEMPTS = 3
TARGET_MAX_EVENT_AGE_SECONDS = 3600
LIST_PAGE_SIZE = 100

_AT_EXPRESSION = re.compile(r"^at\(([^)]+)\)$")


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def format_schedule_expression(when: datetime) -> str:
    """One-time ``at(...)`` expression in UTC, second precision, no zone suffix."""
    return f"at({when.astimezone(UTC).strftime('%Y-%m-%dT%H:%M:%S')})"


def parse_schedule_expression(expression: str) -> datetime | None:
    """Inverse of ``format_schedule_expression``; None for anything else."""
    match = _AT_EXPRESSION.match(expression.strip())
    if not match:
        return None
    try:
        parsed = datetime.fromisoformat(match.group(1))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class ScheduleManager:
    """Create, delete and enumerate one-time schedules in a schedule group.

    Parameters
    ----------
    group_name:
        EventBridge Scheduler group holding the lease-cost schedules.
    clients:
        Client factory; the ``scheduler`` client is built on first use.
    """

    def __init__(
        self,
        group_name: str,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
    ) -> None:
        self.group_name = group_name
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("scheduler", region=self._region)
        return self._client

    async def create_schedule(
        self,
        name: str,
        fire_at: datetime,
        *,
        target_arn: str,
        role_arn: str,
        payload: dict[str, Any],
    ) -> bool:
        """Create the schedule. Returns False when it already existed."""
        client = self._ensure_client()
        try:
            await call_aws(
                client.create_schedule,
                Name=name,
                GroupName=self.group_name,
                ScheduleExpression=format_schedule_expression(fire_at),
                ScheduleExpressionTimezone="UTC",
                FlexibleTimeWindow={
                    "Mode": "FLEXIBLE",
                    "MaximumWindowInMinutes": FLEXIBLE_WINDOW_MINUTES,
                },
                Target={
                    "Arn": target_arn,
                    "RoleArn": role_arn,
                    "Input": json.dumps(payload),
                    "RetryPolicy": {
                        "MaximumRetryAttempts": TARGET_MAX_RETRY_ATTEMPTS,
                        "MaximumEventAgeInSeconds": TARGET_MAX_EVENT_AGE_SECONDS,
                    },
                },
                ActionAfterCompletion="DELETE",
            )
        except ClientError as exc:
            if _error_code(exc) == "ConflictException":
                logger.warning("schedule_already_exists", schedule_name=name)
                return False
            raise
        logger.info("schedule_created", schedule_name=name, group=self.group_name)
        return True

    async def delete_schedule(self, name: str) -> bool:
        """Delete the schedule. Returns False when it was already gone."""
        client = self._ensure_client()
        try:
            await call_aws(client.delete_schedule, Name=name, GroupName=self.group_name)
        except ClientError as exc:
            if _error_code(exc) == "ResourceNotFoundException":
                logger.info("schedule_already_deleted", schedule_name=name)
                return False
            raise
        logger.info("schedule_deleted", schedule_name=name)
        return True

    async def list_all(self) -> list[dict[str, Any]]:
        client = self._ensure_client()
        schedules: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            params: dict[str, Any] = {"GroupName": self.group_name, "MaxResults": LIST_PAGE_SIZE}
            if token:
                params["NextToken"] = token
            response = await call_aws(client.list_schedules, **params)
            schedules.extend(response.get("Schedules", []))
            token = response.get("NextToken")
            if not token:
                return schedules

    async def get_expression(self, name: str) -> str | None:
        """Schedule expression, or None if the schedule no longer exists."""
        client = self._ensure_client()
        try:
            response = await call_aws(client.get_schedule, Name=name, GroupName=self.group_name)
        except ClientError as exc:
            if _error_code(exc) == "ResourceNotFoundException":
                logger.info("schedule_not_found", schedule_name=name)
                return None
            raise
        return response.get("ScheduleExpression") or None
