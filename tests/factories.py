"""Shared builders for payloads, lease responses and Cost Explorer pages."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from leasecosts.config.settings import CleanupSettings, CollectorSettings, SchedulerSettings
from leasecosts.models.base import CostLineItem, CostReport

LEASE_ID = "550e8400-e29b-41d4-a716-446655440000"
USER_EMAIL = "user@example.com"
ACCOUNT_ID = "123456789012"
ROLE_ARN = "arn:aws:iam::999999999999:role/isb-lease-costs-explorer-role"
SCHEDULER_ROLE_ARN = "arn:aws:iam::123456789012:role/lease-costs-scheduler"
COLLECTOR_LAMBDA_ARN = "arn:aws:lambda:us-east-1:123456789012:function:lease-costs-collector"
BUCKET = "isb-lease-costs-test"
EVENT_BUS = "isb-costs-bus"
SCHEDULER_GROUP = "isb-lease-costs"


def make_task_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "leaseId": LEASE_ID,
        "userEmail": USER_EMAIL,
        "accountId": ACCOUNT_ID,
        "leaseEndTimestamp": "2026-02-02T15:00:00.000Z",
        "scheduleName": f"lease-costs-{LEASE_ID}",
    }
    payload.update(overrides)
    return payload


def make_lease_details(**overrides: Any) -> dict[str, Any]:
    details = {
        "startDate": "2026-01-15T10:00:00.000Z",
        "expirationDate": "2026-02-15T10:00:00.000Z",
        "awsAccountId": ACCOUNT_ID,
        "status": "Expired",
    }
    details.update(overrides)
    return details


def make_lease_terminated_event(**detail_overrides: Any) -> dict[str, Any]:
    detail = {
        "leaseId": {"userEmail": USER_EMAIL, "uuid": LEASE_ID},
        "accountId": ACCOUNT_ID,
        "reason": {"type": "Expired"},
    }
    detail.update(detail_overrides)
    return {
        "version": "0",
        "id": "6a7e8feb-b491-4cf7-a9f1-bf3703467718",
        "detail-type": "LeaseTerminated",
        "source": "InnovationSandbox-ndx",
        "account": ACCOUNT_ID,
        "time": "2026-02-02T15:00:00Z",
        "region": "us-east-1",
        "resources": [],
        "detail": detail,
    }


def make_collector_settings(**overrides: Any) -> CollectorSettings:
    values: dict[str, Any] = {
        "cost_explorer_role_arn": ROLE_ARN,
        "s3_bucket_name": BUCKET,
        "event_bus_name": EVENT_BUS,
        "scheduler_group": SCHEDULER_GROUP,
        "isb_api_base_url": "https://isb.example.com/api",
        "isb_jwt_secret_path": "/isb/jwt-secret",
    }
    values.update(overrides)
    return CollectorSettings(**values)


def make_scheduler_settings(**overrides: Any) -> SchedulerSettings:
    values: dict[str, Any] = {
        "scheduler_group": SCHEDULER_GROUP,
        "scheduler_role_arn": SCHEDULER_ROLE_ARN,
        "cost_collector_lambda_arn": COLLECTOR_LAMBDA_ARN,
    }
    values.update(overrides)
    return SchedulerSettings(**values)


def make_cleanup_settings(**overrides: Any) -> CleanupSettings:
    values: dict[str, Any] = {"scheduler_group": SCHEDULER_GROUP}
    values.update(overrides)
    return CleanupSettings(**values)


# ── Cost Explorer pages ──────────────────────────────────────────


def _group(keys: list[str], amount: str) -> dict[str, Any]:
    return {"Keys": keys, "Metrics": {"UnblendedCost": {"Amount": amount, "Unit": "USD"}}}


def service_page(
    services: list[tuple[str, str]], next_token: str | None = None
) -> dict[str, Any]:
    """GetCostAndUsage response grouped by SERVICE."""
    page: dict[str, Any] = {
        "ResultsByTime": [
            {
                "TimePeriod": {"Start": "2026-01-01", "End": "2026-01-02"},
                "Groups": [_group([name], amount) for name, amount in services],
            }
        ]
    }
    if next_token:
        page["NextPageToken"] = next_token
    return page


def resource_page(
    resources: list[tuple[str, str, str]], next_token: str | None = None
) -> dict[str, Any]:
    """GetCostAndUsageWithResources response grouped by RESOURCE_ID and REGION."""
    page: dict[str, Any] = {
        "ResultsByTime": [
            {
                "TimePeriod": {"Start": "2026-01-01", "End": "2026-01-02"},
                "Groups": [
                    _group([resource_id, region], amount)
                    for resource_id, region, amount in resources
                ],
            }
        ]
    }
    if next_token:
        page["NextPageToken"] = next_token
    return page


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def make_report(
    items: list[tuple[str, str, str, str]],
    total_cost: float = 0.0,
    account_id: str = ACCOUNT_ID,
) -> CostReport:
    return CostReport(
        account_id=account_id,
        start_date="2026-01-15",
        end_date="2026-02-03",
        total_cost=total_cost,
        costs_by_resource=[
            CostLineItem(resource_name=r, service_name=s, region=g, cost=c)
            for r, s, g, c in items
        ],
    )


class RecordingSleep:
    """Awaitable stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
