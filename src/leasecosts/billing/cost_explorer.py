"""Cost Explorer aggregation for lease billing windows.

Resource-level data (``GetCostAndUsageWithResources``) only covers the most
recent 14 days, so a billing window is split into:

- a *resource window*: the last 14 days ending at ``end_date``, queried per
  service and grouped by resource id and region;
- a *fallback window*: anything older, queried at service granularity only.

All amounts are summed as ``Decimal``. Requests are strictly sequential and
spaced 200 ms apart to stay under the 5 requests/second Cost Explorer limit.
Every paginated query stops early (with partial results and a warning) at 50
pages or when the caller's remaining-time budget runs low.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Context, Decimal, localcontext
from typing import Any

import structlog
from botocore.exceptions import ClientError

from leasecosts.billing.sanitize import (
    GLOBAL_REGION,
    sanitize_region,
    sanitize_resource_name,
    sanitize_service_name,
    validate_cost_amount,
)
from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.exceptions import FieldError, ResourceWindowExceededError, ValidationError
from leasecosts.models.base import (
    AwsCredentials,
    CostLineItem,
    CostReport,
    DegradedReason,
    ServiceCost,
    ServiceCostReport,
)
from leasecosts.utils.timestamps import CALENDAR_DATE_PATTERN

logger = structlog.get_logger()

COST_EXPLORER_REGION = "us-east-1"
RESOURCE_LOOKBACK_DAYS = 14
MAX_PAGES = 50
RATE_LIMIT_DELAY_SECONDS = 0.2
PAGE_TIME_ESTIMATE_SECONDS = 5.0
SERVICE_LIST_PAGE_TIME_ESTIMATE_SECONDS = 3.0
COST_METRIC = "UnblendedCost"

NO_RESOURCE_FOR_SERVICE = "No resource breakdown available for this service type"
NO_RESOURCE_FOR_WINDOW = "No resource breakdown available for this time window"
DEGRADED_PREFIX = "Resource breakdown unavailable: "

_DECIMAL_CONTEXT = Context(prec=60)
_CENT = Decimal("0.01")
_OPT_IN_MESSAGE = re.compile(r"opt[- ]?in|not (been )?enabled", re.IGNORECASE)
_PERMISSION_CODES = frozenset({"AccessDeniedException", "AccessDenied", "UnauthorizedOperation"})

RemainingTime = Callable[[], float]
Sleep = Callable[[float], Awaitable[object]]


# ── Sentinels and classification ─────────────────────────────────


def degraded_resource_name(reason: DegradedReason) -> str:
    return f"{DEGRADED_PREFIX}{reason.value}"


def is_fallback_resource(resource_name: str) -> bool:
    """True for any of the sentinel resource names used in place of a real id."""
    return resource_name in (
        NO_RESOURCE_FOR_SERVICE,
        NO_RESOURCE_FOR_WINDOW,
    ) or resource_name.startswith(DEGRADED_PREFIX)


def classify_degraded_error(exc: ClientError) -> DegradedReason | None:
    """Map a resource-level query failure to a degraded-mode reason, if it is one."""
    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message", "")
    if code in _PERMISSION_CODES:
        return DegradedReason.MISSING_PERMISSION
    if code == "DataUnavailableException":
        return DegradedReason.NOT_ENABLED
    if code == "ValidationException" and _OPT_IN_MESSAGE.search(message):
        return DegradedReason.NOT_ENABLED
    return None


# ── Window and sorting helpers ───────────────────────────────────


def parse_calendar_date(value: str | date, field: str) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and CALENDAR_DATE_PATTERN.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid {field}: expected YYYY-MM-DD",
        errors=[FieldError(field=field, message="must be a date in YYYY-MM-DD format")],
    )


def split_billing_window(
    start: date, end: date
) -> tuple[tuple[date, date], tuple[date, date] | None]:
    """Return ``(resource_window, fallback_window)``; the fallback may be None."""
    if (end - start).days <= RESOURCE_LOOKBACK_DAYS:
        return (start, end), None
    boundary = end - timedelta(days=RESOURCE_LOOKBACK_DAYS)
    return (boundary, end), (start, boundary)


def sort_line_items(items: list[CostLineItem]) -> list[CostLineItem]:
    """Order by service total desc; regular rows before fallback rows, each by cost desc."""
    groups: dict[str, list[CostLineItem]] = {}
    for item in items:
        groups.setdefault(item.service_name, []).append(item)

    with localcontext(_DECIMAL_CONTEXT):
        totals = {
            service: sum((Decimal(i.cost) for i in rows), Decimal(0))
            for service, rows in groups.items()
        }

    def by_cost(item: CostLineItem) -> tuple[Decimal, str, str]:
        return (-Decimal(item.cost), item.resource_name, item.region)

    ordered: list[CostLineItem] = []
    for service in sorted(groups, key=lambda s: (-totals[s], s)):
        rows = groups[service]
        regular = [r for r in rows if not is_fallback_resource(r.resource_name)]
        fallback = [r for r in rows if is_fallback_resource(r.resource_name)]
        ordered.extend(sorted(regular, key=by_cost))
        ordered.extend(sorted(fallback, key=by_cost))
    return ordered


def decimal_total(items: list[CostLineItem]) -> Decimal:
    with localcontext(_DECIMAL_CONTEXT):
        return sum((Decimal(i.cost) for i in items), Decimal(0))


def _format_decimal(value: Decimal) -> str:
    return format(value, "f")


def _usage_filter(account_id: str, service: str | None = None) -> dict[str, Any]:
    clauses: list[dict[str, Any]] = [
        {"Dimensions": {"Key": "LINKED_ACCOUNT", "Values": [account_id]}},
        {"Dimensions": {"Key": "RECORD_TYPE", "Values": ["Usage"]}},
    ]
    if service is not None:
        clauses.append({"Dimensions": {"Key": "SERVICE", "Values": [service]}})
    return {"And": clauses}


def _time_period(start: date, end: date) -> dict[str, str]:
    return {"Start": start.isoformat(), "End": end.isoformat()}


def _iter_groups(pages: list[dict[str, Any]]):
    for page in pages:
        for result in page.get("ResultsByTime", []):
            yield from result.get("Groups", [])


def _group_amount(group: dict[str, Any]) -> Decimal:
    raw = group.get("Metrics", {}).get(COST_METRIC, {}).get("Amount", "0")
    return Decimal(validate_cost_amount(raw))


@dataclass
class _QueryRun:
    """Per-aggregation request bookkeeping."""

    client: Any
    account_id: str
    requests: int = 0
    truncated: bool = False


# ── Aggregator ───────────────────────────────────────────────────


class CostExplorerAggregator:
    """Aggregates Cost Explorer usage for one linked account.

    Parameters
    ----------
    clients:
        Factory used to build the ``ce`` client lazily.
    credentials:
        Assumed-role credentials for the Cost Explorer client.
    role_arn:
        Role the credentials belong to; part of the client cache key.
    remaining_time:
        Optional probe returning seconds left before the caller's deadline.
    sleep:
        Awaitable delay, injectable for tests.
    """

    def __init__(
        self,
        *,
        clients: AwsClientFactory | None = None,
        credentials: AwsCredentials | None = None,
        role_arn: str | None = None,
        profile: str | None = None,
        remaining_time: RemainingTime | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._clients = clients
        self._credentials = credentials
        self._role_arn = role_arn
        self._profile = profile
        self._remaining_time = remaining_time
        self._sleep = sleep
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            clients = self._clients or AwsClientFactory()
            self._client = clients.client(
                "ce",
                region=COST_EXPLORER_REGION,
                credentials=self._credentials,
                role_arn=self._role_arn,
                profile=self._profile,
            )
        return self._client

    # ── Public entry points ──────────────────────────────────────

    async def get_cost_report(
        self, account_id: str, start_date: str | date, end_date: str | date
    ) -> CostReport:
        """Resource-level report over ``[start_date, end_date)`` of any length."""
        start, end = self._validate_range(start_date, end_date)
        run = _QueryRun(client=self._ensure_client(), account_id=account_id)
        resource_window, fallback_window = split_billing_window(start, end)
        log = logger.bind(account_id=account_id, start_date=str(start), end_date=str(end))
        log.info(
            "cost_explorer.query_started",
            resource_window=[str(d) for d in resource_window],
            fallback_window=[str(d) for d in fallback_window] if fallback_window else None,
        )

        items = await self._resource_window_items(run, *resource_window)
        if fallback_window is not None:
            items.extend(
                await self._service_level_items(run, *fallback_window, NO_RESOURCE_FOR_WINDOW)
            )
        return self._build_report(run, start, end, items)

    async def get_resource_costs(
        self, account_id: str, start_date: str | date, end_date: str | date
    ) -> CostReport:
        """Resource-level report for a range that must fit inside the 14-day lookback."""
        start, end = self._validate_range(start_date, end_date)
        days = (end - start).days
        if days > RESOURCE_LOOKBACK_DAYS:
            raise ResourceWindowExceededError(
                f"Resource-level cost data covers at most {RESOURCE_LOOKBACK_DAYS} days; "
                f"requested {days} days ({start} to {end})",
                errors=[FieldError(field="end_date", message="range exceeds 14 days")],
            )
        run = _QueryRun(client=self._ensure_client(), account_id=account_id)
        items = await self._resource_window_items(run, start, end)
        return self._build_report(run, start, end, items)

    async def get_service_costs(
        self, account_id: str, start_date: str | date, end_date: str | date
    ) -> ServiceCostReport:
        """Service-level report aggregated in integer cents."""
        start, end = self._validate_range(start_date, end_date)
        run = _QueryRun(client=self._ensure_client(), account_id=account_id)
        pages = await self._paginate(
            run,
            run.client.get_cost_and_usage,
            {
                "TimePeriod": _time_period(start, end),
                "Granularity": "DAILY",
                "Metrics": [COST_METRIC],
                "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
                "Filter": _usage_filter(account_id),
            },
            query="service_costs",
            page_estimate=PAGE_TIME_ESTIMATE_SECONDS,
        )
        cents_by_service: dict[str, int] = {}
        for group in _iter_groups(pages):
            keys = group.get("Keys") or ["Unknown"]
            service = sanitize_service_name(keys[0])
            cents = int(_group_amount(group).quantize(_CENT, rounding=ROUND_HALF_UP) * 100)
            cents_by_service[service] = cents_by_service.get(service, 0) + cents

        rows = sorted(cents_by_service.items(), key=lambda kv: (-kv[1], kv[0]))
        return ServiceCostReport(
            account_id=account_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            total_cost=sum(cents_by_service.values()) / 100,
            costs_by_service=[ServiceCost(service_name=s, cost=c / 100) for s, c in rows],
            is_partial=run.truncated,
        )

    # ── Windows ──────────────────────────────────────────────────

    async def _resource_window_items(
        self, run: _QueryRun, start: date, end: date
    ) -> list[CostLineItem]:
        services = await self._services_with_cost(run, start, end)
        items: list[CostLineItem] = []
        for service in services:
            try:
                items.extend(await self._resource_items_for_service(run, service, start, end))
            except ClientError as exc:
                reason = classify_degraded_error(exc)
                if reason is None:
                    raise
                logger.warning(
                    "cost_explorer.resource_level_unavailable",
                    account_id=run.account_id,
                    service=service,
                    reason=reason.value,
                    error_code=exc.response.get("Error", {}).get("Code"),
                )
                # Rows already collected would double count against the fallback totals.
                return await self._service_level_items(
                    run, start, end, degraded_resource_name(reason)
                )
        return items

    async def _services_with_cost(self, run: _QueryRun, start: date, end: date) -> list[str]:
        pages = await self._paginate(
            run,
            run.client.get_cost_and_usage,
            {
                "TimePeriod": _time_period(start, end),
                "Granularity": "MONTHLY",
                "Metrics": [COST_METRIC],
                "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
                "Filter": _usage_filter(run.account_id),
            },
            query="service_list",
            page_estimate=SERVICE_LIST_PAGE_TIME_ESTIMATE_SECONDS,
        )
        totals: dict[str, Decimal] = {}
        with localcontext(_DECIMAL_CONTEXT):
            for group in _iter_groups(pages):
                keys = group.get("Keys") or []
                if not keys or not keys[0]:
                    continue
                totals[keys[0]] = totals.get(keys[0], Decimal(0)) + _group_amount(group)
        services = [s for s, total in totals.items() if total != 0]
        services.sort(key=lambda s: (-totals[s], s))
        logger.debug("cost_explorer.services_found", account_id=run.account_id, count=len(services))
        return services

    async def _resource_items_for_service(
        self, run: _QueryRun, service: str, start: date, end: date
    ) -> list[CostLineItem]:
        pages = await self._paginate(
            run,
            run.client.get_cost_and_usage_with_resources,
            {
                "TimePeriod": _time_period(start, end),
                "Granularity": "DAILY",
                "Metrics": [COST_METRIC],
                "GroupBy": [
                    {"Type": "DIMENSION", "Key": "RESOURCE_ID"},
                    {"Type": "DIMENSION", "Key": "REGION"},
                ],
                "Filter": _usage_filter(run.account_id, service),
            },
            query="resource_costs",
            page_estimate=PAGE_TIME_ESTIMATE_SECONDS,
        )
        service_name = sanitize_service_name(service)
        totals: dict[tuple[str, str], Decimal] = {}
        with localcontext(_DECIMAL_CONTEXT):
            for group in _iter_groups(pages):
                keys = group.get("Keys") or []
                resource_id = (keys[0] if keys else "").strip()
                region = sanitize_region(keys[1] if len(keys) > 1 else None)
                name = sanitize_resource_name(resource_id) if resource_id else ""
                key = (name or NO_RESOURCE_FOR_SERVICE, region)
                totals[key] = totals.get(key, Decimal(0)) + _group_amount(group)
        return [
            CostLineItem(
                resource_name=name,
                service_name=service_name,
                region=region,
                cost=_format_decimal(total),
            )
            for (name, region), total in totals.items()
            if total != 0
        ]

    async def _service_level_items(
        self, run: _QueryRun, start: date, end: date, resource_name: str
    ) -> list[CostLineItem]:
        pages = await self._paginate(
            run,
            run.client.get_cost_and_usage,
            {
                "TimePeriod": _time_period(start, end),
                "Granularity": "DAILY",
                "Metrics": [COST_METRIC],
                "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
                "Filter": _usage_filter(run.account_id),
            },
            query="fallback_costs",
            page_estimate=PAGE_TIME_ESTIMATE_SECONDS,
        )
        totals: dict[str, Decimal] = {}
        with localcontext(_DECIMAL_CONTEXT):
            for group in _iter_groups(pages):
                keys = group.get("Keys") or ["Unknown"]
                service = sanitize_service_name(keys[0])
                totals[service] = totals.get(service, Decimal(0)) + _group_amount(group)
        return [
            CostLineItem(
                resource_name=resource_name,
                service_name=service,
                region=GLOBAL_REGION,
                cost=_format_decimal(total),
            )
            for service, total in totals.items()
            if total != 0
        ]

    # ── Requests ─────────────────────────────────────────────────

    async def _paginate(
        self,
        run: _QueryRun,
        operation: Callable[..., dict[str, Any]],
        request: dict[str, Any],
        *,
        query: str,
        page_estimate: float,
    ) -> list[dict[str, Any]]:
        pages: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            if len(pages) >= MAX_PAGES:
                logger.warning(
                    "cost_explorer.page_limit_reached",
                    query=query,
                    account_id=run.account_id,
                    pages=len(pages),
                    max_pages=MAX_PAGES,
                )
                run.truncated = True
                break
            if pages and self._remaining_time is not None:
                remaining = self._remaining_time()
                if remaining < page_estimate * 2:
                    logger.warning(
                        "cost_explorer.time_budget_exhausted",
                        query=query,
                        account_id=run.account_id,
                        pages=len(pages),
                        remaining_seconds=round(remaining, 3),
                    )
                    run.truncated = True
                    break

            params = dict(request)
            if token:
                params["NextPageToken"] = token
            response = await self._request(run, operation, params)
            pages.append(response)
            token = response.get("NextPageToken")
            if not token:
                break
        return pages

    async def _request(
        self,
        run: _QueryRun,
        operation: Callable[..., dict[str, Any]],
        params: dict[str, Any],
    ) -> dict[str, Any]:
        if run.requests > 0:
            await self._sleep(RATE_LIMIT_DELAY_SECONDS)
        run.requests += 1
        return await call_aws(operation, **params)

    # ── Assembly ─────────────────────────────────────────────────

    @staticmethod
    def _validate_range(start_date: str | date, end_date: str | date) -> tuple[date, date]:
        start = parse_calendar_date(start_date, "start_date")
        end = parse_calendar_date(end_date, "end_date")
        if start >= end:
            raise ValidationError(
                f"Invalid date range: start_date {start} must be before end_date {end}",
                errors=[FieldError(field="start_date", message="must be before end_date")],
            )
        return start, end

    @staticmethod
    def _build_report(
        run: _QueryRun, start: date, end: date, items: list[CostLineItem]
    ) -> CostReport:
        ordered = sort_line_items(items)
        total = decimal_total(ordered)
        if run.truncated:
            logger.warning(
                "cost_explorer.partial_results",
                account_id=run.account_id,
                line_items=len(ordered),
            )
        logger.info(
            "cost_explorer.query_complete",
            account_id=run.account_id,
            requests=run.requests,
            line_items=len(ordered),
            total_cost=_format_decimal(total),
        )
        return CostReport(
            account_id=run.account_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            total_cost=float(total),
            costs_by_resource=ordered,
            is_partial=run.truncated,
        )
