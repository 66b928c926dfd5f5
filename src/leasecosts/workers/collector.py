"""End-to-end cost collection for one terminated lease.

Steps run strictly in order and any failure aborts the rest:

1. validate the scheduled task payload
2. fetch lease details
3. assume the Cost Explorer role
4. compute the billing window and aggregate costs
5. render and upload the CSV
6. presign a download URL
7. emit ``LeaseCostsGenerated``
8. delete the originating schedule (best-effort)
9. publish business metrics (best-effort)

The upload always precedes the notification, so no event is ever emitted
for a report that was not stored. Re-running the same task emits a second
notification; consumers deduplicate on lease id.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from leasecosts.billing.cost_explorer import CostExplorerAggregator, RemainingTime
from leasecosts.billing.csv_report import generate_csv
from leasecosts.billing.date_window import calculate_billing_window
from leasecosts.config.settings import CollectorSettings
from leasecosts.connectors.aws.assume_role import RoleAssumer
from leasecosts.connectors.aws.clients import AwsClientFactory
from leasecosts.connectors.aws.events import CostEventEmitter
from leasecosts.connectors.aws.metrics import MetricsPublisher
from leasecosts.connectors.aws.scheduler import ScheduleManager
from leasecosts.connectors.aws.storage import ReportStorage, object_key_for
from leasecosts.connectors.leases import LeasesClient
from leasecosts.exceptions import FieldError, ValidationError
from leasecosts.models.base import AwsCredentials
from leasecosts.models.events import (
    LeaseCostsGeneratedDetail,
    ScheduledCollectionTask,
    parse_model,
)
from leasecosts.utils.timestamps import isoformat_utc, parse_timestamp

logger = structlog.get_logger()

AggregatorFactory = Callable[[AwsCredentials, RemainingTime | None], CostExplorerAggregator]


class CollectionResult(BaseModel):
    """Summary returned by the collector Lambda."""

    lease_id: str
    account_id: str
    start_date: str
    end_date: str
    total_cost: float
    resource_count: int
    csv_key: str
    csv_url: str
    url_expires_at: str
    etag: str
    checksum: str
    is_partial: bool = False
    duration_seconds: float


class CostCollector:
    """Runs the collection workflow with injected collaborators.

    Parameters
    ----------
    settings:
        Collector configuration (role ARN, bucket, padding, URL expiry).
    aggregator_factory:
        Builds a Cost Explorer aggregator for the assumed-role credentials.
    """

    def __init__(
        self,
        settings: CollectorSettings,
        *,
        leases: LeasesClient,
        roles: RoleAssumer,
        aggregator_factory: AggregatorFactory,
        storage: ReportStorage,
        emitter: CostEventEmitter,
        schedules: ScheduleManager,
        metrics: MetricsPublisher,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._leases = leases
        self._roles = roles
        self._aggregator_factory = aggregator_factory
        self._storage = storage
        self._emitter = emitter
        self._schedules = schedules
        self._metrics = metrics
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: CollectorSettings, clients: AwsClientFactory | None = None
    ) -> CostCollector:
        clients = clients or AwsClientFactory(region=settings.aws_region)

        def build_aggregator(
            credentials: AwsCredentials, remaining_time: RemainingTime | None
        ) -> CostExplorerAggregator:
            return CostExplorerAggregator(
                clients=clients,
                credentials=credentials,
                role_arn=settings.cost_explorer_role_arn,
                remaining_time=remaining_time,
            )

        return cls(
            settings,
            leases=LeasesClient(
                settings.isb_api_base_url,
                settings.isb_jwt_secret_path,
                clients=clients,
                region=settings.aws_region,
                service_email=settings.isb_service_email,
            ),
            roles=RoleAssumer(clients=clients, region=settings.aws_region),
            aggregator_factory=build_aggregator,
            storage=ReportStorage(
                settings.s3_bucket_name, clients=clients, region=settings.aws_region
            ),
            emitter=CostEventEmitter(
                settings.event_bus_name, clients=clients, region=settings.aws_region
            ),
            schedules=ScheduleManager(
                settings.scheduler_group, clients=clients, region=settings.aws_region
            ),
            metrics=MetricsPublisher(
                settings.metrics_namespace, clients=clients, region=settings.aws_region
            ),
        )

    async def collect(
        self,
        payload: Mapping[str, Any],
        *,
        remaining_time: RemainingTime | None = None,
    ) -> CollectionResult:
        started = self._clock()
        task = parse_model(ScheduledCollectionTask, payload, source="scheduler payload")
        log = logger.bind(
            component="cost_collector",
            lease_id=task.lease_id,
            account_id=task.account_id,
            schedule_name=task.schedule_name,
        )
        log.info("collector.started")

        lease = await self._leases.get_lease_details(task.user_email, task.lease_id)
        if lease.aws_account_id != task.account_id:
            log.warning("collector.account_mismatch", lease_account_id=lease.aws_account_id)
        self._check_lease_dates(lease.start_date, task.lease_end_timestamp, log)

        credentials = await self._roles.assume(self.settings.cost_explorer_role_arn)
        log.info("collector.role_assumed", elapsed_seconds=self._elapsed(started))

        window = calculate_billing_window(
            lease.start_date, task.lease_end_timestamp, self.settings.billing_padding_hours
        )
        log.info(
            "collector.billing_window",
            start_date=window.start_date,
            end_date=window.end_date,
            padding_hours=self.settings.billing_padding_hours,
        )

        aggregator = self._aggregator_factory(credentials, remaining_time)
        report = await aggregator.get_cost_report(
            task.account_id, window.start_date, window.end_date
        )
        log.info(
            "collector.costs_aggregated",
            total_cost=report.total_cost,
            resource_count=len(report.costs_by_resource),
            is_partial=report.is_partial,
            elapsed_seconds=self._elapsed(started),
        )

        csv_body = generate_csv(report)
        key = object_key_for(task.lease_id)
        upload = await self._storage.upload_csv(key, csv_body)
        log.info(
            "collector.upload_complete",
            bucket=self._storage.bucket,
            key=key,
            etag=upload.etag,
            checksum=upload.checksum,
            size_bytes=len(csv_body.encode("utf-8")),
        )

        presigned = await self._storage.presigned_url(key, self.settings.presigned_url_expiry_days)

        detail = parse_model(
            LeaseCostsGeneratedDetail,
            {
                "leaseId": task.lease_id,
                "userEmail": task.user_email,
                "accountId": task.account_id,
                "totalCost": report.total_cost,
                "currency": "USD",
                "startDate": window.start_date,
                "endDate": window.end_date,
                "csvUrl": presigned.url,
                "urlExpiresAt": isoformat_utc(presigned.expires_at),
            },
            source="LeaseCostsGenerated event detail",
        )
        await self._emitter.emit_lease_costs_generated(detail)
        log.info("collector.event_emitted", elapsed_seconds=self._elapsed(started))

        await self._delete_schedule(task.schedule_name, log)

        duration = self._elapsed(started)
        await self._metrics.publish_collection_metrics(
            account_id=task.account_id,
            total_cost=report.total_cost,
            resource_count=len(report.costs_by_resource),
            duration_seconds=duration,
        )
        log.info("collector.completed", elapsed_seconds=duration)

        return CollectionResult(
            lease_id=task.lease_id,
            account_id=task.account_id,
            start_date=window.start_date,
            end_date=window.end_date,
            total_cost=report.total_cost,
            resource_count=len(report.costs_by_resource),
            csv_key=key,
            csv_url=presigned.url,
            url_expires_at=detail.url_expires_at,
            etag=upload.etag,
            checksum=upload.checksum,
            is_partial=report.is_partial,
            duration_seconds=duration,
        )

    async def _delete_schedule(self, schedule_name: str, log: Any) -> None:
        """Best-effort; the daily cleanup job catches anything left behind."""
        try:
            await self._schedules.delete_schedule(schedule_name)
        except Exception as exc:
            log.error("collector.schedule_delete_failed", error=str(exc))

    @staticmethod
    def _check_lease_dates(start: str, end: str, log: Any) -> None:
        errors = []
        try:
            start_at = parse_timestamp(start)
        except ValueError:
            errors.append(FieldError(field="startDate", message="not a valid timestamp"))
        try:
            end_at = parse_timestamp(end)
        except ValueError:
            errors.append(FieldError(field="leaseEndTimestamp", message="not a valid timestamp"))
        if errors:
            raise ValidationError("Invalid lease dates", errors=errors)
        if start_at >= end_at:
            raise ValidationError(
                f"Invalid lease dates: startDate ({start}) must be before "
                f"leaseEndTimestamp ({end})",
                errors=[FieldError(field="startDate", message="must be before leaseEndTimestamp")],
            )
        log.info(
            "collector.lease_dates",
            start_date=start,
            end_date=end,
            duration_days=round((end_at - start_at).total_seconds() / 86400),
        )

    def _elapsed(self, started: float) -> float:
        return round(self._clock() - started, 3)
