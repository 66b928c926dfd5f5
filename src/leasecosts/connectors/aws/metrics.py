"""CloudWatch business metrics for completed collections."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.utils.timestamps import utcnow

logger = structlog.get_logger()

DEFAULT_NAMESPACE = "ISBLeaseCosts"
SERVICE_DIMENSION = "LeaseCostCollection"


class MetricsPublisher:
    """Best-effort publisher: failures are logged, never raised."""

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.namespace = namespace
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._clock = clock
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("cloudwatch", region=self._region)
        return self._client

    async def publish_collection_metrics(
        self,
        *,
        account_id: str,
        total_cost: float,
        resource_count: int,
        duration_seconds: float,
    ) -> None:
        now = self._clock()
        dimensions = [
            {"Name": "AccountId", "Value": account_id},
            {"Name": "Service", "Value": SERVICE_DIMENSION},
        ]
        metric_data = [
            {
                "MetricName": name,
                "Value": value,
                "Unit": unit,
                "Timestamp": now,
                "Dimensions": dimensions,
            }
            for name, value, unit in (
                ("TotalCost", float(total_cost), "None"),
                ("ResourceCount", float(resource_count), "Count"),
                ("ProcessingDuration", float(duration_seconds), "Seconds"),
            )
        ]
        try:
            client = self._ensure_client()
            await call_aws(client.put_metric_data, Namespace=self.namespace, MetricData=metric_data)
        except Exception as exc:
            logger.error("metrics_publish_failed", namespace=self.namespace, error=str(exc))
            return
        logger.info(
            "metrics_published",
            namespace=self.namespace,
            total_cost=total_cost,
            resource_count=resource_count,
            duration_seconds=duration_seconds,
        )
