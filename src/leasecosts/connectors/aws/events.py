"""EventBridge publisher for ``LeaseCostsGenerated`` notifications."""

from __future__ import annotations

from typing import Any

import structlog

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.exceptions import EventEmissionError
from leasecosts.models.events import LeaseCostsGeneratedDetail

logger = structlog.get_logger()

EVENT_SOURCE = "isb-costs"
DETAIL_TYPE = "LeaseCostsGenerated"


class CostEventEmitter:
    """Publishes completion events to a custom event bus.

    Delivery is at-least-once; consumers deduplicate on ``leaseId``.
    """

    def __init__(
        self,
        event_bus_name: str,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
    ) -> None:
        self.event_bus_name = event_bus_name
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("events", region=self._region)
        return self._client

    async def emit_lease_costs_generated(self, detail: LeaseCostsGeneratedDetail) -> None:
        client = self._ensure_client()
        response = await call_aws(
            client.put_events,
            Entries=[
                {
                    "EventBusName": self.event_bus_name,
                    "Source": EVENT_SOURCE,
                    "DetailType": DETAIL_TYPE,
                    "Detail": detail.model_dump_json(by_alias=True),
                }
            ],
        )

        failed = response.get("FailedEntryCount", 0) or 0
        if failed > 0:
            errors = "; ".join(
                f"{entry.get('ErrorCode')}: {entry.get('ErrorMessage')}"
                for entry in response.get("Entries", [])
                if entry.get("ErrorCode")
            )
            raise EventEmissionError(
                "Failed to emit LeaseCostsGenerated event: "
                f"leaseId={detail.lease_id}, accountId={detail.account_id}, "
                f"totalCost=${detail.total_cost:.2f}, csvUrl={detail.csv_url}. "
                f"EventBridge error: {errors}",
                extra={"lease_id": detail.lease_id, "failed_entry_count": failed},
            )

        logger.info(
            "lease_costs_event_emitted",
            event_bus=self.event_bus_name,
            lease_id=detail.lease_id,
            account_id=detail.account_id,
            total_cost=detail.total_cost,
        )
