"""Data models for cost reports, payloads and events."""

from leasecosts.models.base import (
    AwsCredentials,
    BillingWindow,
    CostLineItem,
    CostReport,
    DegradedReason,
    ServiceCost,
    ServiceCostReport,
)
from leasecosts.models.events import (
    LeaseCostsGeneratedDetail,
    LeaseDetails,
    LeaseTerminatedEvent,
    ScheduledCollectionTask,
    parse_model,
)

__all__ = [
    "AwsCredentials",
    "BillingWindow",
    "CostLineItem",
    "CostReport",
    "DegradedReason",
    "LeaseCostsGeneratedDetail",
    "LeaseDetails",
    "LeaseTerminatedEvent",
    "ScheduledCollectionTask",
    "ServiceCost",
    "ServiceCostReport",
    "parse_model",
]
