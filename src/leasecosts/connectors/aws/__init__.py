"""boto3-backed connectors, each with a lazily built client."""

from leasecosts.connectors.aws.assume_role import RoleAssumer, assume_role
from leasecosts.connectors.aws.clients import AwsClientFactory, ClientCache
from leasecosts.connectors.aws.events import CostEventEmitter
from leasecosts.connectors.aws.metrics import MetricsPublisher
from leasecosts.connectors.aws.scheduler import ScheduleManager
from leasecosts.connectors.aws.storage import ReportStorage

__all__ = [
    "AwsClientFactory",
    "ClientCache",
    "CostEventEmitter",
    "MetricsPublisher",
    "ReportStorage",
    "RoleAssumer",
    "ScheduleManager",
    "assume_role",
]
