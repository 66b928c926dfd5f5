"""Integration tests for the AWS connectors using the moto mock backend.

These tests run the real connector code paths (client factory, executor
offloading, request shapes) against moto-emulated S3, EventBridge,
EventBridge Scheduler, STS, Secrets Manager and CloudWatch.
"""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import boto3
import httpx
import pytest
from moto import mock_aws

from factories import (
    ACCOUNT_ID,
    BUCKET,
    EVENT_BUS,
    LEASE_ID,
    ROLE_ARN,
    SCHEDULER_GROUP,
    make_collector_settings,
    make_lease_details,
    make_report,
    make_task_payload,
)
from leasecosts.connectors.aws.assume_role import RoleAssumer
from leasecosts.connectors.aws.clients import AwsClientFactory
from leasecosts.connectors.aws.events import CostEventEmitter
from leasecosts.connectors.aws.metrics import MetricsPublisher
from leasecosts.connectors.aws.scheduler import ScheduleManager
from leasecosts.connectors.aws.storage import ReportStorage
from leasecosts.connectors.leases import LeasesClient
from leasecosts.models.base import AwsCredentials
from leasecosts.models.events import LeaseCostsGeneratedDetail, LeaseDetails
from leasecosts.workers.cleanup import StaleScheduleCleaner
from leasecosts.workers.collector import CostCollector

pytestmark = pytest.mark.integration

REGION = "us-east-1"
KEY = f"{LEASE_ID}.csv"
TARGET_ARN = "arn:aws:lambda:us-east-1:123456789012:function:lease-costs-collector"
SCHEDULER_ROLE = "arn:aws:iam::123456789012:role/lease-costs-scheduler"


@pytest.fixture()
def mock_aws_env():
    """Context-managed moto mock for use in async tests."""
    with mock_aws():
        yield


@pytest.fixture()
def clients(mock_aws_env: None) -> AwsClientFactory:
    return AwsClientFactory(region=REGION)


@pytest.fixture()
def bucket(mock_aws_env: None) -> str:
    boto3.client("s3", region_name=REGION).create_bucket(Bucket=BUCKET)
    return BUCKET


@pytest.fixture()
def event_bus(mock_aws_env: None) -> str:
    boto3.client("events", region_name=REGION).create_event_bus(Name=EVENT_BUS)
    return EVENT_BUS


@pytest.fixture()
def schedule_group(mock_aws_env: None) -> str:
    boto3.client("scheduler", region_name=REGION).create_schedule_group(Name=SCHEDULER_GROUP)
    return SCHEDULER_GROUP


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class TestReportStorageMoto:
    @pytest.mark.asyncio
    async def test_upload_and_read_back(self, clients: AwsClientFactory, bucket: str) -> None:
        storage = ReportStorage(bucket, clients=clients, region=REGION)
        body = "Resource Name,Service,Region,Cost\ni-0abc,Amazon EC2,us-east-1,50.00"

        result = await storage.upload_csv(KEY, body)

        assert result.etag
        obj = boto3.client("s3", region_name=REGION).get_object(Bucket=bucket, Key=KEY)
        assert obj["Body"].read().decode("utf-8") == body
        assert obj["ContentType"] == "text/csv"
        assert obj["ServerSideEncryption"] == "AES256"

    @pytest.mark.asyncio
    async def test_presigned_url(self, clients: AwsClientFactory, bucket: str) -> None:
        now = datetime(2026, 2, 3, 15, 10, tzinfo=UTC)
        storage = ReportStorage(bucket, clients=clients, region=REGION, clock=lambda: now)
        await storage.upload_csv(KEY, "Resource Name,Service,Region,Cost")

        presigned = await storage.presigned_url(KEY, expires_in_days=7)

        url = httpx.URL(presigned.url)
        assert KEY in url.path
        assert url.params["response-content-type"] == "text/csv"
        assert presigned.expires_at == now + timedelta(days=7, minutes=-5)


# ---------------------------------------------------------------------------
# EventBridge
# ---------------------------------------------------------------------------


class TestCostEventEmitterMoto:
    @pytest.mark.asyncio
    async def test_emits_to_custom_bus(self, clients: AwsClientFactory, event_bus: str) -> None:
        emitter = CostEventEmitter(event_bus, clients=clients, region=REGION)
        detail = LeaseCostsGeneratedDetail(
            lease_id=LEASE_ID,
            user_email="user@example.com",
            account_id=ACCOUNT_ID,
            total_cost=12.34,
            start_date="2026-01-15",
            end_date="2026-02-03",
            csv_url="https://example.com/report.csv",
            url_expires_at="2026-02-10T14:55:00.000Z",
        )

        await emitter.emit_lease_costs_generated(detail)


# ---------------------------------------------------------------------------
# EventBridge Scheduler
# ---------------------------------------------------------------------------


class TestScheduleManagerMoto:
    @pytest.mark.asyncio
    async def test_create_get_list_delete(
        self, clients: AwsClientFactory, schedule_group: str
    ) -> None:
        manager = ScheduleManager(schedule_group, clients=clients, region=REGION)
        fire_at = datetime(2026, 2, 3, 15, 10, tzinfo=UTC)
        name = f"lease-costs-{LEASE_ID}"

        created = await manager.create_schedule(
            name,
            fire_at,
            target_arn=TARGET_ARN,
            role_arn=SCHEDULER_ROLE,
            payload=make_task_payload(),
        )

        assert created is True
        assert await manager.get_expression(name) == "at(2026-02-03T15:10:00)"
        assert [s["Name"] for s in await manager.list_all()] == [name]

        stored = boto3.client("scheduler", region_name=REGION).get_schedule(
            Name=name, GroupName=schedule_group
        )
        assert json.loads(stored["Target"]["Input"]) == make_task_payload()

        assert await manager.delete_schedule(name) is True
        assert await manager.delete_schedule(name) is False
        assert await manager.get_expression(name) is None

    @pytest.mark.asyncio
    async def test_cleanup_sweeps_old_schedules(
        self, clients: AwsClientFactory, schedule_group: str
    ) -> None:
        manager = ScheduleManager(schedule_group, clients=clients, region=REGION)
        now = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)
        for name, fire_at in (
            ("old", now - timedelta(hours=100)),
            ("new", now - timedelta(hours=1)),
        ):
            await manager.create_schedule(
                name, fire_at, target_arn=TARGET_ARN, role_arn=SCHEDULER_ROLE, payload={}
            )

        result = await StaleScheduleCleaner(manager, clock=lambda: now).run()

        assert result.deleted_names == ["old"]
        assert [s["Name"] for s in await manager.list_all()] == ["new"]


# ---------------------------------------------------------------------------
# STS / Secrets Manager / CloudWatch
# ---------------------------------------------------------------------------


class TestRoleAssumerMoto:
    @pytest.mark.asyncio
    async def test_assume_role(self, clients: AwsClientFactory) -> None:
        creds = await RoleAssumer(clients=clients, region=REGION).assume(ROLE_ARN)

        assert creds.access_key_id
        assert creds.secret_access_key
        assert creds.session_token
        assert creds.expiration is not None


class TestLeasesSecretMoto:
    @pytest.mark.asyncio
    async def test_token_signed_with_stored_secret(self, clients: AwsClientFactory) -> None:
        boto3.client("secretsmanager", region_name=REGION).create_secret(
            Name="/isb/jwt-secret", SecretString="moto-secret"
        )
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json=make_lease_details())
        )
        client = LeasesClient(
            "https://isb.example.com/api",
            "/isb/jwt-secret",
            clients=clients,
            region=REGION,
            transport=transport,
        )

        details = await client.get_lease_details("user@example.com", LEASE_ID)

        assert details.aws_account_id == ACCOUNT_ID


class TestMetricsPublisherMoto:
    @pytest.mark.asyncio
    async def test_publishes(self, clients: AwsClientFactory) -> None:
        publisher = MetricsPublisher(clients=clients, region=REGION)

        await publisher.publish_collection_metrics(
            account_id=ACCOUNT_ID, total_cost=12.34, resource_count=3, duration_seconds=2.5
        )

        metrics = boto3.client("cloudwatch", region_name=REGION).list_metrics(
            Namespace="ISBLeaseCosts"
        )["Metrics"]
        assert {m["MetricName"] for m in metrics} == {
            "TotalCost",
            "ResourceCount",
            "ProcessingDuration",
        }


# ---------------------------------------------------------------------------
# Collector with real storage, events and scheduler
# ---------------------------------------------------------------------------


class TestCollectorMoto:
    @pytest.mark.asyncio
    async def test_collect_end_to_end(
        self,
        clients: AwsClientFactory,
        bucket: str,
        event_bus: str,
        schedule_group: str,
    ) -> None:
        settings = make_collector_settings()
        schedules = ScheduleManager(schedule_group, clients=clients, region=REGION)
        await schedules.create_schedule(
            f"lease-costs-{LEASE_ID}",
            datetime(2026, 2, 3, 15, 10, tzinfo=UTC),
            target_arn=TARGET_ARN,
            role_arn=SCHEDULER_ROLE,
            payload=make_task_payload(),
        )

        leases = AsyncMock()
        leases.get_lease_details.return_value = LeaseDetails.model_validate(make_lease_details())
        roles = AsyncMock()
        roles.assume.return_value = AwsCredentials(
            access_key_id="ASIA", secret_access_key="s", session_token="t"
        )
        aggregator = AsyncMock()
        aggregator.get_cost_report.return_value = make_report(
            [("=HYPERLINK(\"x\")", "Amazon EC2", "us-east-1", "10.5")], total_cost=10.5
        )

        collector = CostCollector(
            settings,
            leases=leases,
            roles=roles,
            aggregator_factory=MagicMock(return_value=aggregator),
            storage=ReportStorage(bucket, clients=clients, region=REGION),
            emitter=CostEventEmitter(event_bus, clients=clients, region=REGION),
            schedules=schedules,
            metrics=MetricsPublisher(clients=clients, region=REGION),
        )

        result = await collector.collect(make_task_payload())

        body = boto3.client("s3", region_name=REGION).get_object(Bucket=bucket, Key=KEY)["Body"]
        assert body.read().decode("utf-8").split("\n") == [
            "Resource Name,Service,Region,Cost",
            '"\'=HYPERLINK(""x"")",Amazon EC2,us-east-1,10.5',
        ]
        assert result.total_cost == 10.5
        assert result.csv_url.startswith("https://")
        assert await schedules.list_all() == []
