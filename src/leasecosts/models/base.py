"""Core data models shared across the lease cost pipeline."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class DegradedReason(StrEnum):
    """Why resource-level Cost Explorer data could not be used."""

    NOT_ENABLED = "resource-level data is not enabled in Cost Explorer"
    MISSING_PERMISSION = "IAM policy is missing ce:GetCostAndUsageWithResources"


class CostLineItem(BaseModel):
    """One row of a resource-level cost breakdown.

    ``cost`` is the exact decimal string accumulated from Cost Explorer
    amounts; it is never rounded.
    """

    resource_name: str
    service_name: str
    region: str
    cost: str


class CostReport(BaseModel):
    """Result of one resource-level aggregation run over ``[start_date, end_date)``."""

    account_id: str
    start_date: str
    end_date: str
    total_cost: float
    costs_by_resource: list[CostLineItem] = Field(default_factory=list)
    is_partial: bool = False


class ServiceCost(BaseModel):
    service_name: str
    cost: float


class ServiceCostReport(BaseModel):
    """Service-level report variant, aggregated in integer cents."""

    account_id: str
    start_date: str
    end_date: str
    total_cost: float
    costs_by_service: list[ServiceCost] = Field(default_factory=list)
    is_partial: bool = False


class BillingWindow(BaseModel):
    """Day-aligned ``[start_date, end_date)`` range, dates as ``YYYY-MM-DD``."""

    start_date: str
    end_date: str


class AwsCredentials(BaseModel):
    """Temporary credentials returned by STS AssumeRole."""

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    session_token: str = Field(repr=False)
    expiration: datetime | None = None
