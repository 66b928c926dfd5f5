"""Lambda configuration via environment variables.

One settings class per entry point. Construction fails at cold start when a
required variable is missing or out of bounds; ``load_settings`` turns that
into a ``ConfigurationError`` naming the offending variables.
"""

from __future__ import annotations

import re
from typing import TypeVar

import pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from leasecosts.exceptions import ConfigurationError

IAM_ROLE_ARN_PATTERN = re.compile(r"^arn:aws[a-z-]*:iam::[0-9]{12}:role/[\w+=,.@/-]{1,512}$")
LAMBDA_ARN_PATTERN = re.compile(
    r"^arn:aws[a-z-]*:lambda:[a-z]{2}(-[a-z]+)+-[0-9]+:[0-9]{12}:function:[A-Za-z0-9_-]{1,64}"
    r"(:[A-Za-z0-9$_-]+)?$"
)
EVENT_BUS_NAME_PATTERN = re.compile(r"^[.\-_A-Za-z0-9]{1,256}$")

_BASE_CONFIG = {"env_prefix": "", "extra": "ignore", "case_sensitive": False}

SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def _check_iam_role_arn(value: str) -> str:
    if not IAM_ROLE_ARN_PATTERN.match(value):
        raise ValueError("must be an IAM role ARN (arn:aws:iam::<account>:role/<name>)")
    return value


class CollectorSettings(BaseSettings):
    """Settings for the cost collector Lambda."""

    model_config = _BASE_CONFIG

    cost_explorer_role_arn: str
    s3_bucket_name: str = Field(min_length=3, max_length=63)
    event_bus_name: str
    scheduler_group: str = Field(min_length=1, max_length=64)
    isb_api_base_url: str
    isb_jwt_secret_path: str = Field(min_length=1)
    isb_service_email: str = "ndx+costs@dsit.gov.uk"

    billing_padding_hours: int = Field(default=8, ge=0, le=168)
    presigned_url_expiry_days: int = Field(default=7, ge=1, le=7)
    metrics_namespace: str = "ISBLeaseCosts"
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    @field_validator("cost_explorer_role_arn")
    @classmethod
    def _role_arn(cls, value: str) -> str:
        return _check_iam_role_arn(value)

    @field_validator("event_bus_name")
    @classmethod
    def _event_bus_name(cls, value: str) -> str:
        if not EVENT_BUS_NAME_PATTERN.match(value):
            raise ValueError("must contain only letters, digits, '.', '-' or '_' (max 256)")
        return value

    @field_validator("isb_api_base_url")
    @classmethod
    def _base_url(cls, value: str) -> str:
        if not re.match(r"^https?://[^\s/$.?#][^\s]*$", value):
            raise ValueError("must be an http(s) URL")
        return value.rstrip("/")


class SchedulerSettings(BaseSettings):
    """Settings for the lease-terminated scheduling Lambda."""

    model_config = _BASE_CONFIG

    scheduler_group: str = Field(min_length=1, max_length=64)
    scheduler_role_arn: str
    cost_collector_lambda_arn: str
    delay_hours: int = Field(default=24, ge=0, le=720)
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    @field_validator("scheduler_role_arn")
    @classmethod
    def _role_arn(cls, value: str) -> str:
        return _check_iam_role_arn(value)

    @field_validator("cost_collector_lambda_arn")
    @classmethod
    def _lambda_arn(cls, value: str) -> str:
        if not LAMBDA_ARN_PATTERN.match(value):
            raise ValueError("must be a Lambda function ARN")
        return value


class CleanupSettings(BaseSettings):
    """Settings for the stale schedule cleanup Lambda."""

    model_config = _BASE_CONFIG

    scheduler_group: str = Field(min_length=1, max_length=64)
    max_schedule_age_hours: int = Field(default=72, ge=1)
    aws_region: str = "us-east-1"
    log_level: str = "INFO"


def load_settings(settings_cls: type[SettingsT], **overrides: object) -> SettingsT:
    """Build a settings object, converting validation failures to ConfigurationError."""
    try:
        return settings_cls(**overrides)
    except pydantic.ValidationError as exc:
        variables = sorted({str(err["loc"][0]).upper() for err in exc.errors() if err["loc"]})
        messages = [
            f"{str(err['loc'][0]).upper() if err['loc'] else '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(messages),
            extra={"variables": variables},
        ) from exc
