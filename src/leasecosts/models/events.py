"""Payload and event models with strict field validation.

Four contracts cross process boundaries:

- ``LeaseTerminatedEvent``: inbound EventBridge envelope from the leases service.
- ``ScheduledCollectionTask``: internal payload handed from the scheduler to the
  collector. Unknown fields are dropped.
- ``LeaseDetails``: leases API response. Unknown fields are kept.
- ``LeaseCostsGeneratedDetail``: outbound notification detail. Fields may only
  be added as optional; existing ones are never removed, renamed or retyped.

``parse_model`` converts pydantic failures into the domain ``ValidationError``
with field-qualified messages.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, TypeVar

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from leasecosts.exceptions import FieldError, ValidationError
from leasecosts.utils.timestamps import CALENDAR_DATE_PATTERN, is_iso_instant

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)
STRICT_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
ACCOUNT_ID_PATTERN = re.compile(r"^[0-9]{12}$")
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")
_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7e]")

ModelT = TypeVar("ModelT", bound=BaseModel)


# ── Field validators ─────────────────────────────────────────────


def _uuid_v4(value: str) -> str:
    if not UUID_V4_PATTERN.match(value):
        raise ValueError("must be a valid UUID v4 (xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx)")
    return value


def _strict_email(value: str) -> str:
    if _ANSI_ESCAPE.search(value):
        raise ValueError("email contains ANSI escape codes")
    if _NON_PRINTABLE_ASCII.search(value):
        raise ValueError("email contains non-ASCII or control characters")
    if not STRICT_EMAIL_PATTERN.match(value):
        raise ValueError("email must contain only letters, digits and ._%+- characters")
    return value


def _account_id(value: str) -> str:
    if not ACCOUNT_ID_PATTERN.match(value):
        raise ValueError("AWS account ID must be exactly 12 digits")
    return value


def _iso_instant(value: str) -> str:
    if not is_iso_instant(value):
        raise ValueError("must be an ISO 8601 timestamp with timezone")
    return value


def _calendar_date(value: str) -> str:
    if not CALENDAR_DATE_PATTERN.match(value):
        raise ValueError("must be a date in YYYY-MM-DD format")
    return value


def _http_url(value: str) -> str:
    if not re.match(r"^https?://[^\s/$.?#][^\s]*$", value):
        raise ValueError("must be an http(s) URL")
    return value


LeaseUuid = Annotated[str, Field(max_length=36), AfterValidator(_uuid_v4)]
StrictEmail = Annotated[str, Field(max_length=254), AfterValidator(_strict_email)]
AccountId = Annotated[str, Field(max_length=12), AfterValidator(_account_id)]
IsoInstant = Annotated[str, Field(max_length=30), AfterValidator(_iso_instant)]
CalendarDate = Annotated[str, Field(max_length=10), AfterValidator(_calendar_date)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Internal payload ─────────────────────────────────────────────


class ScheduledCollectionTask(_CamelModel):
    """Payload the scheduler hands to the cost collector."""

    lease_id: LeaseUuid
    user_email: StrictEmail
    account_id: AccountId
    lease_end_timestamp: IsoInstant
    schedule_name: str = Field(max_length=64)


# ── External API response ────────────────────────────────────────


class LeaseDetails(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    start_date: IsoInstant
    expiration_date: IsoInstant
    aws_account_id: AccountId
    status: str = Field(max_length=64)


# ── Outbound notification ────────────────────────────────────────


class LeaseCostsGeneratedDetail(_CamelModel):
    """Detail of the ``LeaseCostsGenerated`` event. Consumers dedupe on ``lease_id``."""

    lease_id: LeaseUuid
    user_email: StrictEmail
    account_id: AccountId
    total_cost: float = Field(ge=0)
    currency: Literal["USD"] = "USD"
    start_date: CalendarDate
    end_date: CalendarDate
    csv_url: Annotated[str, Field(max_length=2048), AfterValidator(_http_url)]
    url_expires_at: IsoInstant


# ── Inbound EventBridge envelope ─────────────────────────────────


class LeaseKey(_CamelModel):
    user_email: StrictEmail
    uuid: LeaseUuid


class TerminationReason(BaseModel):
    type: str = Field(max_length=128)


class LeaseTerminatedDetail(_CamelModel):
    lease_id: LeaseKey
    account_id: AccountId
    reason: TerminationReason


class LeaseTerminatedEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    detail_type: Literal["LeaseTerminated"] = Field(alias="detail-type")
    source: str = Field(max_length=256)
    time: IsoInstant | None = None
    detail: LeaseTerminatedDetail


# ── Parsing ──────────────────────────────────────────────────────


def field_errors(exc: pydantic.ValidationError) -> list[FieldError]:
    """Flatten pydantic errors into dotted-path ``FieldError`` entries."""
    errors = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"]) or "<root>"
        message = err["msg"].removeprefix("Value error, ")
        errors.append(FieldError(field=path, message=message))
    return errors


def parse_model(model_cls: type[ModelT], data: Any, *, source: str) -> ModelT:
    """Validate ``data`` as ``model_cls`` or raise a field-qualified ValidationError."""
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = field_errors(exc)
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors)
        raise ValidationError(f"Invalid {source}: {summary}", errors=errors) from exc
