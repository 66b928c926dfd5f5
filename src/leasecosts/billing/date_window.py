"""Billing window calculation.

Cost Explorer works on whole UTC calendar days with an exclusive end date, so
a lease's active period is padded and then rounded outward to day boundaries.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from leasecosts.exceptions import FieldError, ValidationError
from leasecosts.models.base import BillingWindow
from leasecosts.observability.logging import sanitize_for_log
from leasecosts.utils.timestamps import parse_timestamp


def _parse_field(name: str, value: str | datetime) -> datetime:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raw = sanitize_for_log(value)
        raise ValidationError(
            f"Invalid {name}: {raw!r} is not a valid timestamp",
            errors=[FieldError(field=name, message=f"not a valid timestamp: {raw!r}")],
        ) from exc


def floor_to_day(instant: datetime) -> date:
    return instant.date()


def ceil_to_day(instant: datetime) -> date:
    """Next calendar day unless ``instant`` is exactly midnight."""
    if instant.timetz().replace(tzinfo=None) == time(0, 0):
        return instant.date()
    return instant.date() + timedelta(days=1)


def calculate_billing_window(
    lease_start: str | datetime,
    lease_end: str | datetime,
    padding_hours: int = 8,
) -> BillingWindow:
    """Compute the padded ``[start_date, end_date)`` window for a lease.

    Both instants are converted to UTC first, so DST never shifts a day
    boundary. ``start = floor(lease_start - padding)`` and
    ``end = ceil(lease_end + padding)``.
    """
    if isinstance(padding_hours, bool) or not isinstance(padding_hours, int) or padding_hours < 0:
        raise ValidationError(
            f"Invalid padding_hours: {padding_hours!r}",
            errors=[FieldError(field="padding_hours", message="must be a non-negative integer")],
        )

    start = _parse_field("lease_start", lease_start)
    end = _parse_field("lease_end", lease_end)
    padding = timedelta(hours=padding_hours)

    return BillingWindow(
        start_date=floor_to_day(start - padding).isoformat(),
        end_date=ceil_to_day(end + padding).isoformat(),
    )
