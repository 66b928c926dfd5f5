"""UTC timestamp parsing and formatting helpers."""

from __future__ import annotations

import re
from datetime import UTC, datetime

# ISO-8601 instant with an explicit UTC designator or offset.
ISO_INSTANT_PATTERN = re.compile(
    r"^[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?(Z|[+-][0-9]{2}:[0-9]{2})$"
)
CALENDAR_DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC. Raises ``ValueError`` on anything
    ``datetime.fromisoformat`` rejects.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"not a timestamp: {value!r}")
        parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def is_iso_instant(value: str) -> bool:
    """True for a strict ISO-8601 instant string that also parses."""
    if not ISO_INSTANT_PATTERN.match(value):
        return False
    try:
        parse_timestamp(value)
    except ValueError:
        return False
    return True


def isoformat_utc(value: datetime) -> str:
    """Render as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(UTC)
