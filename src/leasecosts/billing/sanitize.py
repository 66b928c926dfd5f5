"""Boundary sanitizers for values read from Cost Explorer responses."""

from __future__ import annotations

import re

import structlog

from leasecosts.exceptions import FieldError, ValidationError
from leasecosts.observability.logging import sanitize_for_log

logger = structlog.get_logger()

MAX_RESOURCE_NAME_LENGTH = 2048
MAX_SERVICE_NAME_LENGTH = 256
MAX_COST_STRING_LENGTH = 50
TRUNCATION_SUFFIX = "...[truncated]"
GLOBAL_REGION = "global"

AWS_REGION_PATTERN = re.compile(r"^([a-z]{2}-[a-z]+-[0-9]+|global)$")
COST_AMOUNT_PATTERN = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")
# Tab, LF and CR survive; CSV quoting handles them.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_ANSI_ESCAPE = re.compile(r"\x1b(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def sanitize_resource_name(raw: str) -> str:
    cleaned = _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", raw))
    if len(cleaned) != len(raw):
        logger.warning(
            "sanitize.control_chars_removed",
            field="resource_name",
            removed=len(raw) - len(cleaned),
        )
    if len(cleaned) > MAX_RESOURCE_NAME_LENGTH:
        logger.warning("sanitize.truncated", field="resource_name", length=len(cleaned))
        cleaned = cleaned[: MAX_RESOURCE_NAME_LENGTH - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX
    return cleaned


def sanitize_service_name(raw: str) -> str:
    cleaned = _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", raw))
    if len(cleaned) > MAX_SERVICE_NAME_LENGTH:
        logger.warning("sanitize.truncated", field="service_name", length=len(cleaned))
        cleaned = cleaned[:MAX_SERVICE_NAME_LENGTH]
    return cleaned


def sanitize_region(raw: str | None) -> str:
    """Return a well-formed region code, or ``global``."""
    trimmed = (raw or "").strip()
    if AWS_REGION_PATTERN.match(trimmed):
        return trimmed
    if trimmed:
        logger.warning("sanitize.invalid_region", region=sanitize_for_log(trimmed))
    return GLOBAL_REGION


def validate_cost_amount(raw: str) -> str:
    """Return ``raw`` unchanged if it is a plain decimal number string."""
    if not isinstance(raw, str):
        raise ValidationError(
            "Invalid cost amount: not a string",
            errors=[FieldError(field="Amount", message="must be a decimal string")],
        )
    if len(raw) > MAX_COST_STRING_LENGTH:
        raise ValidationError(
            f"Invalid cost amount: exceeds maximum length of {MAX_COST_STRING_LENGTH}",
            errors=[FieldError(field="Amount", message="too long")],
        )
    if not COST_AMOUNT_PATTERN.match(raw):
        raise ValidationError(
            f"Invalid cost amount format: {sanitize_for_log(raw)!r}",
            errors=[FieldError(field="Amount", message="must match -?digits(.digits)")],
        )
    return raw
