"""Structured exception hierarchy for the lease cost pipeline.

All domain exceptions extend ``LeaseCostsError`` and serialize to a
problem-details style dict via ``to_problem_detail()`` so Lambda handlers
can log and return a uniform error body.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldError:
    """A single failed field check."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class LeaseCostsError(Exception):
    """Base exception for all lease cost pipeline errors."""

    status_code: int = 500
    error_type: str = "about:blank"
    title: str = "Internal Error"
    retryable: bool = False

    def __init__(
        self,
        detail: str = "",
        *,
        instance: str = "",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.detail = detail or self.title
        self.instance = instance
        self.extra = extra or {}
        super().__init__(self.detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """Problem Details style JSON object."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            body["instance"] = self.instance
        if self.extra:
            body.update(self.extra)
        return body


class ValidationError(LeaseCostsError):
    status_code = 422
    error_type = "urn:leasecosts:error:validation"
    title = "Validation Error"

    def __init__(
        self,
        detail: str = "",
        *,
        errors: list[FieldError] | None = None,
        instance: str = "",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.errors = list(errors or [])
        merged = dict(extra or {})
        if self.errors:
            merged["errors"] = [e.to_dict() for e in self.errors]
        super().__init__(detail, instance=instance, extra=merged)


class ConfigurationError(LeaseCostsError):
    status_code = 500
    error_type = "urn:leasecosts:error:configuration"
    title = "Configuration Error"


class NotFoundError(LeaseCostsError):
    status_code = 404
    error_type = "urn:leasecosts:error:not-found"
    title = "Not Found"


class UpstreamError(LeaseCostsError):
    """A dependency answered with a non-retryable failure."""

    status_code = 502
    error_type = "urn:leasecosts:error:upstream"
    title = "Upstream Service Error"


class TransientError(UpstreamError):
    """A dependency failure that may succeed on retry."""

    status_code = 503
    error_type = "urn:leasecosts:error:transient"
    title = "Transient Upstream Error"
    retryable = True


class StorageError(LeaseCostsError):
    status_code = 502
    error_type = "urn:leasecosts:error:storage"
    title = "Report Storage Error"


class EventEmissionError(LeaseCostsError):
    status_code = 502
    error_type = "urn:leasecosts:error:event-emission"
    title = "Event Emission Error"


class ResourceWindowExceededError(ValidationError):
    error_type = "urn:leasecosts:error:resource-window-exceeded"
    title = "Resource Window Exceeded"


@contextmanager
def error_context(
    error_cls: type[LeaseCostsError] = LeaseCostsError,
    detail: str = "",
    **kwargs: Any,
) -> Iterator[None]:
    """Context manager that wraps unexpected exceptions into structured errors.

    Usage::

        with error_context(StorageError, detail="S3 upload failed"):
            response = client.put_object(...)
    """
    try:
        yield
    except LeaseCostsError:
        raise
    except Exception as exc:
        msg = f"{detail}: {exc}" if detail else str(exc)
        raise error_cls(msg, **kwargs) from exc
