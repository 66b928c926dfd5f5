"""structlog configuration for Lambda (CloudWatch JSON lines)."""

from __future__ import annotations

import logging
import re
import sys

import structlog

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7e]")

_configured = False


def configure_logging(level: str = "INFO", *, force: bool = False) -> None:
    """Route structlog through JSON rendering on stdout.

    Idempotent per process so warm Lambda invocations keep the cold-start setup.
    """
    global _configured
    if _configured and not force:
        return

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    _configured = True


def sanitize_for_log(value: object, max_length: int = 256) -> str:
    """Strip ANSI escapes and non-printable characters from untrusted text."""
    text = _ANSI_ESCAPE.sub("", str(value))
    text = _NON_PRINTABLE.sub("", text)
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text
