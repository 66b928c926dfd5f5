"""Generic async retry with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 1.0

    def delay_for(self, retry_number: int, rand: Callable[[], float] = random.random) -> float:
        """Seconds to wait before retry ``retry_number`` (1-based)."""
        backoff = min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)
        return backoff + rand() * self.jitter


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[BaseException], bool],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Await ``operation`` until it succeeds, fails non-retryably, or attempts run out.

    Non-retryable errors propagate immediately. After the last attempt the
    final error is re-raised unchanged.
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(exc),
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_scheduled",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
            attempt += 1
