"""Exponential backoff retry for transient service failures."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from media_gate.core.settings import settings
from media_gate.services.errors import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff parameters."""

    max_attempts: int
    base_delay: float
    max_delay: float
    jitter: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retry number ``attempt + 1``."""
        return min(self.base_delay * (2 ** attempt) + random.random() * self.jitter, self.max_delay)


def store_retry_policy() -> RetryPolicy:
    """Retry policy for durable-store calls."""
    return RetryPolicy(
        max_attempts=settings.store_retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )


def publish_retry_policy() -> RetryPolicy:
    """Retry policy for CDN publishing calls."""
    return RetryPolicy(
        max_attempts=settings.publish_retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str = "operation",
) -> T:
    """Execute an async callable, retrying only on ``TransientServiceError``.

    Args:
        coro_factory: Zero-arg callable that returns a fresh awaitable each attempt.
        policy: Attempt ceiling and backoff parameters.
        operation: Label used in log messages.

    Returns:
        The result of the first successful call.

    Raises:
        The last ``TransientServiceError`` once attempts are exhausted, or any
        other exception immediately.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await coro_factory()
        except TransientServiceError as exc:
            if attempt == policy.max_attempts - 1:
                logger.warning(
                    "%s failed after %d attempts: %s", operation, policy.max_attempts, exc
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s retry %d/%d after %.1fs: %s",
                operation,
                attempt + 1,
                policy.max_attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("RetryPolicy.max_attempts must be at least 1")
