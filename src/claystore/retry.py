"""
Caller-side retry with bounded exponential backoff.

The storage layer never retries on its own; callers that want retries wrap
whole operations with call_with_retry.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from claystore.core.errors import ChunkUploadFailed, RequestTimeout
from claystore.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Backoff schedule: base_delay, base_delay*multiplier, ... capped at max_delay."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    multiplier: float = 2.0
    max_delay: float = 8.0
    retry_on: Tuple[Type[BaseException], ...] = (
        RequestTimeout,
        ChunkUploadFailed,
        ConnectionError,
    )

    def delay_for(self, attempt: int) -> float:
        """Delay after the attempt-th failure (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


async def call_with_retry(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    operation: str = "operation",
) -> T:
    """
    Run fn, retrying retryable failures according to policy.

    Args:
        policy: Retry policy
        fn: Zero-argument coroutine factory; called once per attempt
        sleep: Awaitable sleep (defaults to asyncio.sleep)
        operation: Name used in log events

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or any non-retryable
        error immediately
    """
    if policy.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {policy.max_attempts}")
    if sleep is None:
        sleep = asyncio.sleep

    attempt = 1
    while True:
        try:
            return await fn()
        except policy.retry_on as error:
            if attempt >= policy.max_attempts:
                logger.error(
                    "retry_exhausted", operation=operation, attempts=attempt, error=str(error)
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay=delay,
                error=str(error),
            )
            await sleep(delay)
            attempt += 1
