"""
Recovery Strategies

Retry with backoff for idempotent reads, and bounded polling for values
that lag behind a confirmed write (balances after a transfer, receipts).
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, Sequence, TypeVar

from .errors import AmberInkError, classify_error

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


class RetryStrategy:
    """
    Retries an operation while it fails with a recoverable error.

    Only use for reads. Writes are never retried here because a failed
    response does not prove the transaction was not broadcast.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(self, operation: Callable[[], Coroutine[Any, Any, T]]) -> T:
        last_error: Optional[AmberInkError] = None

        for attempt in range(self.config.max_attempts):
            try:
                return await operation()
            except Exception as e:
                error = classify_error(e)
                last_error = error

                if not self.should_retry(error, attempt):
                    if error is e:
                        raise
                    raise error from e

                delay = self.config.get_delay(attempt)
                self.logger.warning(
                    f"Attempt {attempt + 1}/{self.config.max_attempts} failed: {error.code.value}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        raise last_error or AmberInkError("All retry attempts exhausted")

    def should_retry(self, error: AmberInkError, attempt: int) -> bool:
        if attempt >= self.config.max_attempts - 1:
            return False
        return error.recoverable


async def poll_until(
    read: Callable[[], Coroutine[Any, Any, T]],
    predicate: Callable[[T], bool],
    delays: Sequence[float],
    sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
) -> T:
    """
    Sleep for each delay in turn and re-read until ``predicate`` holds.

    Returns the last value read whether or not the predicate was met, so the
    caller decides what an unmet condition means.
    """
    value: Optional[T] = None
    for delay in delays:
        await sleep(delay)
        value = await read()
        if predicate(value):
            return value
    if value is None:
        value = await read()
    return value
