"""Bounded exponential backoff for store operations."""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from learning_progress.errors import RetryExhaustedError, TransientStoreError

logger = structlog.get_logger()

T = TypeVar("T")


class RetryPolicy:
    """Re-runs an async operation on transient failures.

    Delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` plus a
    uniform jitter in ``[0, max_jitter]``. Retrying stops early when the next
    sleep would overrun ``timeout`` seconds measured from the first attempt.

    Args:
        max_attempts: Total attempts including the first one.
        base_delay: Backoff base in seconds.
        max_jitter: Upper bound of the random jitter in seconds.
        timeout: Overall budget in seconds for all attempts and sleeps.
        retry_on: Exception types considered transient.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.25,
        max_jitter: float = 0.25,
        timeout: float = 5.0,
        retry_on: tuple[type[BaseException], ...] = (TransientStoreError,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.timeout = timeout
        self.retry_on = retry_on
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_jitter=settings.retry_max_jitter_seconds,
            timeout=settings.retry_timeout_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.max_jitter)

    async def run(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Raises:
            RetryExhaustedError: Every attempt failed with a transient error.
        """
        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.retry_on as e:
                logger.warning(
                    "operation_failed",
                    operation=name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                if attempt >= self.max_attempts:
                    logger.error("operation_retries_exhausted", operation=name, attempts=attempt)
                    raise RetryExhaustedError(name, attempt, e) from e

                delay = self.delay_for(attempt)
                elapsed = time.monotonic() - started
                if elapsed + delay > self.timeout:
                    logger.error(
                        "operation_retry_budget_exceeded",
                        operation=name,
                        attempts=attempt,
                        elapsed_seconds=round(elapsed, 3),
                    )
                    raise RetryExhaustedError(name, attempt, e) from e

                await self._sleep(delay)
