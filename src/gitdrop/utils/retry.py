"""Reusable retry policy for async operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def linear_backoff(base_seconds: float) -> Callable[[int], float]:
    """Return a backoff function that waits ``base_seconds * attempt``."""

    def _backoff(attempt: int) -> float:
        return base_seconds * attempt

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation on selected exceptions.

    Attributes:
        max_attempts: Total attempts, including the first one.
        backoff: Maps the number of the failed attempt (1-based) to a delay.
        retry_on: Exception types that trigger another attempt.
        sleep: Awaitable sleep, injectable for tests.
    """

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(0.5))
    retry_on: tuple[type[BaseException], ...] = ()
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def is_retryable(self, error: BaseException) -> bool:
        return bool(self.retry_on) and isinstance(error, self.retry_on)

    async def run(self, operation: Callable[[int], Awaitable[T]]) -> T:
        """Call ``operation(attempt)`` until it succeeds or attempts run out.

        The last retryable error is re-raised once ``max_attempts`` is reached;
        non-retryable errors propagate immediately.
        """
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except Exception as err:
                if not self.is_retryable(err) or attempt >= self.max_attempts:
                    raise
                delay = self.backoff(attempt)
                logger.debug(
                    "Attempt %d/%d failed with %s; retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    type(err).__name__,
                    delay,
                )
                await self.sleep(delay)
                attempt += 1
