"""
Retry - bounded exponential backoff for fallible async operations.

Attempt 1 runs immediately. Retryable failures (network errors, timeouts,
5xx/429 responses) wait ``min(base_delay * 2**(attempt - 1), max_delay)``
before the next attempt. Anything else propagates at once. When the attempt
budget is spent the last error is re-raised as-is, so callers can still
classify it.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from hwsentry.services.errors import PermanentUpstreamError, TransientUpstreamError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retries."""

    max_attempts: int = 3
    base_delay: float = 2.0  # Seconds
    max_delay: float = 8.0  # Seconds
    jitter: float = 0.0  # Fraction of the delay added at random, 0 disables

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after ``attempt`` (1-based) has failed."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def worst_case_backoff(self) -> float:
        """Total backoff across all attempts, ignoring jitter."""
        return sum(
            min(self.base_delay * (2 ** (n - 1)), self.max_delay)
            for n in range(1, self.max_attempts)
        )


def is_retryable(error: BaseException) -> bool:
    """Classify an error as worth another attempt."""
    if isinstance(error, TransientUpstreamError):
        return True
    if isinstance(error, PermanentUpstreamError):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status == 429
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    return False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` with bounded exponential backoff.

    Args:
        operation: Zero-argument coroutine function to call
        policy: Attempt budget and delays (uses defaults if not specified)
        sleep: Awaitable sleep, injectable for tests
        label: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last error raised by ``operation``, unchanged.
    """
    policy = policy or RetryPolicy()
    attempt = 1

    while True:
        try:
            result = await operation()
            if attempt > 1:
                logger.info(
                    f"{label} succeeded on attempt {attempt}/{policy.max_attempts}"
                )
            return result
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    f"{label} failed after {attempt} attempts: {type(e).__name__}: {e}"
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} attempt {attempt}/{policy.max_attempts} failed "
                f"({type(e).__name__}: {e}), retrying in {delay:.1f}s"
            )
            await sleep(delay)
            attempt += 1
