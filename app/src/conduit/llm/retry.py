"""
Retry with exponential backoff, per-attempt timeout and pluggable
retryability.

Used around opening a provider stream only. A stream that has started
delivering parts is never retried from here.

Usage:
    policy = RetryPolicy(max_retries=3, timeout_ms=30000)
    response = await with_retry(lambda: transport.open(request), policy)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "etimedout",
    "enotfound",
    "name or service not known",
    "temporary failure in name resolution",
    "network",
    "rate limit",
    "temporarily unavailable",
    "429",
    "503",
    "504",
)


class RetryTimeoutError(TimeoutError):
    """An attempt exceeded RetryPolicy.timeout_ms."""


@dataclass
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0
    timeout_ms: float | None = None
    is_retryable: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, BaseException, float], None] | None = None


def is_retryable_error(error: BaseException) -> bool:
    """Substring match of the error text against known transient failures."""
    message = (str(error) or type(error).__name__).lower()
    return any(pattern in message for pattern in DEFAULT_RETRYABLE_PATTERNS)


async def with_timeout(awaitable: Awaitable[T], timeout_ms: float) -> T:
    """Await with a deadline; cancels the awaitable and raises RetryTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise RetryTimeoutError(f"Operation timeout after {timeout_ms:.0f}ms") from None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """
    Run operation() until it succeeds, the error is not retryable, or
    policy.max_retries retries have been spent.

    The last error is re-raised as-is so callers can match on its type.
    """
    policy = policy or RetryPolicy()
    is_retryable = policy.is_retryable or is_retryable_error
    delay = policy.initial_delay_ms

    attempt = 0
    while True:
        try:
            if policy.timeout_ms:
                return await with_timeout(operation(), policy.timeout_ms)
            return await operation()
        except Exception as error:
            if attempt >= policy.max_retries or not is_retryable(error):
                raise

            current_delay = min(delay, policy.max_delay_ms)
            attempt += 1
            if policy.on_retry is not None:
                try:
                    policy.on_retry(attempt, error, current_delay)
                except Exception:
                    logger.warning("on_retry hook raised", exc_info=True)

            logger.info(
                f"Retrying in {current_delay:.0f}ms "
                f"(attempt {attempt}/{policy.max_retries}): {error}"
            )
            await asyncio.sleep(current_delay / 1000)
            delay *= policy.backoff_multiplier
