"""Bounded retry with exponential backoff for rate-limited calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import is_rate_limit_error
from .models import RateLimitPolicy

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, float], None]


async def run_with_retry(
    action: Callable[[], Awaitable[Any]],
    policy: RateLimitPolicy,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Run an async action, retrying only on rate-limit errors.

    Args:
        action: Zero-argument coroutine function to call
        policy: Retry and backoff settings
        on_retry: Called as on_retry(attempt, backoff_ms) before each wait
        sleep: Coroutine used to wait, in seconds

    Returns:
        Whatever the action returns on its first successful attempt

    Raises:
        The first non-retryable error, or the last rate-limit error once
        max_retries is exhausted.
    """
    backoff_ms = policy.initial_backoff_ms
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_retries + 1):
        try:
            return await action()
        except Exception as e:
            if not is_rate_limit_error(e):
                raise
            last_error = e

        if attempt == policy.max_retries:
            break

        retry_number = attempt + 1
        if on_retry is not None:
            on_retry(retry_number, backoff_ms)

        logger.warning(
            f"Rate limited, retry {retry_number}/{policy.max_retries} "
            f"in {backoff_ms}ms: {last_error}"
        )
        await sleep(backoff_ms / 1000)
        backoff_ms = min(backoff_ms * policy.backoff_multiplier, policy.max_backoff_ms)

    raise last_error
