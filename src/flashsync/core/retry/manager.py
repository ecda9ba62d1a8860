"""
Retry manager for executing coroutines with exponential backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from flashsync.core.retry.policy import RetryPolicy
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.retry.manager")

T = TypeVar("T")


class RetryManager:
    """
    Runs an async callable under a RetryPolicy.

    Examples:
        >>> manager = RetryManager()
        >>> async def fetch_data():
        ...     return await client.get('/data')
        >>> result = await manager.execute(fetch_data, policy=RetryPolicy(max_attempts=2))
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] | None = None):
        """
        Initialize RetryManager.

        Args:
            sleep: Awaitable sleep used between attempts (default: asyncio.sleep)
        """
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        policy: RetryPolicy,
        name: str | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute async function with retry logic.

        Args:
            func: Async function to execute
            *args: Positional arguments to pass to func
            policy: Retry policy
            name: Label for log messages (default: func.__name__)
            **kwargs: Keyword arguments to pass to func

        Returns:
            Result of successful execution

        Raises:
            Exception: Final exception after all retries exhausted, or the
                first non-retryable exception
        """
        label = name or getattr(func, "__name__", "call")

        for attempt in range(policy.max_attempts + 1):
            try:
                logger.debug(f"Executing {label} (attempt {attempt + 1}/{policy.max_attempts + 1})")
                result = await func(*args, **kwargs)
                if attempt > 0:
                    logger.info(f"{label} succeeded after {attempt + 1} attempts")
                return result

            except Exception as e:
                if not policy.should_retry(e, attempt):
                    logger.warning(f"{label} failed after {attempt + 1} attempts: {e}")
                    raise

                delay = policy.get_delay(attempt)
                logger.warning(f"{label} attempt {attempt + 1} failed: {e}. Retrying in {delay:.2f}s...")
                await self._sleep(delay)

        # Loop always returns or raises
        raise RuntimeError(f"Retry logic error for {label}")
