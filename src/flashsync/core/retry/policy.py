"""
Retry policy configuration for upstream fetches.

Exponential backoff with jitter between attempts on one egress path.
"""

import random
from dataclasses import dataclass


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior when a call fails.

    Examples:
        >>> policy = RetryPolicy(max_attempts=3)

        >>> policy = RetryPolicy(
        ...     max_attempts=5,
        ...     initial_delay=2.0,
        ...     max_delay=60.0,
        ...     retryable_exceptions=(ConnectionError, TimeoutError)
        ... )
    """

    # Maximum number of retries (total executions = max_attempts + 1)
    max_attempts: int = 2

    # Initial delay before first retry (seconds)
    initial_delay: float = 1.0

    # Maximum delay between retries (seconds)
    max_delay: float = 30.0

    # delay = initial_delay * base^attempt
    exponential_base: float = 2.0

    # ±25% random jitter on each delay
    jitter: bool = True

    # Only retry these exception types (None = retry all exceptions)
    retryable_exceptions: tuple[type[BaseException], ...] | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    def should_retry(self, exception: BaseException, attempt: int) -> bool:
        """
        Determine if we should retry after this exception.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-indexed)
        """
        if attempt >= self.max_attempts:
            return False

        if self.retryable_exceptions is not None:
            return isinstance(exception, self.retryable_exceptions)

        return True

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry using exponential backoff.

        delay = min(initial_delay * base^attempt * jitter, max_delay)
        """
        delay = self.initial_delay * (self.exponential_base**attempt)

        if self.jitter:
            delay *= random.uniform(0.75, 1.25)

        # max_delay applied after jitter so it is a hard upper bound
        return min(delay, self.max_delay)

