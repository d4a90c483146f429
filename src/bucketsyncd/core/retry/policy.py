"""
Retry policy configuration for broker dialing and storage operations.

Exponential backoff with a small additive jitter: the delay after failed
attempt ``i`` (0-indexed) is ``initial_delay * base**i`` plus up to
``max_jitter`` seconds.
"""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for bounded retry with exponential backoff.

    Examples:
        >>> # Upstream defaults: 5 attempts, sleeping 1s, 2s, 4s, 8s (+ <100ms)
        >>> policy = RetryPolicy()

        >>> # Fewer attempts for a quick check
        >>> policy = RetryPolicy(max_attempts=2)
    """

    # Total number of invocations, including the first one
    max_attempts: int = 5

    # Delay after the first failed attempt (seconds)
    initial_delay: float = 1.0

    # Exponential backoff base (delay = initial_delay * base^attempt)
    exponential_base: float = 2.0

    # Upper bound (exclusive) of the additive random jitter, in seconds
    max_jitter: float = 0.1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")
        if not 0 <= self.max_jitter < 1.0:
            raise ValueError("max_jitter must be in [0, 1)")

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before the next attempt.

        Args:
            attempt: Failed attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.initial_delay * (self.exponential_base**attempt)
        if self.max_jitter:
            delay += random.uniform(0, self.max_jitter)
        return delay

    def has_next(self, attempt: int) -> bool:
        """Whether another attempt follows failed attempt ``attempt``."""
        return attempt + 1 < self.max_attempts


DEFAULT_RETRY_POLICY = RetryPolicy()
