"""
Backoff retrier for executing operations with bounded exponential backoff.

Used identically for broker dialing, reconnection and storage client
construction.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from bucketsyncd.core.retry.policy import DEFAULT_RETRY_POLICY, RetryPolicy
from bucketsyncd.exceptions import RetryExhaustedError
from bucketsyncd.utils.logging import get_logger

logger = get_logger("bucketsyncd.retry")

T = TypeVar("T")


class BackoffRetrier:
    """
    Execute an operation until it succeeds or the attempt budget runs out.

    The operation may be a coroutine function or a plain callable. There is no
    sleep after the final failed attempt; exhaustion raises
    RetryExhaustedError chained from the last error.

    Examples:
        >>> retrier = BackoffRetrier(RetryPolicy(max_attempts=5))
        >>> connection = await retrier.execute(
        ...     aio_pika.connect, url, operation_name="dial broker"
        ... )
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize BackoffRetrier.

        Args:
            policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            sleep: Awaitable sleep, injectable for tests
        """
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[..., T] | Callable[..., Awaitable[T]],
        *args: Any,
        operation_name: str | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute ``operation(*args, **kwargs)`` with retry.

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: After ``policy.max_attempts`` failures
        """
        name = operation_name or getattr(operation, "__name__", "operation")
        last_error: Exception | None = None

        for attempt in range(self.policy.max_attempts):
            try:
                result = operation(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                if attempt > 0:
                    logger.info(f"{name} succeeded after {attempt + 1} attempts")
                return result  # type: ignore[return-value]
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if not self.policy.has_next(attempt):
                    break
                delay = self.policy.get_delay(attempt)
                logger.warning(
                    f"{name} attempt {attempt + 1}/{self.policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await self._sleep(delay)

        assert last_error is not None
        raise RetryExhaustedError(name, self.policy.max_attempts, last_error) from last_error
