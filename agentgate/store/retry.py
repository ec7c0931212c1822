"""
Retry logic for counter store operations.

Implements exponential backoff for transient persistence failures while
letting request-level failures (validation, not-found, failed conditions)
propagate on the first attempt.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import NON_RETRYABLE_ERRORS, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreRetry:
    """
    Retry wrapper with exponential backoff.

    Delay before retry n (0-based) is base_delay * 2^n, capped at max_delay.
    No sleep follows the final attempt.

    Usage:
        retry = StoreRetry(max_attempts=3, base_delay=0.1)
        item = await retry.execute(lambda: store_op(), "get usage_counters")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
    ):
        """
        Initialize retry handler.

        Args:
            max_attempts: Total number of attempts, including the first
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum delay between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "store operation",
    ) -> T:
        """
        Execute operation with retry logic.

        Args:
            operation: Async callable to execute
            description: Label used in log messages

        Returns:
            Result of operation

        Raises:
            StoreUnavailableError: If every attempt fails with a retryable error
            StoreError: Non-retryable errors are raised immediately
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except NON_RETRYABLE_ERRORS:
                raise
            except Exception as e:
                last_exception = e

                if attempt >= self.max_attempts - 1:
                    break

                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {type(e).__name__}: {e}"
                )
                await asyncio.sleep(delay)

        logger.error(
            f"{description} failed after {self.max_attempts} attempts: "
            f"{type(last_exception).__name__}: {last_exception}"
        )
        raise StoreUnavailableError(
            f"{description} failed after {self.max_attempts} attempts",
            last_exception,
            self.max_attempts,
        ) from last_exception

    def _calculate_delay(self, attempt: int) -> float:
        """Formula: min(max_delay, base_delay * 2^attempt)"""
        return min(self.base_delay * (2 ** attempt), self.max_delay)
