"""
Retry logic for model invocations.

Implements exponential backoff for transient provider failures. Requests the
provider rejected outright (validation, access denied, unknown model, other
4xx responses except throttling) are not retried.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .models import InvocationError, NonRetryableInvocationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_ERROR_NAMES = {
    "ValidationException",
    "AccessDeniedException",
    "ResourceNotFoundException",
    "BadRequestError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "UnprocessableEntityError",
}

# Throttling and request timeouts are transient even though they are 4xx
RETRYABLE_STATUS_CODES = {408, 409, 429}


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by a provider exception, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class InvocationRetry:
    """
    Retry wrapper with exponential backoff for model calls.

    Delay before retry n (0-based) is delay_base * 2^n, capped at delay_max.

    Usage:
        retry = InvocationRetry(max_attempts=3, delay_base=1.0)
        response = await retry.execute(lambda: adapter.call(request))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay_base: float = 1.0,
        delay_max: float = 30.0,
    ):
        """
        Initialize retry handler.

        Args:
            max_attempts: Total number of attempts, including the first
            delay_base: Base delay in seconds for exponential backoff
            delay_max: Maximum delay between retries
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay_base = delay_base
        self.delay_max = delay_max

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Execute operation with retry logic.

        Raises:
            NonRetryableInvocationError: On the first non-retryable failure
            InvocationError: If all attempts fail
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_exception = e

                if not self._is_retryable(e):
                    logger.error(f"Non-retryable model error: {type(e).__name__}: {e}")
                    if isinstance(e, NonRetryableInvocationError):
                        raise
                    raise NonRetryableInvocationError(
                        f"Model invocation failed: {e}", e, attempt + 1
                    ) from e

                if attempt >= self.max_attempts - 1:
                    break

                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Model call failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {type(e).__name__}: {e}"
                )
                await asyncio.sleep(delay)

        logger.error(
            f"Model call failed after {self.max_attempts} attempts: {last_exception}"
        )
        raise InvocationError(
            f"Model invocation failed after {self.max_attempts} attempts: {last_exception}",
            last_exception,
            self.max_attempts,
        ) from last_exception

    def _calculate_delay(self, attempt: int) -> float:
        """Formula: min(delay_max, delay_base * 2^attempt)"""
        return min(self.delay_base * (2 ** attempt), self.delay_max)

    def _is_retryable(self, error: Exception) -> bool:
        """
        Check if error is retryable.

        Override this method to add provider-specific error handling.
        """
        if isinstance(error, NonRetryableInvocationError):
            return False
        if type(error).__name__ in NON_RETRYABLE_ERROR_NAMES:
            return False
        status = status_code_of(error)
        if status is not None and 400 <= status < 500:
            return status in RETRYABLE_STATUS_CODES
        return True
