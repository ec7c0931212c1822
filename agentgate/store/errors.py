"""
Error taxonomy for the counter store.

Non-retryable errors describe a request that will never succeed as written
(bad schema, missing item, failed condition) and propagate immediately.
Everything else is treated as transient and retried; once the retry budget is
spent the store raises StoreUnavailableError.
"""
from typing import Optional


class StoreError(Exception):
    """Base exception for counter store failures."""
    pass


class StoreValidationError(StoreError):
    """Raised when a request does not match the collection's key schema."""
    pass


class ItemNotFoundError(StoreError):
    """Raised when an update targets an item that does not exist."""
    pass


class ConditionalCheckFailedError(StoreError):
    """Raised when a conditional put/update finds its condition false."""

    def __init__(self, message: str, item: Optional[dict] = None):
        self.item = item
        super().__init__(message)


class StoreUnavailableError(StoreError):
    """Raised when a store operation still fails after all retry attempts."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(message)


NON_RETRYABLE_ERRORS = (
    StoreValidationError,
    ItemNotFoundError,
    ConditionalCheckFailedError,
)
