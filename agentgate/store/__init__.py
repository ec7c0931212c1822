"""
Counter store: retry-wrapped key-value persistence over SQLite.

This module provides:
- CounterStore: put/get/query/scan/update/delete with retry
- SQLiteAdapter: aiosqlite backend with exclusive transactions
- StoreRetry: exponential backoff with non-retryable classification
- Request types (KeySchema, KeyCondition, Condition, UpdateSpec, Page)
"""
from .adapter import DatabaseAdapter, SQLiteAdapter, SQLiteTransaction
from .counter_store import CounterStore
from .errors import (
    NON_RETRYABLE_ERRORS,
    ConditionalCheckFailedError,
    ItemNotFoundError,
    StoreError,
    StoreUnavailableError,
    StoreValidationError,
)
from .models import Condition, KeyCondition, KeySchema, Page, UpdateSpec, matches_all
from .retry import StoreRetry

__all__ = [
    "CounterStore",
    "DatabaseAdapter",
    "SQLiteAdapter",
    "SQLiteTransaction",
    "StoreRetry",
    "KeySchema",
    "KeyCondition",
    "Condition",
    "UpdateSpec",
    "Page",
    "matches_all",
    "StoreError",
    "StoreValidationError",
    "ItemNotFoundError",
    "ConditionalCheckFailedError",
    "StoreUnavailableError",
    "NON_RETRYABLE_ERRORS",
]
