"""
Usage governance: per-subject quotas backed by the counter store.

This module provides:
- RateLimiter: requests per fixed window
- TokenBudget: tokens per UTC day
- StorageQuota: cumulative bytes, with release
- DailyRequestLimit: requests per UTC day
- FreeTierGate: aggregate check used before every agent invocation

Usage:
    from agentgate.governance import FreeTierGate, RateLimiter

    limiter = RateLimiter(store, "usage_counters", limit=100, window_minutes=1)
    result = await limiter.check_and_consume("user-123")
    if not result.allowed:
        print(f"Retry after {result.retry_after}s")
"""

from .base import UsageGovernor
from .daily import DailyRequestLimit, DayWindowGovernor, TokenBudget
from .free_tier import FreeTierDecision, FreeTierGate, GovernanceDenied
from .models import DailyReport, QuotaKind, UsageCounter, UsageResult
from .rate_limiter import RateLimiter
from .storage_quota import StorageQuota, format_bytes

__all__ = [
    "UsageGovernor",
    "DayWindowGovernor",
    "RateLimiter",
    "TokenBudget",
    "StorageQuota",
    "DailyRequestLimit",
    "FreeTierGate",
    "FreeTierDecision",
    "GovernanceDenied",
    "QuotaKind",
    "UsageCounter",
    "UsageResult",
    "DailyReport",
    "format_bytes",
]
