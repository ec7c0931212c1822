"""
Fixed-window request rate limiter.

A window opens at the first request after the previous window expired and
lasts `window_minutes`. Each subject has a single counter, keyed "rate",
holding the current window's start and count. Restarting an expired window
and charging the request happen in one conditional store update, so
concurrent first requests cannot each open a window of their own.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..store import Condition, ConditionalCheckFailedError, CounterStore, UpdateSpec
from ..utils import Clock, from_millis, to_millis
from .base import UsageGovernor
from .models import QuotaKind, UsageResult

logger = logging.getLogger(__name__)

RATE_WINDOW_KEY = "rate"


class RateLimiter(UsageGovernor):
    """
    Requests per fixed window (default 100 per minute).

    Denials carry retry_after, the whole seconds until the window closes
    (at least 1).
    """

    quota = QuotaKind.RATE
    default_sweep_age = timedelta(minutes=60)

    DEFAULT_LIMIT = 100
    DEFAULT_WINDOW_MINUTES = 1

    def __init__(
        self,
        store: CounterStore,
        collection: str,
        limit: int = DEFAULT_LIMIT,
        window_minutes: float = DEFAULT_WINDOW_MINUTES,
        fail_open: bool = True,
        clock: Optional[Clock] = None,
    ):
        super().__init__(store, collection, limit, fail_open=fail_open, clock=clock)
        if window_minutes <= 0:
            raise ValueError("window_minutes must be positive")
        self.window_minutes = window_minutes
        self.window_ms = int(window_minutes * 60 * 1000)

    def _window_spec(self, amount: int, now_ms: int) -> UpdateSpec:
        """Restart the window if it has expired, then add within the limit."""
        return UpdateSpec(
            set={"quota": self.quota.value, "limit": self.limit, "lastUpdated": now_ms},
            add={"count": amount},
            reset={"count": 0, "windowStart": now_ms},
            reset_if=[Condition("windowStart", "le", now_ms - self.window_ms)],
            condition=[Condition("count", "le", self.limit - amount)],
        )

    async def _consume(self, subject_id: str, amount: int, now: datetime) -> UsageResult:
        now_ms = to_millis(now)
        try:
            item = await self.store.update(
                self.collection,
                self._key(subject_id, RATE_WINDOW_KEY),
                self._window_spec(amount, now_ms),
            )
        except ConditionalCheckFailedError as e:
            window = e.item or {}
            return self._result(
                False, window.get("count", 0), window.get("windowStart", now_ms), now_ms
            )
        return self._result(True, item["count"], item["windowStart"], now_ms)

    async def _status(self, subject_id: str, now: datetime) -> UsageResult:
        now_ms = to_millis(now)
        window = await self._active_window(subject_id, now_ms)
        if window is None:
            return UsageResult.build(self.quota, self.limit > 0, 0, self.limit)
        count = window.get("count", 0)
        return self._result(count < self.limit, count, window["windowStart"], now_ms)

    async def _active_window(self, subject_id: str, now_ms: int) -> Optional[Dict[str, Any]]:
        item = await self.store.get(self.collection, self._key(subject_id, RATE_WINDOW_KEY))
        if item and item.get("windowStart", 0) + self.window_ms > now_ms:
            return item
        return None

    def _result(self, allowed: bool, count: int, start: int, now_ms: int) -> UsageResult:
        window_end = start + self.window_ms
        retry_after = None
        if not allowed:
            retry_after = max(1, math.ceil((window_end - now_ms) / 1000))
        return UsageResult.build(
            self.quota,
            allowed,
            count,
            self.limit,
            retry_after=retry_after,
            reset_at=from_millis(window_end),
        )

    def _expired_filter(self, now: datetime, max_age: timedelta) -> List[Condition]:
        now_ms = to_millis(now)
        return [
            Condition("lastUpdated", "lt", to_millis(now - max_age)),
            Condition("windowStart", "le", now_ms - self.window_ms),
        ]
