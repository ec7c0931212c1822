"""
Base class for usage governors.

A governor enforces one quota per subject against counters kept in the
counter store. Consumption is an atomic conditional increment
("add amount if count + amount <= limit"), so concurrent callers cannot push
a counter past its limit and a denial never mutates state.

Store failures (after the store's own retries) are absorbed here according to
the governor's fail_open flag: fail-open allows the call with an optimistic,
unpersisted usage figure; fail-closed denies it. Either way the result is
marked degraded and the failure is logged at ERROR.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..store import (
    Condition,
    ConditionalCheckFailedError,
    CounterStore,
    StoreError,
    UpdateSpec,
)
from ..utils import Clock, to_millis, utc_now
from .models import QuotaKind, UsageCounter, UsageResult

logger = logging.getLogger(__name__)


class UsageGovernor(ABC):
    """
    One quota dimension (rate, tokens, storage or daily requests).

    Subclasses define the window layout via _consume() and _status(), and
    which counters are expired via _expired_filter().
    """

    quota: QuotaKind
    default_sweep_age: Optional[timedelta] = timedelta(minutes=60)

    def __init__(
        self,
        store: CounterStore,
        collection: str,
        limit: int,
        fail_open: bool = True,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize governor.

        Args:
            store: Shared counter store
            collection: Counters collection, keyed (subjectId, windowKey)
            limit: Units allowed per window
            fail_open: Allow requests when the store is unavailable
            clock: Callable returning the current aware UTC datetime
        """
        if limit < 0:
            raise ValueError(f"{type(self).__name__} limit must be >= 0")
        self.store = store
        self.collection = collection
        self.limit = limit
        self.fail_open = fail_open
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    # ========================================================================
    # Public API
    # ========================================================================

    async def check_and_consume(self, subject_id: str, amount: int = 1) -> UsageResult:
        """
        Consume `amount` units if the window stays within the limit.

        Args:
            subject_id: Subject to charge
            amount: Units to consume

        Returns:
            UsageResult; allowed=False leaves the counter untouched
        """
        self._validate(subject_id, amount)
        try:
            result = await self._consume(subject_id, amount, self.now())
        except StoreError as e:
            return self._degraded(subject_id, amount, e, "check_and_consume")

        if not result.allowed:
            logger.warning(
                f"{self.quota.value} quota denied for {subject_id}: "
                f"{result.current_usage}/{result.limit}"
            )
        return result

    async def status(self, subject_id: str) -> UsageResult:
        """Read-only view of the active window; never mutates."""
        self._validate(subject_id, 0)
        try:
            return await self._status(subject_id, self.now())
        except StoreError as e:
            return self._degraded(subject_id, 0, e, "status")

    async def sweep(
        self,
        max_age: Optional[timedelta] = None,
        batch_size: int = 25,
    ) -> int:
        """
        Delete expired counters of this quota in bounded batches.

        Args:
            max_age: Age past which a window is expired (governor default if None)
            batch_size: Items evaluated per scan page

        Returns:
            Number of counters deleted. A store failure stops the sweep and
            the count deleted so far is returned.
        """
        now = self.now()
        filters = [Condition("quota", "eq", self.quota.value)]
        filters += self._expired_filter(now, max_age or self.default_sweep_age)

        deleted = 0
        cursor = None
        try:
            while True:
                page = await self.store.scan(
                    self.collection, filter=filters, limit=batch_size, cursor=cursor
                )
                for item in page.items:
                    await self.store.delete(
                        self.collection,
                        {"subjectId": item["subjectId"], "windowKey": item["windowKey"]},
                    )
                    deleted += 1
                cursor = page.cursor
                if cursor is None:
                    break
        except StoreError as e:
            logger.error(
                f"{self.quota.value} sweep stopped after {deleted} deletions: {e}"
            )
            return deleted

        if deleted:
            logger.info(f"{self.quota.value} sweep deleted {deleted} expired counters")
        return deleted

    # ========================================================================
    # Subclass hooks
    # ========================================================================

    @abstractmethod
    async def _consume(self, subject_id: str, amount: int, now: datetime) -> UsageResult:
        pass

    @abstractmethod
    async def _status(self, subject_id: str, now: datetime) -> UsageResult:
        pass

    @abstractmethod
    def _expired_filter(self, now: datetime, max_age: Optional[timedelta]) -> List[Condition]:
        pass

    # ========================================================================
    # Helpers
    # ========================================================================

    def _key(self, subject_id: str, window_key: str) -> Dict[str, str]:
        return {"subjectId": subject_id, "windowKey": window_key}

    async def _increment(
        self,
        subject_id: str,
        window_key: str,
        amount: int,
        now: datetime,
        window_start: Optional[int] = None,
        enforce_limit: bool = True,
    ) -> Tuple[bool, int]:
        """
        Atomically add `amount` to a counter.

        Returns:
            (applied, count): count is the post-increment value when applied,
            otherwise the unchanged current value
        """
        fields: Dict[str, Any] = {
            "quota": self.quota.value,
            "limit": self.limit,
            "lastUpdated": to_millis(now),
        }
        if window_start is not None:
            fields["windowStart"] = window_start
        condition = []
        if enforce_limit:
            condition.append(Condition("count", "le", self.limit - amount))

        try:
            item = await self.store.update(
                self.collection,
                self._key(subject_id, window_key),
                UpdateSpec(set=fields, add={"count": amount}, condition=condition),
            )
        except ConditionalCheckFailedError as e:
            current = (e.item or {}).get("count", 0)
            return False, current
        return True, item["count"]

    async def _read_count(self, subject_id: str, window_key: str) -> int:
        item = await self.store.get(self.collection, self._key(subject_id, window_key))
        return UsageCounter.from_item(item).count if item else 0

    def _degraded(
        self,
        subject_id: str,
        amount: int,
        error: Exception,
        operation: str,
    ) -> UsageResult:
        if self.fail_open:
            logger.error(
                f"{self.quota.value} {operation} failing open for {subject_id}: {error}"
            )
            return UsageResult.build(
                self.quota, True, amount, self.limit, degraded=True
            )
        logger.error(
            f"{self.quota.value} {operation} failing closed for {subject_id}: {error}"
        )
        return UsageResult.build(self.quota, False, 0, self.limit, degraded=True)

    @staticmethod
    def _validate(subject_id: str, amount: int) -> None:
        if not subject_id:
            raise ValueError("subject_id must be a non-empty string")
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise ValueError(f"amount must be a non-negative integer, got {amount!r}")
