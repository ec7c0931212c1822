"""
Cumulative storage quota.

One counter per subject (window key "storage") holding bytes in use. It has
no time window: uploads consume, deletions release, and the count is floored
at zero so an over-release cannot drive it negative.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..store import (
    Condition,
    CounterStore,
    ItemNotFoundError,
    StoreError,
    UpdateSpec,
)
from ..utils import Clock, to_millis
from .base import UsageGovernor
from .models import QuotaKind, UsageResult

logger = logging.getLogger(__name__)

STORAGE_WINDOW_KEY = "storage"

GIB = 1024 ** 3


def format_bytes(num_bytes: float) -> str:
    """Render a byte count as bytes, KB, MB or GB with two decimals."""
    if num_bytes < 1024:
        return f"{int(num_bytes)} bytes"
    if num_bytes < 1024 ** 2:
        return f"{num_bytes / 1024:.2f} KB"
    if num_bytes < GIB:
        return f"{num_bytes / 1024 ** 2:.2f} MB"
    return f"{num_bytes / GIB:.2f} GB"


class StorageQuota(UsageGovernor):
    """Bytes stored per subject (default cap 5 GiB)."""

    quota = QuotaKind.STORAGE
    default_sweep_age = timedelta(days=30)

    DEFAULT_LIMIT = 5 * GIB

    def __init__(
        self,
        store: CounterStore,
        collection: str,
        limit: int = DEFAULT_LIMIT,
        fail_open: bool = True,
        clock: Optional[Clock] = None,
    ):
        super().__init__(store, collection, limit, fail_open=fail_open, clock=clock)

    async def consume(self, subject_id: str, delta: int) -> UsageResult:
        """
        Account for `delta` new bytes; a negative delta releases instead.
        """
        if isinstance(delta, int) and delta < 0:
            return await self.release(subject_id, -delta)
        return await self.check_and_consume(subject_id, delta)

    async def release(self, subject_id: str, delta: int) -> UsageResult:
        """
        Give back `delta` bytes (sign ignored), never going below zero.

        Releasing for a subject with no counter is a no-op.
        """
        if isinstance(delta, int) and not isinstance(delta, bool):
            delta = abs(delta)
        self._validate(subject_id, delta)
        now = self.now()
        try:
            item = await self.store.update(
                self.collection,
                self._key(subject_id, STORAGE_WINDOW_KEY),
                UpdateSpec(
                    set={"lastUpdated": to_millis(now), "limit": self.limit},
                    add={"count": -delta},
                    floor={"count": 0},
                    create_if_missing=False,
                ),
            )
        except ItemNotFoundError:
            logger.debug(f"No storage counter to release for {subject_id}")
            return UsageResult.build(self.quota, self.limit > 0, 0, self.limit)
        except StoreError as e:
            return self._degraded(subject_id, 0, e, "release")

        count = item["count"]
        return UsageResult.build(self.quota, count < self.limit, count, self.limit)

    async def _consume(self, subject_id: str, amount: int, now: datetime) -> UsageResult:
        applied, count = await self._increment(subject_id, STORAGE_WINDOW_KEY, amount, now)
        return UsageResult.build(self.quota, applied, count, self.limit)

    async def _status(self, subject_id: str, now: datetime) -> UsageResult:
        count = await self._read_count(subject_id, STORAGE_WINDOW_KEY)
        return UsageResult.build(self.quota, count < self.limit, count, self.limit)

    def _expired_filter(self, now: datetime, max_age: Optional[timedelta]) -> List[Condition]:
        age = max_age or self.default_sweep_age
        return [
            Condition("count", "eq", 0),
            Condition("lastUpdated", "lt", to_millis(now - age)),
        ]
