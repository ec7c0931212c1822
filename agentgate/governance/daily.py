"""
Calendar-day quotas: daily token budget and daily request count.

Both keep one counter per subject and UTC day, keyed "<quota>:YYYY-MM-DD".
Windows reset at midnight UTC, which is reported as reset_at.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Union

from ..store import Condition, CounterStore, StoreError
from ..utils import Clock, day_key, start_of_next_day, to_millis
from .base import UsageGovernor
from .models import DailyReport, QuotaKind, UsageResult

logger = logging.getLogger(__name__)


class DayWindowGovernor(UsageGovernor):
    """
    Quota counted per subject per UTC calendar day.

    sweep() removes windows that started before yesterday (UTC) unless an
    explicit max_age is given.
    """

    def window_key(self, day: str) -> str:
        return f"{self.quota.value}:{day}"

    async def _consume(self, subject_id: str, amount: int, now: datetime) -> UsageResult:
        day = day_key(now)
        applied, count = await self._increment(
            subject_id,
            self.window_key(day),
            amount,
            now,
            window_start=self._day_start_ms(now),
        )
        return UsageResult.build(
            self.quota, applied, count, self.limit, reset_at=start_of_next_day(now)
        )

    async def _status(self, subject_id: str, now: datetime) -> UsageResult:
        count = await self._read_count(subject_id, self.window_key(day_key(now)))
        return UsageResult.build(
            self.quota,
            count < self.limit,
            count,
            self.limit,
            reset_at=start_of_next_day(now),
        )

    async def report(
        self,
        subject_id: str,
        day: Optional[Union[date, str]] = None,
    ) -> DailyReport:
        """
        Usage for one day (today if omitted).

        Raises:
            StoreError: Reports are diagnostic, so store failures propagate
        """
        if day is None:
            day_text = day_key(self.now())
        elif isinstance(day, date):
            day_text = day.isoformat()
        else:
            day_text = date.fromisoformat(day).isoformat()
        used = await self._read_count(subject_id, self.window_key(day_text))
        return DailyReport(subject_id, self.quota, day_text, used, self.limit)

    def _expired_filter(self, now: datetime, max_age: Optional[timedelta]) -> List[Condition]:
        if max_age is None:
            cutoff = self._day_start_ms(now - timedelta(days=1))
        else:
            cutoff = to_millis(now - max_age)
        return [Condition("windowStart", "lt", cutoff)]

    @staticmethod
    def _day_start_ms(now: datetime) -> int:
        day = now.astimezone(timezone.utc).date()
        return to_millis(datetime.combine(day, time.min, tzinfo=timezone.utc))


class TokenBudget(DayWindowGovernor):
    """
    Daily token quota (default 100,000 tokens).

    Tokens are only known after a model call, so besides the conditional
    check_and_consume() there is record_usage(), which always charges.
    """

    quota = QuotaKind.TOKENS
    default_sweep_age = None

    DEFAULT_LIMIT = 100_000

    def __init__(
        self,
        store: CounterStore,
        collection: str,
        limit: int = DEFAULT_LIMIT,
        fail_open: bool = True,
        clock: Optional[Clock] = None,
    ):
        super().__init__(store, collection, limit, fail_open=fail_open, clock=clock)

    async def record_usage(self, subject_id: str, tokens: int) -> UsageResult:
        """
        Charge tokens already spent, even past the limit.

        Returns:
            UsageResult whose allowed flag says whether the budget still
            holds after the charge
        """
        self._validate(subject_id, tokens)
        now = self.now()
        try:
            _, count = await self._increment(
                subject_id,
                self.window_key(day_key(now)),
                tokens,
                now,
                window_start=self._day_start_ms(now),
                enforce_limit=False,
            )
        except StoreError as e:
            return self._degraded(subject_id, tokens, e, "record_usage")

        if count > self.limit:
            logger.warning(
                f"Token budget exceeded for {subject_id}: {count}/{self.limit}"
            )
        return UsageResult.build(
            self.quota,
            count <= self.limit,
            count,
            self.limit,
            reset_at=start_of_next_day(now),
        )


class DailyRequestLimit(DayWindowGovernor):
    """Daily request quota (default 1,000 requests)."""

    quota = QuotaKind.DAILY
    default_sweep_age = None

    DEFAULT_LIMIT = 1000

    def __init__(
        self,
        store: CounterStore,
        collection: str,
        limit: int = DEFAULT_LIMIT,
        fail_open: bool = True,
        clock: Optional[Clock] = None,
    ):
        super().__init__(store, collection, limit, fail_open=fail_open, clock=clock)
