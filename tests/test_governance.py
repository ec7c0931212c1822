"""
Tests for usage governors.

Tests cover:
- RateLimiter fixed windows, retry_after and rollover
- TokenBudget day windows and post-call charging
- StorageQuota consume/release with the zero floor
- DailyRequestLimit
- Fail-open / fail-closed behavior on store failure
- Sweeping expired counters
"""
import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentgate.governance import (
    DailyRequestLimit,
    QuotaKind,
    RateLimiter,
    StorageQuota,
    TokenBudget,
    UsageCounter,
    UsageResult,
    format_bytes,
)
from agentgate.governance.rate_limiter import RATE_WINDOW_KEY
from agentgate.store import CounterStore, KeyCondition, KeySchema, StoreRetry
from agentgate.utils import isoformat, to_millis

COUNTERS = "usage_counters"


class TickingClock:
    """Clock that moves forward one millisecond on every read."""

    def __init__(self, now: datetime = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(milliseconds=1)
        return self.now


def failing_store() -> CounterStore:
    """A store whose backend fails every attempt."""
    adapter = MagicMock()
    adapter.exclusive_transaction.side_effect = OSError("disk I/O error")
    adapter.close = AsyncMock()
    store = CounterStore(adapter, StoreRetry(max_attempts=3, base_delay=0))
    store.register(COUNTERS, KeySchema("subjectId", "windowKey"))
    return store


# ============================================================
# Models
# ============================================================


class TestModels:
    """Test governance records."""

    def test_usage_result_build_derives_fields(self):
        result = UsageResult.build(QuotaKind.DAILY, True, 250, 1000)
        assert result.remaining == 750
        assert result.percentage_used == 25.0

    def test_usage_result_remaining_never_negative(self):
        result = UsageResult.build(QuotaKind.TOKENS, False, 1200, 1000)
        assert result.remaining == 0

    def test_zero_limit_percentage(self):
        assert UsageResult.build(QuotaKind.RATE, False, 0, 0).percentage_used == 0.0

    def test_usage_result_to_dict(self):
        reset = datetime(2026, 1, 6, tzinfo=timezone.utc)
        result = UsageResult.build(QuotaKind.RATE, False, 2, 2, retry_after=30, reset_at=reset)

        data = result.to_dict()

        assert data["quota"] == "rate"
        assert data["currentUsage"] == 2
        assert data["retryAfter"] == 30
        assert data["resetAt"] == "2026-01-06T00:00:00.000Z"
        assert data["degraded"] is False

    def test_usage_counter_round_trip(self):
        item = {
            "subjectId": "u1",
            "windowKey": "daily:2026-01-05",
            "quota": "daily",
            "count": 3,
            "limit": 1000,
            "windowStart": 1,
            "lastUpdated": 2,
        }
        assert UsageCounter.from_item(item).to_item() == item

    def test_isoformat(self):
        moment = datetime(2026, 1, 5, 12, 30, 15, 123456, tzinfo=timezone.utc)
        assert isoformat(moment) == "2026-01-05T12:30:15.123Z"


# ============================================================
# Rate limiter
# ============================================================


class TestRateLimiter:
    """Test the fixed-window request limiter."""

    @pytest.mark.asyncio
    async def test_third_call_in_window_denied(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=2, window_minutes=1, clock=clock)

        results = [await limiter.check_and_consume("u1") for _ in range(3)]

        assert [r.allowed for r in results] == [True, True, False]
        assert results[2].retry_after > 0
        assert results[0].retry_after is None

    @pytest.mark.asyncio
    async def test_remaining_decreases_by_one(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=5, clock=clock)

        results = [await limiter.check_and_consume("u1") for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
        assert results[5].current_usage == 5
        assert results[5].remaining == 0

    @pytest.mark.asyncio
    async def test_retry_after_counts_down_to_window_end(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=1, window_minutes=1, clock=clock)
        await limiter.check_and_consume("u1")

        clock.advance(seconds=45, milliseconds=500)
        denied = await limiter.check_and_consume("u1")

        assert denied.allowed is False
        assert denied.retry_after == 15
        assert denied.reset_at == clock.now - timedelta(seconds=45, milliseconds=500) + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_new_window_after_expiry(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=1, window_minutes=1, clock=clock)
        assert (await limiter.check_and_consume("u1")).allowed
        assert not (await limiter.check_and_consume("u1")).allowed

        clock.advance(seconds=61)
        result = await limiter.check_and_consume("u1")

        assert result.allowed
        assert result.current_usage == 1

    @pytest.mark.asyncio
    async def test_window_opens_at_first_request(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=10, window_minutes=1, clock=clock)
        await limiter.check_and_consume("u1")

        item = await store.get(COUNTERS, {"subjectId": "u1", "windowKey": RATE_WINDOW_KEY})

        assert item["windowStart"] == to_millis(clock.now)
        assert item["quota"] == "rate"
        assert item["count"] == 1

    @pytest.mark.asyncio
    async def test_denial_does_not_mutate(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=2, clock=clock)
        for _ in range(5):
            await limiter.check_and_consume("u1")

        status = await limiter.status("u1")

        assert status.current_usage == 2
        assert status.allowed is False

    @pytest.mark.asyncio
    async def test_subjects_are_independent(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=1, clock=clock)

        assert (await limiter.check_and_consume("u1")).allowed
        assert (await limiter.check_and_consume("u2")).allowed

    @pytest.mark.asyncio
    async def test_status_is_read_only(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=3, clock=clock)

        first = await limiter.status("u1")
        second = await limiter.status("u1")

        assert first.allowed and second.allowed
        assert second.current_usage == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_respect_limit(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=5, clock=clock)

        results = await asyncio.gather(*(limiter.check_and_consume("u1") for _ in range(12)))

        assert sum(1 for r in results if r.allowed) == 5
        assert (await limiter.status("u1")).current_usage == 5

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_share_one_window(self, store):
        clock = TickingClock()
        limiter = RateLimiter(store, COUNTERS, limit=2, clock=clock)

        results = await asyncio.gather(*(limiter.check_and_consume("u1") for _ in range(6)))

        assert sum(1 for r in results if r.allowed) == 2
        page = await store.query(COUNTERS, KeyCondition("u1"))
        assert len(page.items) == 1
        assert page.items[0]["count"] == 2

    @pytest.mark.asyncio
    async def test_expired_window_restarts_in_place(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=1, clock=clock)
        await limiter.check_and_consume("u1")
        clock.advance(minutes=1)

        result = await limiter.check_and_consume("u1")
        item = await store.get(COUNTERS, {"subjectId": "u1", "windowKey": RATE_WINDOW_KEY})

        assert result.allowed is True
        assert item["count"] == 1
        assert item["windowStart"] == to_millis(clock.now)

    @pytest.mark.asyncio
    async def test_amount_greater_than_one(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, limit=5, clock=clock)

        assert (await limiter.check_and_consume("u1", amount=4)).allowed
        denied = await limiter.check_and_consume("u1", amount=2)

        assert denied.allowed is False
        assert denied.current_usage == 4

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, clock=clock)
        with pytest.raises(ValueError):
            await limiter.check_and_consume("")
        with pytest.raises(ValueError):
            await limiter.check_and_consume("u1", amount=-1)
        with pytest.raises(ValueError):
            await limiter.check_and_consume("u1", amount=True)
        with pytest.raises(ValueError):
            RateLimiter(store, COUNTERS, window_minutes=0)
        with pytest.raises(ValueError):
            RateLimiter(store, COUNTERS, limit=-1)


# ============================================================
# Fail-open / fail-closed
# ============================================================


class TestStoreFailure:
    """Test degraded decisions when the store is unavailable."""

    @pytest.mark.asyncio
    async def test_fail_open_allows(self, clock):
        limiter = RateLimiter(failing_store(), COUNTERS, limit=1, clock=clock)

        result = await limiter.check_and_consume("u1")

        assert result.allowed is True
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_fail_open_every_governor(self, clock):
        store = failing_store()
        governors = [
            RateLimiter(store, COUNTERS, clock=clock),
            TokenBudget(store, COUNTERS, clock=clock),
            StorageQuota(store, COUNTERS, clock=clock),
            DailyRequestLimit(store, COUNTERS, clock=clock),
        ]

        for governor in governors:
            result = await governor.check_and_consume("u1")
            assert result.allowed, governor.quota
            assert result.degraded, governor.quota

    @pytest.mark.asyncio
    async def test_fail_closed_denies(self, clock):
        limiter = RateLimiter(failing_store(), COUNTERS, fail_open=False, clock=clock)

        result = await limiter.check_and_consume("u1")

        assert result.allowed is False
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_status_degrades_too(self, clock):
        budget = TokenBudget(failing_store(), COUNTERS, fail_open=False, clock=clock)

        result = await budget.status("u1")

        assert result.allowed is False
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_record_usage_degrades(self, clock):
        budget = TokenBudget(failing_store(), COUNTERS, clock=clock)

        result = await budget.record_usage("u1", 500)

        assert result.allowed is True
        assert result.degraded is True


# ============================================================
# Token budget and daily requests
# ============================================================


class TestTokenBudget:
    """Test the daily token budget."""

    @pytest.mark.asyncio
    async def test_record_usage_accumulates(self, store, clock):
        budget = TokenBudget(store, COUNTERS, limit=1000, clock=clock)

        await budget.record_usage("u1", 300)
        result = await budget.record_usage("u1", 200)

        assert result.current_usage == 500
        assert result.allowed
        assert (await budget.status("u1")).current_usage == 500

    @pytest.mark.asyncio
    async def test_record_usage_may_exceed_limit(self, store, clock):
        budget = TokenBudget(store, COUNTERS, limit=1000, clock=clock)

        result = await budget.record_usage("u1", 1500)

        assert result.current_usage == 1500
        assert result.allowed is False
        assert (await budget.status("u1")).allowed is False

    @pytest.mark.asyncio
    async def test_check_and_consume_is_conditional(self, store, clock):
        budget = TokenBudget(store, COUNTERS, limit=1000, clock=clock)

        assert (await budget.check_and_consume("u1", 800)).allowed
        denied = await budget.check_and_consume("u1", 300)

        assert denied.allowed is False
        assert denied.current_usage == 800

    @pytest.mark.asyncio
    async def test_resets_at_midnight_utc(self, store, clock):
        budget = TokenBudget(store, COUNTERS, limit=1000, clock=clock)
        result = await budget.record_usage("u1", 1000)

        assert result.reset_at == datetime(2026, 1, 6, tzinfo=timezone.utc)

        clock.now = datetime(2026, 1, 6, 0, 0, 1, tzinfo=timezone.utc)
        status = await budget.status("u1")

        assert status.current_usage == 0
        assert status.allowed

    @pytest.mark.asyncio
    async def test_window_key_format(self, store, clock):
        budget = TokenBudget(store, COUNTERS, clock=clock)
        await budget.record_usage("u1", 10)

        item = await store.get(COUNTERS, {"subjectId": "u1", "windowKey": "tokens:2026-01-05"})

        assert item["count"] == 10
        assert item["windowStart"] == to_millis(datetime(2026, 1, 5, tzinfo=timezone.utc))

    @pytest.mark.asyncio
    async def test_report(self, store, clock):
        budget = TokenBudget(store, COUNTERS, limit=1000, clock=clock)
        await budget.record_usage("u1", 250)

        today = await budget.report("u1")
        by_date = await budget.report("u1", date(2026, 1, 5))
        by_text = await budget.report("u1", "2026-01-04")

        assert today.used == 250
        assert today.remaining == 750
        assert today.percentage_used == 25.0
        assert by_date.date == "2026-01-05"
        assert by_text.used == 0
        assert today.to_dict()["subjectId"] == "u1"


class TestDailyRequestLimit:
    """Test the daily request quota."""

    @pytest.mark.asyncio
    async def test_limit_enforced(self, store, clock):
        daily = DailyRequestLimit(store, COUNTERS, limit=3, clock=clock)

        results = [await daily.check_and_consume("u1") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[3].reset_at == datetime(2026, 1, 6, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_next_day_starts_fresh(self, store, clock):
        daily = DailyRequestLimit(store, COUNTERS, limit=1, clock=clock)
        await daily.check_and_consume("u1")

        clock.advance(days=1)

        assert (await daily.check_and_consume("u1")).allowed

    @pytest.mark.asyncio
    async def test_defaults(self, store):
        assert DailyRequestLimit(store, COUNTERS).limit == 1000
        assert TokenBudget(store, COUNTERS).limit == 100_000
        assert RateLimiter(store, COUNTERS).limit == 100
        assert StorageQuota(store, COUNTERS).limit == 5 * 1024 ** 3


# ============================================================
# Storage quota
# ============================================================


class TestStorageQuota:
    """Test cumulative storage accounting."""

    @pytest.mark.asyncio
    async def test_consume_until_cap(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)

        assert (await quota.consume("u1", 600)).allowed
        denied = await quota.consume("u1", 500)

        assert denied.allowed is False
        assert denied.current_usage == 600

    @pytest.mark.asyncio
    async def test_release(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)
        await quota.consume("u1", 600)

        result = await quota.release("u1", 200)

        assert result.current_usage == 400
        assert (await quota.status("u1")).current_usage == 400

    @pytest.mark.asyncio
    async def test_release_never_goes_negative(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)
        await quota.consume("u1", 100)

        result = await quota.release("u1", 5000)

        assert result.current_usage == 0

    @pytest.mark.asyncio
    async def test_negative_consume_releases(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)
        await quota.consume("u1", 300)

        result = await quota.consume("u1", -100)

        assert result.current_usage == 200

    @pytest.mark.asyncio
    async def test_release_sign_ignored(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)
        await quota.consume("u1", 300)

        assert (await quota.release("u1", -100)).current_usage == 200

    @pytest.mark.asyncio
    async def test_release_without_counter_is_noop(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)

        result = await quota.release("u1", 100)

        assert result.current_usage == 0
        assert await store.get(COUNTERS, {"subjectId": "u1", "windowKey": "storage"}) is None

    @pytest.mark.asyncio
    async def test_status_at_cap_not_allowed(self, store, clock):
        quota = StorageQuota(store, COUNTERS, limit=1000, clock=clock)
        await quota.consume("u1", 1000)

        assert (await quota.status("u1")).allowed is False

    @pytest.mark.parametrize("num_bytes,expected", [
        (0, "0 bytes"),
        (512, "512 bytes"),
        (1536, "1.50 KB"),
        (1024 ** 2, "1.00 MB"),
        (5 * 1024 ** 3, "5.00 GB"),
    ])
    def test_format_bytes(self, num_bytes, expected):
        assert format_bytes(num_bytes) == expected


# ============================================================
# Sweep
# ============================================================


class TestSweep:
    """Test deletion of expired counters."""

    @pytest.mark.asyncio
    async def test_rate_windows_swept_after_max_age(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, clock=clock)
        await limiter.check_and_consume("u1")
        await limiter.check_and_consume("u2")

        assert await limiter.sweep() == 0

        clock.advance(hours=2)
        await limiter.check_and_consume("u2")

        assert await limiter.sweep() == 1
        assert await store.get(COUNTERS, {"subjectId": "u1", "windowKey": RATE_WINDOW_KEY}) is None
        assert (await limiter.status("u2")).current_usage == 1

    @pytest.mark.asyncio
    async def test_day_windows_keep_yesterday(self, store, clock):
        daily = DailyRequestLimit(store, COUNTERS, clock=clock)
        await daily.check_and_consume("u1")
        clock.advance(days=1)
        await daily.check_and_consume("u1")

        assert await daily.sweep() == 0

        clock.advance(days=1)

        assert await daily.sweep() == 1

    @pytest.mark.asyncio
    async def test_sweep_only_touches_own_quota(self, store, clock):
        daily = DailyRequestLimit(store, COUNTERS, clock=clock)
        budget = TokenBudget(store, COUNTERS, clock=clock)
        await daily.check_and_consume("u1")
        await budget.record_usage("u1", 10)
        clock.advance(days=3)

        assert await daily.sweep() == 1
        assert (await budget.report("u1", "2026-01-05")).used == 10

    @pytest.mark.asyncio
    async def test_storage_swept_only_when_empty(self, store, clock):
        quota = StorageQuota(store, COUNTERS, clock=clock)
        await quota.consume("u1", 100)
        await quota.consume("u2", 100)
        await quota.release("u2", 100)

        clock.advance(days=31)

        assert await quota.sweep() == 1
        assert (await quota.status("u1")).current_usage == 100

    @pytest.mark.asyncio
    async def test_sweep_in_batches(self, store, clock):
        daily = DailyRequestLimit(store, COUNTERS, clock=clock)
        for index in range(7):
            await daily.check_and_consume(f"u{index}")
        clock.advance(days=2)

        assert await daily.sweep(batch_size=2) == 7

    @pytest.mark.asyncio
    async def test_explicit_max_age(self, store, clock):
        limiter = RateLimiter(store, COUNTERS, clock=clock)
        await limiter.check_and_consume("u1")
        clock.advance(minutes=5)

        assert await limiter.sweep(max_age=timedelta(minutes=10)) == 0
        assert await limiter.sweep(max_age=timedelta(minutes=2)) == 1

    @pytest.mark.asyncio
    async def test_sweep_stops_on_store_failure(self, clock):
        limiter = RateLimiter(failing_store(), COUNTERS, clock=clock)

        assert await limiter.sweep() == 0
