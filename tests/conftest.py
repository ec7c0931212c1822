"""Shared fixtures: in-memory counter store and a controllable clock."""
from datetime import datetime, timedelta, timezone

import pytest

from agentgate.services import COUNTER_SCHEMA, RESULT_SCHEMA
from agentgate.store import CounterStore, SQLiteAdapter, StoreRetry

COUNTERS = "usage_counters"
RESULTS = "agent_results"

START = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
async def store():
    """Counter store over in-memory SQLite with both collections registered."""
    store = CounterStore(SQLiteAdapter(":memory:"), StoreRetry(max_attempts=3, base_delay=0))
    store.register(COUNTERS, COUNTER_SCHEMA)
    store.register(RESULTS, RESULT_SCHEMA)
    yield store
    await store.close()
