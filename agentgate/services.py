"""
Process-level wiring.

build_services() constructs one counter store and the four governors from a
config, and build_runner() puts an agent runner on top of them. Request
handlers receive the Services bundle instead of reaching for module globals.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from .agents import AgentRunner
from .config import AgentGateConfig
from .governance import (
    DailyRequestLimit,
    FreeTierGate,
    QuotaKind,
    RateLimiter,
    StorageQuota,
    TokenBudget,
)
from .llm import BedrockAdapter, InvocationRetry, LLMAdapter
from .store import CounterStore, KeySchema
from .utils import Clock

logger = logging.getLogger(__name__)

COUNTER_SCHEMA = KeySchema(partition_key="subjectId", sort_key="windowKey")
RESULT_SCHEMA = KeySchema(
    partition_key="subjectId",
    sort_key="resultId",
    indexes={"by_created": "createdAt"},
)


@dataclass
class Services:
    """Shared store, governors and gate for one process."""
    config: AgentGateConfig
    store: CounterStore
    rate_limiter: RateLimiter
    token_budget: TokenBudget
    storage_quota: StorageQuota
    daily_requests: DailyRequestLimit
    gate: FreeTierGate

    async def sweep_all(self, max_age: Optional[timedelta] = None) -> Dict[QuotaKind, int]:
        """
        Sweep expired counters of every governor.

        Args:
            max_age: Overrides each governor's default expiry

        Returns:
            Counters deleted per quota
        """
        batch_size = self.config.sweep_batch_size
        deleted = {}
        for governor in (
            self.rate_limiter,
            self.token_budget,
            self.storage_quota,
            self.daily_requests,
        ):
            deleted[governor.quota] = await governor.sweep(max_age, batch_size=batch_size)
        logger.info(
            "Sweep complete: "
            + ", ".join(f"{kind.value}={count}" for kind, count in deleted.items())
        )
        return deleted

    async def close(self) -> None:
        await self.store.close()


def build_services(
    config: AgentGateConfig,
    store: Optional[CounterStore] = None,
    clock: Optional[Clock] = None,
) -> Services:
    """
    Construct the store and governors.

    Args:
        config: Loaded configuration
        store: Existing store to share (a new SQLite-backed store otherwise)
        clock: Time source for all governors (tests)

    Returns:
        Services bundle
    """
    if store is None:
        store = CounterStore.open(
            config.db_path,
            max_attempts=config.store_max_attempts,
            base_delay=config.store_retry_base_delay,
        )
    store.register(config.counters_collection, COUNTER_SCHEMA)
    store.register(config.results_collection, RESULT_SCHEMA)

    collection = config.counters_collection
    rate_limiter = RateLimiter(
        store,
        collection,
        limit=config.rate_limit,
        window_minutes=config.rate_window_minutes,
        fail_open=config.governor_fail_open(QuotaKind.RATE),
        clock=clock,
    )
    token_budget = TokenBudget(
        store,
        collection,
        limit=config.token_limit,
        fail_open=config.governor_fail_open(QuotaKind.TOKENS),
        clock=clock,
    )
    storage_quota = StorageQuota(
        store,
        collection,
        limit=config.storage_cap,
        fail_open=config.governor_fail_open(QuotaKind.STORAGE),
        clock=clock,
    )
    daily_requests = DailyRequestLimit(
        store,
        collection,
        limit=config.daily_limit,
        fail_open=config.governor_fail_open(QuotaKind.DAILY),
        clock=clock,
    )
    gate = FreeTierGate(
        rate_limiter,
        token_budget,
        storage_quota,
        daily_requests,
        fail_open=config.fail_open,
    )

    logger.debug(f"Services built for {config.db_path}")
    return Services(
        config=config,
        store=store,
        rate_limiter=rate_limiter,
        token_budget=token_budget,
        storage_quota=storage_quota,
        daily_requests=daily_requests,
        gate=gate,
    )


def build_runner(
    services: Services,
    adapter: Optional[LLMAdapter] = None,
    clock: Optional[Clock] = None,
) -> AgentRunner:
    """
    Construct an agent runner over the services' gate, budget and store.

    Model settings, retry policy, results collection and planning horizon
    come from the services' config.

    Args:
        services: Bundle from build_services()
        adapter: Model adapter (a BedrockAdapter for config.aws_region otherwise)
        clock: Time source for result timestamps (tests)

    Returns:
        AgentRunner
    """
    config = services.config
    if adapter is None:
        adapter = BedrockAdapter(region=config.aws_region)
    retry = InvocationRetry(
        max_attempts=config.llm_max_attempts,
        delay_base=config.llm_retry_base_delay,
    )
    return AgentRunner(
        services.gate,
        services.token_budget,
        adapter,
        retry=retry,
        store=services.store,
        results_collection=config.results_collection,
        model=config.model_id,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        horizon_days=config.planning_horizon_days,
        clock=clock,
    )
