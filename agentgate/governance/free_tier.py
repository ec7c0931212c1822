"""
Free-tier gate: the caller-facing aggregate of the four governors.

Every agent invocation asks the gate first. The governors run concurrently;
the rate limiter and daily request quota consume one unit, while the token
budget (charged after the model call) and storage quota (charged at upload)
are only checked. Any single denial denies the request. Units already
consumed by the other governors are not rolled back.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils import isoformat
from .daily import DailyRequestLimit, TokenBudget
from .models import QuotaKind, UsageResult
from .rate_limiter import RateLimiter
from .storage_quota import StorageQuota, format_bytes

logger = logging.getLogger(__name__)

CHECK_ORDER = (QuotaKind.RATE, QuotaKind.TOKENS, QuotaKind.STORAGE, QuotaKind.DAILY)


class GovernanceDenied(Exception):
    """Raised by request handlers that prefer exceptions for quota denials."""

    def __init__(self, decision: "FreeTierDecision"):
        self.decision = decision
        super().__init__(decision.message)


@dataclass
class FreeTierDecision:
    """
    Aggregate verdict for one request.

    Attributes:
        allowed: True only if no governor denied
        message: Empty when allowed; otherwise names the exceeded quota
        quota: The quota that caused the denial
        retry_after: Seconds to wait (rate limit denials)
        reset_at: When the exceeded quota resets (day windows, rate windows)
        results: Per-governor results that were available
    """
    allowed: bool
    message: str = ""
    quota: Optional[QuotaKind] = None
    retry_after: Optional[int] = None
    reset_at: Optional[datetime] = None
    results: Dict[QuotaKind, UsageResult] = field(default_factory=dict)

    def raise_for_denial(self) -> None:
        """Raise GovernanceDenied if the request was denied."""
        if not self.allowed:
            raise GovernanceDenied(self)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"allowed": self.allowed, "message": self.message}
        if self.quota is not None:
            data["quota"] = self.quota.value
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        if self.reset_at is not None:
            data["resetAt"] = isoformat(self.reset_at)
        data["results"] = {kind.value: r.to_dict() for kind, r in self.results.items()}
        return data


class FreeTierGate:
    """
    Checks all four quotas for a subject.

    Governors absorb their own store failures; fail_open here only decides
    what happens if a governor raises something unexpected.

    Usage:
        gate = FreeTierGate(rate_limiter, token_budget, storage_quota, daily_requests)
        decision = await gate.check_free_tier_limits("user-123")
        if not decision.allowed:
            return 429, decision.message
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        token_budget: TokenBudget,
        storage_quota: StorageQuota,
        daily_requests: DailyRequestLimit,
        fail_open: bool = True,
    ):
        self.rate_limiter = rate_limiter
        self.token_budget = token_budget
        self.storage_quota = storage_quota
        self.daily_requests = daily_requests
        self.fail_open = fail_open

    async def check_free_tier_limits(self, subject_id: str) -> FreeTierDecision:
        """
        Consume one request against the rate and daily quotas and verify the
        token and storage quotas.

        Args:
            subject_id: Subject making the request

        Returns:
            FreeTierDecision; never raises for denials or store failures
        """
        if not subject_id:
            raise ValueError("subject_id must be a non-empty string")

        outcomes = await asyncio.gather(
            self.rate_limiter.check_and_consume(subject_id),
            self.token_budget.status(subject_id),
            self.storage_quota.status(subject_id),
            self.daily_requests.check_and_consume(subject_id),
            return_exceptions=True,
        )

        results: Dict[QuotaKind, UsageResult] = {}
        failures: List[QuotaKind] = []
        for kind, outcome in zip(CHECK_ORDER, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    f"Free tier {kind.value} check failed for {subject_id}: "
                    f"{type(outcome).__name__}: {outcome}"
                )
                failures.append(kind)
            else:
                results[kind] = outcome

        if failures and not self.fail_open:
            return FreeTierDecision(
                allowed=False,
                message="Usage limits could not be verified. Please try again later.",
                quota=failures[0],
                results=results,
            )

        for kind in CHECK_ORDER:
            result = results.get(kind)
            if result is None or result.allowed:
                continue
            decision = self._deny(kind, result, results)
            logger.warning(f"Free tier denied for {subject_id}: {decision.message}")
            return decision

        return FreeTierDecision(allowed=True, results=results)

    async def usage_summary(self, subject_id: str) -> Dict[QuotaKind, UsageResult]:
        """Read-only status of all four quotas."""
        statuses = await asyncio.gather(
            self.rate_limiter.status(subject_id),
            self.token_budget.status(subject_id),
            self.storage_quota.status(subject_id),
            self.daily_requests.status(subject_id),
        )
        return dict(zip(CHECK_ORDER, statuses))

    @staticmethod
    def _deny(
        kind: QuotaKind,
        result: UsageResult,
        results: Dict[QuotaKind, UsageResult],
    ) -> FreeTierDecision:
        if kind is QuotaKind.RATE:
            message = f"Rate limit exceeded. Retry after {result.retry_after} seconds."
        elif kind is QuotaKind.TOKENS:
            message = f"Daily token limit exceeded. Maximum: {result.limit} tokens."
        elif kind is QuotaKind.STORAGE:
            message = f"Storage limit exceeded. Maximum: {format_bytes(result.limit)}."
        else:
            message = f"Daily API limit exceeded. Maximum: {result.limit} requests."

        if kind in (QuotaKind.TOKENS, QuotaKind.DAILY) and result.reset_at is not None:
            message += f" Resets at {isoformat(result.reset_at)}."

        return FreeTierDecision(
            allowed=False,
            message=message,
            quota=kind,
            retry_after=result.retry_after,
            reset_at=result.reset_at,
            results=results,
        )
