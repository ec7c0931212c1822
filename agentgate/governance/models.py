"""
Usage governance data models.

Defines the records shared by the four governors:
- QuotaKind: which quota a counter or decision belongs to
- UsageCounter: persisted counter for one (subject, window)
- UsageResult: outcome of check_and_consume()/status()
- DailyReport: one subject's usage for one calendar day
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..utils import isoformat


class QuotaKind(str, Enum):
    """Quota dimensions tracked per subject."""
    RATE = "rate"
    TOKENS = "tokens"
    STORAGE = "storage"
    DAILY = "daily"


@dataclass
class UsageCounter:
    """
    Counter record stored in the counters collection.

    Attributes:
        subject_id: Subject the quota is tracked against (partition key)
        window_key: "rate", "tokens:<date>", "daily:<date>" or "storage"
        quota: Quota kind owning this counter
        count: Units consumed in the window; never negative
        limit: Limit in force at the last update
        window_start: Epoch ms the window opened (None for storage)
        last_updated: Epoch ms of the last mutation
    """
    subject_id: str
    window_key: str
    quota: QuotaKind
    count: int = 0
    limit: int = 0
    window_start: Optional[int] = None
    last_updated: Optional[int] = None

    def to_item(self) -> Dict[str, Any]:
        item = {
            "subjectId": self.subject_id,
            "windowKey": self.window_key,
            "quota": self.quota.value,
            "count": self.count,
            "limit": self.limit,
        }
        if self.window_start is not None:
            item["windowStart"] = self.window_start
        if self.last_updated is not None:
            item["lastUpdated"] = self.last_updated
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UsageCounter":
        return cls(
            subject_id=item["subjectId"],
            window_key=item["windowKey"],
            quota=QuotaKind(item["quota"]),
            count=item.get("count", 0),
            limit=item.get("limit", 0),
            window_start=item.get("windowStart"),
            last_updated=item.get("lastUpdated"),
        )


@dataclass
class UsageResult:
    """
    Governor decision.

    `degraded` marks a decision taken without the counter store (fail-open
    or fail-closed); its usage figures are optimistic and were not persisted.
    """
    quota: QuotaKind
    allowed: bool
    current_usage: int
    limit: int
    remaining: int
    percentage_used: float
    retry_after: Optional[int] = None
    reset_at: Optional[datetime] = None
    degraded: bool = False

    @classmethod
    def build(
        cls,
        quota: QuotaKind,
        allowed: bool,
        current_usage: int,
        limit: int,
        **kwargs: Any,
    ) -> "UsageResult":
        """Derive remaining/percentage_used from usage and limit."""
        return cls(
            quota=quota,
            allowed=allowed,
            current_usage=current_usage,
            limit=limit,
            remaining=max(0, limit - current_usage),
            percentage_used=percentage(current_usage, limit),
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "quota": self.quota.value,
            "allowed": self.allowed,
            "currentUsage": self.current_usage,
            "limit": self.limit,
            "remaining": self.remaining,
            "percentageUsed": self.percentage_used,
            "degraded": self.degraded,
        }
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        if self.reset_at is not None:
            data["resetAt"] = isoformat(self.reset_at)
        return data


@dataclass
class DailyReport:
    """Usage of one day-windowed quota for one subject and date."""
    subject_id: str
    quota: QuotaKind
    date: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def percentage_used(self) -> float:
        return percentage(self.used, self.limit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subjectId": self.subject_id,
            "quota": self.quota.value,
            "date": self.date,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "percentageUsed": self.percentage_used,
        }


def percentage(used: int, limit: int) -> float:
    """Percent of limit used, 0 when the limit is not positive."""
    return (used / limit) * 100 if limit > 0 else 0.0
