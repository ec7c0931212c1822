"""Time helpers shared by the governors and the parsing pipeline."""
from datetime import date, datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_millis(moment: datetime) -> int:
    """Epoch milliseconds for an aware datetime."""
    return int(moment.timestamp() * 1000)


def from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def day_key(moment: datetime) -> str:
    """YYYY-MM-DD of the UTC calendar day containing `moment`."""
    return moment.astimezone(timezone.utc).date().isoformat()


def start_of_next_day(moment: datetime) -> datetime:
    """Midnight UTC following `moment`."""
    day = moment.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def isoformat(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")
