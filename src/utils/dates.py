"""Date helpers shared by the analytics features."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

PERIOD_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}
SUPPORTED_PERIODS = ("7d", "30d", "90d", "1y")
DEFAULT_PERIOD = "30d"

GRANULARITY_DAY = "day"
GRANULARITY_HOUR = "hour"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_day(value: date | datetime) -> date:
    """Truncate a date or datetime to its (UTC) calendar day."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def day_key(value: date | datetime) -> str:
    return to_day(value).isoformat()


def day_bounds(value: date | datetime) -> tuple[datetime, datetime]:
    """Return the half-open [start, next day start) interval of a day."""
    day = to_day(value)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def iter_days(start: date | datetime, end: date | datetime) -> Iterator[date]:
    """Yield every calendar day from start to end, both inclusive."""
    current = to_day(start)
    last = to_day(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def bucket_key(value: datetime, granularity: str = GRANULARITY_DAY) -> str:
    """
    Key a timestamp into its day or hour bucket.

    Day buckets look like ``2024-03-01`` and hour buckets like
    ``2024-03-01T14:00``; both sort chronologically as strings.
    """
    value = ensure_utc(value)
    if granularity == GRANULARITY_HOUR:
        return value.strftime("%Y-%m-%dT%H:00")
    if granularity == GRANULARITY_DAY:
        return value.strftime("%Y-%m-%d")
    raise ValueError(f"Unsupported granularity: {granularity}")


def resolve_period(period: str | None, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Resolve a named period into a [now - period, now) range.

    Unknown or missing periods fall back to 30 days.
    """
    end = ensure_utc(now) if now else utcnow()

    if period == "1y":
        try:
            start = end.replace(year=end.year - 1)
        except ValueError:
            # Feb 29 has no counterpart in the previous year
            start = end.replace(year=end.year - 1, day=28)
        return start, end

    days = PERIOD_DAYS.get(period or DEFAULT_PERIOD, PERIOD_DAYS[DEFAULT_PERIOD])
    return end - timedelta(days=days), end
