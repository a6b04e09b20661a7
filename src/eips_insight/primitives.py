"""Shared aggregation primitives: percentiles, calendar buckets, gap-fill."""

from __future__ import annotations

import calendar
import math
from collections.abc import Iterator, Sequence
from datetime import UTC, date, datetime, timedelta

STALENESS_BUCKETS: tuple[str, ...] = ("0-7 days", "7-30 days", "30-90 days", "90+ days")


def percentile_cont(values: Sequence[float], fraction: float) -> float | None:
    """Continuous percentile with linear interpolation between ranks.

    Matches SQL ``PERCENTILE_CONT``: for ``n`` sorted samples the
    percentile sits at zero-based position ``fraction * (n - 1)``.
    Returns ``None`` for an empty sample.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"fraction must be within [0, 1], got {fraction}")
    if not values:
        return None
    ordered = sorted(values)
    position = fraction * (len(ordered) - 1)
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    weight = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from *start* to *end* (truncated toward zero)."""
    seconds = (end - start).total_seconds()
    return int(seconds / 86400)


def month_key(value: datetime | date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_start(value: datetime | date) -> date:
    return date(value.year, value.month, 1)


def next_month(value: date) -> date:
    if value.month == 12:
        return date(value.year + 1, 1, 1)
    return date(value.year, value.month + 1, 1)


def parse_month(key: str) -> date:
    """Parse a ``YYYY-MM`` key into the first day of that month."""
    year, month = key.split("-", 1)
    return date(int(year), int(month), 1)


def month_range(first: date, last: date) -> Iterator[date]:
    """Yield the first day of every month from *first* through *last*."""
    current = month_start(first)
    stop = month_start(last)
    while current <= stop:
        yield current
        current = next_month(current)


def months_before(value: datetime, months: int) -> datetime:
    """Shift *value* back by calendar months, clamping the day to month end."""
    index = value.year * 12 + value.month - 1 - months
    year, month = divmod(index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


def trailing_months(now: datetime, months: int) -> list[date]:
    """First days of the *months* calendar months ending with the month of *now*."""
    return list(month_range(month_start(months_before(now, months - 1)), month_start(now)))


def month_boundary(month: date) -> datetime:
    """Exclusive end of *month*: midnight UTC on the first of the next month."""
    following = next_month(month)
    return datetime(following.year, following.month, 1, tzinfo=UTC)


def day_range(end: date, days: int) -> list[date]:
    """The *days* calendar days ending on *end*, oldest first."""
    return [end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def staleness_bucket(age_days: int) -> str:
    """Place an open PR's age into one of the fixed staleness buckets."""
    if age_days <= 7:
        return STALENESS_BUCKETS[0]
    if age_days <= 30:
        return STALENESS_BUCKETS[1]
    if age_days <= 90:
        return STALENESS_BUCKETS[2]
    return STALENESS_BUCKETS[3]


def utcnow() -> datetime:
    return datetime.now(UTC)
