"""Time utility helpers."""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, timedelta


def now_utc() -> datetime:
    """Return current timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


def utc_today() -> date:
    """Return current UTC date."""
    return now_utc().date()


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a PostgREST timestamp into an aware UTC datetime."""
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        parsed = value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def start_of_month(moment: datetime) -> datetime:
    """Return midnight UTC on the first day of ``moment``'s month."""
    moment = moment.astimezone(UTC)
    return datetime(moment.year, moment.month, 1, tzinfo=UTC)


def month_bounds(day: date) -> tuple[date, date]:
    """Return the first and last calendar day of ``day``'s month."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def effective_sweep_date(year: int, month: int, sweep_day: int) -> date:
    """Return the sweep date for a month, clamped to the month's last day."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(sweep_day, last))


def is_sweep_due(today: date, sweep_day: int) -> bool:
    """Return True when ``today`` is the configured sweep day of its month."""
    return today == effective_sweep_date(today.year, today.month, sweep_day)


def is_older_than(value: str | datetime, age: timedelta, now: datetime | None = None) -> bool:
    """Return True when the timestamp is more than ``age`` in the past."""
    reference = now or now_utc()
    return parse_timestamp(value) < reference - age
