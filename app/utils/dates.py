"""Calendar helpers for warranty periods."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import TypeVar

from dateutil.relativedelta import relativedelta

D = TypeVar("D", date, datetime)


def add_months(value: D, months: int) -> D:
    """Add whole calendar months to *value*.

    Day-of-month is kept when the target month has it, otherwise it is
    clamped to the month's last day (Jan 31 + 1 month -> Feb 28/29).
    Time of day and tzinfo of a ``datetime`` are preserved.
    """
    return value + relativedelta(months=months)


def warranty_end_date(purchase_date: date, duration_months: int) -> date:
    return add_months(purchase_date, duration_months)


def as_utc_datetime(value: date | datetime) -> datetime:
    """Normalise a date (midnight) or naive datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)
