"""Reminder schedule calculator.

Computes the J-30 / J-7 / J-1 reminder instants for a warranty end date.
Pure functions only: callers pass ``now`` explicitly so tests need no clock
mocking.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from app.types.reminder_contract import ReminderKind, ReminderScheduleItem
from app.utils.dates import as_utc_datetime

_LABELS = {
    ReminderKind.J30: "Warranty reminder J-30",
    ReminderKind.J7: "Warranty reminder J-7",
    ReminderKind.J1: "Warranty reminder J-1",
}


def compute_schedule(
    end_date: date | datetime,
    now: datetime,
    include_past: bool = False,
) -> list[ReminderScheduleItem]:
    end = as_utc_datetime(end_date)
    now = as_utc_datetime(now)
    items = [
        ReminderScheduleItem(kind=kind, execute_at=end - timedelta(days=kind.days_before))
        for kind in (ReminderKind.J30, ReminderKind.J7, ReminderKind.J1)
    ]
    if include_past:
        return items
    # strictly after now: a zero or negative delay is never scheduled
    return [item for item in items if item.execute_at > now]


def reminder_label(kind: ReminderKind) -> str:
    return _LABELS[kind]


def job_key(warranty_id: int, kind: ReminderKind, execute_at: datetime) -> str:
    """Stable dedup key: ``warranty:{id}:{kind}:{YYYYMMDD}``."""
    day = as_utc_datetime(execute_at).astimezone(timezone.utc)
    return f"warranty:{warranty_id}:{kind.value}:{day:%Y%m%d}"
