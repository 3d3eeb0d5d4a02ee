"""Scheduling orchestrator for warranty reminders.

Called by the warranty write path:

* create -> ``schedule_for_warranty``
* purchase date / duration change -> ``reschedule_for_warranty``
* delete -> ``cancel_for_warranty``

Alerts are only kept when the job queue can actually deliver them. With the
queue disabled nothing is persisted; when publishing fails at run time the
alerts whose jobs did not make it are discarded again. Either way scheduling
logs and returns; it never fails the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime

import db
from app.errors import ConflictError, NotFoundError, ValidationError
from app.jobs.queue import EnqueueResult, JobQueue, get_job_queue
from app.services.reminder_schedule import compute_schedule, job_key, reminder_label
from app.types.reminder_contract import (
    AlertDraft,
    ReminderKind,
    ReminderScheduleItem,
    WarrantyReminderJobPayload,
)
from app.utils.dates import add_months, as_utc_datetime, utc_now

_LOGGER = logging.getLogger(__name__)


@dataclass
class ScheduleResult:
    warranty_id: int
    end_date: datetime
    scheduled: bool
    alerts: list = field(default_factory=list)
    enqueued: int = 0
    cancelled: int = 0


def _validate(owner_user_id, warranty_id, purchase_date, duration_months) -> None:
    for name, value in (("owner_user_id", owner_user_id), ("warranty_id", warranty_id)):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"{name} must be a positive integer")
    if isinstance(duration_months, bool) or not isinstance(duration_months, int):
        raise ValidationError("duration_months must be a whole number of months")
    if duration_months < 1:
        raise ValidationError("duration_months must be at least 1")
    if not isinstance(purchase_date, date):
        raise ValidationError("purchase_date must be a date or datetime")


async def _load_owned_warranty(owner_user_id: int, warranty_id: int):
    warranty = await db.get_warranty(warranty_id)
    if warranty is None:
        raise NotFoundError(f"warranty {warranty_id} not found")
    if warranty.owner_user_id != owner_user_id:
        raise ConflictError(f"owner {owner_user_id} does not own warranty {warranty_id}")
    return warranty


def _drafts(items: list[ReminderScheduleItem]) -> list[AlertDraft]:
    return [
        AlertDraft(kind=item.kind, execute_at=item.execute_at, label=reminder_label(item.kind))
        for item in items
    ]


async def _enqueue_alerts(queue: JobQueue, alerts: list, now: datetime) -> tuple[int, list]:
    """Publish one job per alert. Returns the enqueued count and the alerts kept."""
    enqueued = 0
    unpublished = []
    for alert in alerts:
        kind = ReminderKind(alert.reminder_kind)
        execute_at = as_utc_datetime(alert.alert_date)
        payload = WarrantyReminderJobPayload(
            warranty_id=alert.warranty_id,
            alert_id=alert.alert_id,
            owner_user_id=alert.owner_user_id,
            article_id=alert.article_id,
            reminder_kind=kind,
            execute_at=execute_at,
        )
        delay_ms = max(0, int((execute_at - now).total_seconds() * 1000))
        key = job_key(alert.warranty_id, kind, execute_at)
        # queue clients block on network I/O
        result = await asyncio.to_thread(queue.enqueue_delayed, key, payload, delay_ms)
        if result is EnqueueResult.ENQUEUED:
            enqueued += 1
        elif result is EnqueueResult.UNAVAILABLE:
            unpublished.append(alert.alert_id)

    if unpublished:
        discarded = await db.discard_alerts(unpublished)
        _LOGGER.warning(
            "job queue unavailable, discarded %s alerts with no job warranty_id=%s",
            discarded, alerts[0].warranty_id,
        )
        alerts = [a for a in alerts if a.alert_id not in unpublished]
    return enqueued, alerts


def _prepare(purchase_date, duration_months, now):
    now = as_utc_datetime(now or utc_now())
    end = add_months(as_utc_datetime(purchase_date), duration_months)
    return now, end, compute_schedule(end, now)


async def schedule_for_warranty(
    owner_user_id: int,
    warranty_id: int,
    purchase_date: date | datetime,
    duration_months: int,
    *,
    now: datetime | None = None,
    queue: JobQueue | None = None,
) -> ScheduleResult:
    _validate(owner_user_id, warranty_id, purchase_date, duration_months)
    await _load_owned_warranty(owner_user_id, warranty_id)
    now, end, items = _prepare(purchase_date, duration_months, now)

    queue = queue or get_job_queue()
    if not queue.available:
        _LOGGER.info("job queue unavailable, no reminders for warranty_id=%s", warranty_id)
        return ScheduleResult(warranty_id=warranty_id, end_date=end, scheduled=False)
    if not items:
        _LOGGER.info("no future reminders for warranty_id=%s end=%s", warranty_id, end.isoformat())
        return ScheduleResult(warranty_id=warranty_id, end_date=end, scheduled=True)

    created = await db.create_alerts(owner_user_id, warranty_id, _drafts(items))
    enqueued, alerts = await _enqueue_alerts(queue, created, now)
    _LOGGER.info(
        "scheduled warranty_id=%s alerts=%s enqueued=%s", warranty_id, len(alerts), enqueued
    )
    return ScheduleResult(
        warranty_id=warranty_id,
        end_date=end,
        scheduled=len(alerts) == len(created),
        alerts=alerts,
        enqueued=enqueued,
    )


async def reschedule_for_warranty(
    owner_user_id: int,
    warranty_id: int,
    purchase_date: date | datetime,
    duration_months: int,
    *,
    now: datetime | None = None,
    queue: JobQueue | None = None,
) -> ScheduleResult:
    """Replace a warranty's pending reminders after its end date changed.

    Old SCHEDULED alerts are cancelled and the new ones created in a single
    store transaction.
    """
    _validate(owner_user_id, warranty_id, purchase_date, duration_months)
    await _load_owned_warranty(owner_user_id, warranty_id)
    now, end, items = _prepare(purchase_date, duration_months, now)

    queue = queue or get_job_queue()
    if not queue.available:
        # the old reminders point at a date that no longer applies
        cancelled = await db.cancel_pending(warranty_id)
        _LOGGER.info(
            "job queue unavailable, cancelled=%s and no new reminders for warranty_id=%s",
            cancelled, warranty_id,
        )
        return ScheduleResult(
            warranty_id=warranty_id, end_date=end, scheduled=False, cancelled=cancelled
        )

    cancelled, created = await db.replace_pending(owner_user_id, warranty_id, _drafts(items))
    enqueued, alerts = await _enqueue_alerts(queue, created, now)
    _LOGGER.info(
        "rescheduled warranty_id=%s cancelled=%s alerts=%s enqueued=%s",
        warranty_id, cancelled, len(alerts), enqueued,
    )
    return ScheduleResult(
        warranty_id=warranty_id,
        end_date=end,
        scheduled=len(alerts) == len(created),
        alerts=alerts,
        enqueued=enqueued,
        cancelled=cancelled,
    )


async def cancel_for_warranty(warranty_id: int) -> int:
    return await db.cancel_pending(warranty_id)
