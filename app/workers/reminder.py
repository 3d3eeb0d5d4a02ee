"""Warranty reminder worker.

Per job: PENDING (enqueued) -> RUNNING (picked up) -> SENT | FAILED.

A job picked up before its alert is due (capped broker countdown, or a
same-day reschedule that moved the reminder later) is requeued for the
remaining time and the alert is left untouched.

The worker never retries in-process. A failure is recorded on the alert first
and then handed back to Celery, whose retry/redelivery policy decides what
happens next.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, TypeVar

from pydantic import ValidationError as PayloadError

import db
from app.celery_app import celery_app
from app.jobs.queue import EnqueueResult, JobQueue, get_job_queue
from app.services.reminder_schedule import job_key
from app.types.reminder_contract import AlertStatus, ReminderKind, WarrantyReminderJobPayload
from app.utils import notify
from app.utils.dates import as_utc_datetime, utc_now
from config import settings

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"
DEFERRED = "deferred"


class RequeueError(RuntimeError):
    """An early job could not be put back on the queue."""


async def _defer(job, alert, due: datetime, now: datetime, queue: JobQueue | None) -> str:
    kind = ReminderKind(alert.reminder_kind)
    payload = WarrantyReminderJobPayload(
        warranty_id=job.warranty_id,
        alert_id=alert.alert_id,
        owner_user_id=alert.owner_user_id,
        article_id=alert.article_id,
        reminder_kind=kind,
        execute_at=due,
    )
    key = job_key(job.warranty_id, kind, due)
    delay_ms = int((due - now).total_seconds() * 1000)
    queue = queue or get_job_queue()
    result = await asyncio.to_thread(queue.requeue, key, payload, delay_ms)
    if result is not EnqueueResult.ENQUEUED:
        raise RequeueError(f"could not requeue alert_id={alert.alert_id} job_key={key}")
    _LOGGER.info(
        "[alerts] alert_id=%s not due until %s, requeued delay_ms=%s",
        alert.alert_id, due.isoformat(), delay_ms,
    )
    return DEFERRED


async def process_reminder(
    job: WarrantyReminderJobPayload,
    *,
    now: datetime | None = None,
    queue: JobQueue | None = None,
) -> str:
    """Fire one reminder and move its alert to a terminal status."""
    alert = await db.get_alert(job.alert_id)
    if alert is None:
        _LOGGER.warning("[alerts] alert_id=%s vanished, nothing to send", job.alert_id)
        return SKIPPED
    if alert.status == AlertStatus.CANCELLED.value:
        # a reschedule onto the same day reuses this job key, so the job
        # serves the replacement alert instead
        successor = await db.find_live_alert(
            job.warranty_id, job.reminder_kind.value, job.execute_at.astimezone(timezone.utc).date()
        )
        if successor is None:
            _LOGGER.info("[alerts] skip alert_id=%s status=CANCELLED", job.alert_id)
            return SKIPPED
        _LOGGER.info("[alerts] alert_id=%s superseded by alert_id=%s", job.alert_id, successor.alert_id)
        alert = successor
    # cancel_pending cannot pull jobs out of the broker, so check here
    if alert.status == AlertStatus.SENT.value:
        _LOGGER.info("[alerts] skip alert_id=%s status=SENT", alert.alert_id)
        return SKIPPED

    now = as_utc_datetime(now or utc_now())
    due = as_utc_datetime(alert.alert_date)
    if due > now:
        return await _defer(job, alert, due, now, queue)

    alert_id = alert.alert_id
    _LOGGER.info(
        "[alerts] run alert_id=%s warranty_id=%s owner_user_id=%s kind=%s execute_at=%s",
        alert_id, job.warranty_id, job.owner_user_id,
        job.reminder_kind.value, job.execute_at.isoformat(),
    )
    try:
        warranty = await db.get_warranty(job.warranty_id)
        if warranty is None:
            _LOGGER.warning(
                "[alerts] warranty_id=%s not found for alert_id=%s",
                job.warranty_id, alert_id,
            )
            await db.mark_failed(alert_id, "warranty not found")
            return FAILED

        notify.send_warranty_reminder(
            owner_user_id=warranty.owner_user_id,
            warranty_id=warranty.warranty_id,
            warranty_name=warranty.name,
            end_date=as_utc_datetime(warranty.end_date),
            reminder_kind=job.reminder_kind.value,
        )
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("[alerts] reminder failed alert_id=%s: %s", alert_id, exc)
        await db.mark_failed(alert_id, exc)
        raise

    await db.mark_sent(alert_id)
    return SENT


def _run_async(coro: Awaitable[T]) -> T:
    """Run *coro* on a fresh loop with its own database engine."""
    async def _scoped():
        async with db.task_engine():
            return await coro

    return asyncio.run(_scoped())


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(
    name="app.workers.reminder.handle",
    bind=True,
    max_retries=settings.REMINDER_MAX_RETRIES,
)
def handle(self, payload: dict[str, Any]) -> str:  # noqa: D401
    """Process one delayed warranty reminder job."""
    try:
        job = WarrantyReminderJobPayload.model_validate(payload)
    except PayloadError:
        # a malformed payload will not get better on retry
        _LOGGER.error("[alerts] invalid reminder payload task_id=%s: %r", self.request.id, payload)
        raise

    try:
        return _run_async(process_reminder(job))
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc)
