"""Delayed job queue for warranty reminders.

``CeleryJobQueue`` publishes each reminder as a Celery task with a countdown
and keeps a Redis registry entry per job key. The registry is what makes
enqueueing idempotent: ``SET NX`` lets exactly one caller claim a key, every
later call for the same logical reminder is ignored.

Broker countdowns are capped at ``REMINDER_MAX_COUNTDOWN``: Redis redelivers
any ETA message held unacked past its visibility timeout, so a reminder months
away is published for the cap and the worker requeues it until it is due.

When jobs are disabled or the broker cannot be reached the queue degrades to
logging no-ops that report ``EnqueueResult.UNAVAILABLE``. Warranty writes must
never fail because reminders are down.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from functools import lru_cache
from typing import Any

import redis
from kombu.exceptions import OperationalError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.reminder_contract import JobRecord, WarrantyReminderJobPayload
from config import sanitize_redis_url, settings

_LOGGER = logging.getLogger(__name__)

REMINDER_TASK = "app.workers.reminder.handle"
REGISTRY_PREFIX = "wim:job:"

_REDIS_ERRORS = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)


class EnqueueResult(str, Enum):
    ENQUEUED = "enqueued"
    # the job key is already claimed by an earlier enqueue
    DUPLICATE = "duplicate"
    # redis or the broker is down, or jobs are disabled
    UNAVAILABLE = "unavailable"


class JobQueue:
    """Interface shared by the real queue, the degraded queue and test fakes."""

    available: bool = True

    def enqueue_delayed(
        self, job_key: str, payload: WarrantyReminderJobPayload, delay_ms: int
    ) -> EnqueueResult:
        """Schedule *payload* after *delay_ms*, at most once per *job_key*."""
        raise NotImplementedError

    def requeue(
        self, job_key: str, payload: WarrantyReminderJobPayload, delay_ms: int
    ) -> EnqueueResult:
        """Publish an already claimed job again, for a worker that picked it up early."""
        raise NotImplementedError

    def get_job(self, job_key: str) -> JobRecord | None:
        raise NotImplementedError


class DisabledJobQueue(JobQueue):
    available = False

    def __init__(self, reason: str = "jobs disabled"):
        self.reason = reason

    def enqueue_delayed(self, job_key, payload, delay_ms) -> EnqueueResult:
        _LOGGER.info("job queue unavailable (%s): dropping job_key=%s", self.reason, job_key)
        return EnqueueResult.UNAVAILABLE

    def requeue(self, job_key, payload, delay_ms) -> EnqueueResult:
        _LOGGER.info("job queue unavailable (%s): cannot requeue job_key=%s", self.reason, job_key)
        return EnqueueResult.UNAVAILABLE

    def get_job(self, job_key):
        _LOGGER.info("job queue unavailable (%s): get_job job_key=%s", self.reason, job_key)
        return None


class CeleryJobQueue(JobQueue):
    def __init__(
        self,
        redis_client: Any,
        celery_app: Any = None,
        queue_name: str | None = None,
        retention_seconds: int | None = None,
        max_countdown_seconds: int | None = None,
    ):
        if celery_app is None:
            from app.celery_app import celery_app
        self._redis = redis_client
        self._celery = celery_app
        self._queue_name = queue_name or settings.REMINDER_QUEUE
        self._retention_ms = 1000 * (
            retention_seconds if retention_seconds is not None else settings.JOB_KEY_RETENTION_SECONDS
        )
        self._max_countdown = (
            max_countdown_seconds
            if max_countdown_seconds is not None
            else settings.REMINDER_MAX_COUNTDOWN
        )

    @retry(
        retry=retry_if_exception_type(_REDIS_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    def _claim(self, job_key: str, record: str, ttl_ms: int) -> bool:
        return bool(self._redis.set(REGISTRY_PREFIX + job_key, record, nx=True, px=ttl_ms))

    def _publish(self, job_key: str, wire: dict, delay_ms: int) -> None:
        self._celery.send_task(
            REMINDER_TASK,
            kwargs={"payload": wire},
            task_id=job_key,
            countdown=min(delay_ms / 1000, self._max_countdown),
            queue=self._queue_name,
        )

    def enqueue_delayed(
        self, job_key: str, payload: WarrantyReminderJobPayload, delay_ms: int
    ) -> EnqueueResult:
        delay_ms = max(0, int(delay_ms))
        wire = payload.to_wire()
        record = json.dumps({"jobKey": job_key, "payload": wire, "delayMs": delay_ms})

        try:
            claimed = self._claim(job_key, record, delay_ms + self._retention_ms)
        except _REDIS_ERRORS as exc:
            _LOGGER.error("redis unavailable, reminder not enqueued job_key=%s: %s", job_key, exc)
            return EnqueueResult.UNAVAILABLE
        if not claimed:
            _LOGGER.info("job already enqueued job_key=%s", job_key)
            return EnqueueResult.DUPLICATE

        try:
            self._publish(job_key, wire, delay_ms)
        except (OperationalError, *_REDIS_ERRORS) as exc:
            _LOGGER.error("broker unavailable, reminder not enqueued job_key=%s: %s", job_key, exc)
            # release the key so a later schedule attempt can claim it again
            try:
                self._redis.delete(REGISTRY_PREFIX + job_key)
            except _REDIS_ERRORS:
                _LOGGER.warning("could not release job_key=%s", job_key)
            return EnqueueResult.UNAVAILABLE

        _LOGGER.info("enqueued reminder job_key=%s delay_ms=%s", job_key, delay_ms)
        return EnqueueResult.ENQUEUED

    def requeue(
        self, job_key: str, payload: WarrantyReminderJobPayload, delay_ms: int
    ) -> EnqueueResult:
        delay_ms = max(0, int(delay_ms))
        try:
            self._publish(job_key, payload.to_wire(), delay_ms)
        except (OperationalError, *_REDIS_ERRORS) as exc:
            _LOGGER.error("broker unavailable, reminder not requeued job_key=%s: %s", job_key, exc)
            return EnqueueResult.UNAVAILABLE
        _LOGGER.info("requeued reminder job_key=%s delay_ms=%s", job_key, delay_ms)
        return EnqueueResult.ENQUEUED

    def get_job(self, job_key: str) -> JobRecord | None:
        try:
            raw = self._redis.get(REGISTRY_PREFIX + job_key)
        except _REDIS_ERRORS as exc:
            _LOGGER.error("redis unavailable, get_job job_key=%s: %s", job_key, exc)
            return None
        if raw is None:
            return None
        data = json.loads(raw)
        return JobRecord(
            job_key=data["jobKey"],
            payload=WarrantyReminderJobPayload.model_validate(data["payload"]),
            delay_ms=data.get("delayMs", 0),
        )


@lru_cache(maxsize=1)
def get_job_queue() -> JobQueue:
    if not settings.JOBS_ENABLED:
        return DisabledJobQueue("JOBS_ENABLED is false")
    if not settings.REDIS_URL:
        _LOGGER.error("JOBS_ENABLED is true but REDIS_URL is not set; reminders disabled")
        return DisabledJobQueue("REDIS_URL not set")

    _LOGGER.info("job queue using redis %s", sanitize_redis_url(settings.REDIS_URL))
    client = redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=5)
    return CeleryJobQueue(client)
