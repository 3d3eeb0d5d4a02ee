"""Celery application instance shared across the backend.

Start a worker with:
    celery -A app.celery_app worker -Q wim-alerts -l info --concurrency=1
or through the runtime handle:
    python -m app.scripts.run_worker
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL or "redis://localhost:6379/0"

celery_app = Celery("wim_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = settings.REMINDER_RETRY_DELAY  # seconds
celery_app.conf.task_default_queue = settings.REMINDER_QUEUE
celery_app.conf.broker_connection_retry_on_startup = True

# Redis redelivers ETA messages held unacked past the visibility timeout.
# Countdowns are capped at REMINDER_MAX_COUNTDOWN (see app.jobs.queue), so
# the timeout only has to clear that cap.
celery_app.conf.broker_transport_options = {
    "visibility_timeout": 2 * settings.REMINDER_MAX_COUNTDOWN,
}

celery_app.conf.task_routes = {
    "app.workers.reminder.handle": {"queue": settings.REMINDER_QUEUE},
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
