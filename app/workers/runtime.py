"""In-process reminder worker lifecycle.

The composition root (``main.py`` or ``app.scripts.run_worker``) owns one
``WorkerRuntime``. ``start()`` returns the running ``WorkerHandle`` and is
idempotent: a second call hands back the same handle.

The embedded worker uses Celery's solo pool, one job at a time; scale out with
more processes (``celery -A app.celery_app worker``).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from config import settings

_LOGGER = logging.getLogger(__name__)


class WorkerHandle:
    def __init__(self, controller: Any, thread: threading.Thread):
        self.controller = controller
        self._thread = thread

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 10.0) -> None:
        self.controller.stop(in_sighandler=False)
        self._thread.join(timeout)


class WorkerRuntime:
    def __init__(
        self,
        celery_app: Any = None,
        queues: list[str] | None = None,
        controller_factory: Callable[[], Any] | None = None,
    ):
        if celery_app is None and controller_factory is None:
            from app.celery_app import celery_app
        self._app = celery_app
        self._queues = queues or [settings.REMINDER_QUEUE]
        self._factory = controller_factory or self._default_controller
        self._lock = threading.Lock()
        self._handle: WorkerHandle | None = None

    def _default_controller(self) -> Any:
        return self._app.WorkController(
            queues=self._queues,
            pool_cls="solo",
            concurrency=1,
            loglevel=settings.LOG_LEVEL,
        )

    @property
    def handle(self) -> WorkerHandle | None:
        return self._handle

    def start(self) -> WorkerHandle:
        with self._lock:
            if self._handle is not None and self._handle.alive:
                return self._handle
            controller = self._factory()
            thread = threading.Thread(
                target=controller.start, name="reminder-worker", daemon=True
            )
            thread.start()
            self._handle = WorkerHandle(controller, thread)
            _LOGGER.info("reminder worker started queues=%s", ",".join(self._queues))
            return self._handle

    def stop(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.stop()
            _LOGGER.info("reminder worker stopped")
