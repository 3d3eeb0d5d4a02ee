"""Run the reminder worker in this process until interrupted.

    python -m app.scripts.run_worker
"""

from __future__ import annotations

import logging
import signal
import threading

from app.workers.runtime import WorkerRuntime
from config import settings


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    runtime = WorkerRuntime()
    handle = runtime.start()

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    while not stop.is_set() and handle.alive:
        stop.wait(1.0)
    runtime.stop()


if __name__ == "__main__":  # pragma: no cover
    main()
