"""Reminder notification side effect.

There is no push/email transport yet: a reminder "notification" is a log line.
"""

from __future__ import annotations

import logging
from datetime import datetime

_LOGGER = logging.getLogger(__name__)


def send_warranty_reminder(
    owner_user_id: int,
    warranty_id: int,
    warranty_name: str,
    end_date: datetime,
    reminder_kind: str,
) -> None:
    _LOGGER.info(
        "[notify] DEV mode: would remind user_id=%s warranty_id=%s (%s) kind=%s end=%s",
        owner_user_id, warranty_id, warranty_name, reminder_kind, end_date.isoformat(),
    )
