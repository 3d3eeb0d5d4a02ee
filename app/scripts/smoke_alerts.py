"""Smoke check: reschedule a warranty and verify every job key round-trips.

    python -m app.scripts.smoke_alerts <owner_user_id>

Creates a throwaway article + warranty ending in 45 days when the owner has
none, so all three reminders are in the future.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta

import db
from app.jobs.queue import get_job_queue
from app.services import alert_scheduler
from app.services.reminder_schedule import compute_schedule, job_key
from app.types.reminder_contract import AlertStatus
from app.utils.dates import add_months, utc_now


async def main(owner_user_id: int) -> int:
    queue = get_job_queue()
    if not queue.available:
        print("Job queue disabled (JOBS_ENABLED / REDIS_URL); nothing to check")
        return 1

    now = utc_now()
    end = now + timedelta(days=45)
    duration_months = 12
    # purchase date chosen so the warranty ends on `end`
    purchase = add_months(end, -duration_months)

    article = await db.insert_article(owner_user_id, "Smoke Article")
    warranty = await db.insert_warranty(
        owner_user_id=owner_user_id,
        article_id=article.article_id,
        name="Smoke Warranty",
        purchase_date=purchase,
        duration_months=duration_months,
        end_date=add_months(purchase, duration_months),
    )

    result = await alert_scheduler.reschedule_for_warranty(
        owner_user_id, warranty.warranty_id, purchase, duration_months, now=now, queue=queue
    )
    print("Warranty:", warranty.warranty_id, "end:", result.end_date.isoformat())

    alerts = await db.list_by_warranty(warranty.warranty_id, AlertStatus.SCHEDULED)
    for a in alerts:
        print("Alert", a.alert_id, a.reminder_kind, a.alert_date, a.status)

    missing = 0
    for item in compute_schedule(result.end_date, now):
        key = job_key(warranty.warranty_id, item.kind, item.execute_at)
        found = queue.get_job(key) is not None
        missing += not found
        print("Job", item.kind.value, key, "FOUND" if found else "MISSING")

    await db.dispose_engine()
    return 1 if missing else 0


if __name__ == "__main__":  # pragma: no cover
    if len(sys.argv) != 2:
        print("usage: python -m app.scripts.smoke_alerts <owner_user_id>")
        sys.exit(2)
    sys.exit(asyncio.run(main(int(sys.argv[1]))))
