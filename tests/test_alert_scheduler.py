from datetime import date, datetime, timezone

import pytest
import redis
from kombu.exceptions import OperationalError

import db
from app.errors import ConflictError, NotFoundError, ValidationError
from app.jobs.queue import CeleryJobQueue, DisabledJobQueue
from app.services import alert_scheduler
from app.services.reminder_schedule import compute_schedule
from app.types.reminder_contract import AlertStatus
from app.utils.dates import as_utc_datetime

UTC = timezone.utc
NOW = datetime(2025, 1, 1, tzinfo=UTC)
PURCHASE = datetime(2024, 6, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_schedule_creates_alerts_and_jobs(make_warranty, job_queue):
    w = await make_warranty(owner_user_id=4)

    result = await alert_scheduler.schedule_for_warranty(
        4, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue
    )

    assert result.scheduled is True
    assert result.end_date == datetime(2025, 6, 1, tzinfo=UTC)
    assert result.enqueued == 3
    assert sorted(job_queue.jobs) == sorted([
        f"warranty:{w.warranty_id}:J30:20250502",
        f"warranty:{w.warranty_id}:J7:20250525",
        f"warranty:{w.warranty_id}:J1:20250531",
    ])

    j30 = job_queue.get_job(f"warranty:{w.warranty_id}:J30:20250502")
    assert j30.delay_ms == 121 * 24 * 3600 * 1000
    assert j30.payload.owner_user_id == 4
    assert j30.payload.alert_id == result.alerts[0].alert_id
    wire = j30.payload.to_wire()
    assert wire["executeAt"].startswith("2025-05-02T00:00:00")
    assert wire["reminderKind"] == "J30"

    stored = await db.list_by_warranty(w.warranty_id, AlertStatus.SCHEDULED)
    assert [as_utc_datetime(a.alert_date) for a in stored] == [
        datetime(2025, 5, 2, tzinfo=UTC),
        datetime(2025, 5, 25, tzinfo=UTC),
        datetime(2025, 5, 31, tzinfo=UTC),
    ]
    assert [a.label for a in stored] == [
        "Warranty reminder J-30",
        "Warranty reminder J-7",
        "Warranty reminder J-1",
    ]


@pytest.mark.asyncio
async def test_schedule_near_expiry_only_keeps_future(make_warranty, job_queue):
    w = await make_warranty()
    # ends 2025-01-05: only J-1 is still ahead of NOW
    purchase = datetime(2024, 1, 5, tzinfo=UTC)

    result = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, purchase, 12, now=NOW, queue=job_queue
    )

    assert [a.reminder_kind for a in result.alerts] == ["J1"]
    assert list(job_queue.jobs) == [f"warranty:{w.warranty_id}:J1:20250104"]


@pytest.mark.asyncio
async def test_schedule_expired_warranty_creates_nothing(make_warranty, job_queue):
    w = await make_warranty()

    result = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, datetime(2020, 1, 1, tzinfo=UTC), 12, now=NOW, queue=job_queue
    )

    assert result.alerts == [] and result.enqueued == 0
    assert await db.list_by_warranty(w.warranty_id) == []


@pytest.mark.asyncio
async def test_degraded_mode_persists_nothing(make_warranty):
    w = await make_warranty()

    result = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, PURCHASE, 12, now=NOW, queue=DisabledJobQueue()
    )

    assert result.scheduled is False
    assert await db.list_by_warranty(w.warranty_id) == []


@pytest.mark.asyncio
async def test_scheduling_twice_does_not_duplicate(make_warranty, job_queue):
    w = await make_warranty()

    await alert_scheduler.schedule_for_warranty(1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)
    again = await alert_scheduler.schedule_for_warranty(1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)

    assert again.alerts == []
    assert len(job_queue.jobs) == 3
    assert len(await db.list_by_warranty(w.warranty_id)) == 3


@pytest.mark.parametrize(
    "owner, warranty_id, purchase, duration",
    [
        (1, 1, PURCHASE, 0),
        (1, 1, PURCHASE, -3),
        (1, 1, PURCHASE, 1.5),
        (1, 1, PURCHASE, True),
        (1, 1, "2024-06-01", 12),
        (0, 1, PURCHASE, 12),
        (1, None, PURCHASE, 12),
    ],
)
@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_persistence(
    database, job_queue, owner, warranty_id, purchase, duration
):
    with pytest.raises(ValidationError):
        await alert_scheduler.schedule_for_warranty(
            owner, warranty_id, purchase, duration, now=NOW, queue=job_queue
        )
    assert job_queue.attempts == []


@pytest.mark.asyncio
async def test_missing_warranty(database, job_queue):
    with pytest.raises(NotFoundError):
        await alert_scheduler.schedule_for_warranty(1, 404, PURCHASE, 12, now=NOW, queue=job_queue)


@pytest.mark.asyncio
async def test_owner_must_match_warranty(make_warranty, job_queue):
    w = await make_warranty(owner_user_id=1)

    with pytest.raises(ConflictError):
        await alert_scheduler.schedule_for_warranty(2, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)
    assert await db.list_by_warranty(w.warranty_id) == []


@pytest.mark.asyncio
async def test_reschedule_replaces_pending_alerts(make_warranty, job_queue):
    w = await make_warranty()
    first = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue
    )

    result = await alert_scheduler.reschedule_for_warranty(
        1, w.warranty_id, PURCHASE, 18, now=NOW, queue=job_queue
    )

    expected = compute_schedule(date(2025, 12, 1), NOW)
    scheduled = await db.list_by_warranty(w.warranty_id, AlertStatus.SCHEDULED)
    assert result.cancelled == 3
    assert len(scheduled) == len(expected) == 3
    assert [as_utc_datetime(a.alert_date) for a in scheduled] == [i.execute_at for i in expected]
    old_ids = {a.alert_id for a in first.alerts}
    assert not old_ids & {a.alert_id for a in scheduled}
    cancelled = await db.list_by_warranty(w.warranty_id, AlertStatus.CANCELLED)
    assert {a.alert_id for a in cancelled} == old_ids
    assert f"warranty:{w.warranty_id}:J1:20251130" in job_queue.jobs


@pytest.mark.asyncio
async def test_reschedule_with_queue_down_still_cancels(make_warranty, job_queue):
    w = await make_warranty()
    await alert_scheduler.schedule_for_warranty(1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)

    result = await alert_scheduler.reschedule_for_warranty(
        1, w.warranty_id, PURCHASE, 18, now=NOW, queue=DisabledJobQueue()
    )

    assert result.scheduled is False and result.cancelled == 3
    assert await db.list_by_warranty(w.warranty_id, AlertStatus.SCHEDULED) == []


@pytest.mark.asyncio
async def test_cancel_for_warranty(make_warranty, job_queue):
    w = await make_warranty()
    await alert_scheduler.schedule_for_warranty(1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)

    assert await alert_scheduler.cancel_for_warranty(w.warranty_id) == 3
    assert await alert_scheduler.cancel_for_warranty(w.warranty_id) == 0


@pytest.mark.asyncio
async def test_alert_owners_always_match_their_warranty(make_warranty, job_queue):
    for owner in (1, 2, 3):
        w = await make_warranty(owner_user_id=owner, name=f"w{owner}")
        await alert_scheduler.schedule_for_warranty(owner, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)
        await alert_scheduler.reschedule_for_warranty(owner, w.warranty_id, PURCHASE, 24, now=NOW, queue=job_queue)

    assert await db.find_ownership_violations() == []


class DownRedis:
    def set(self, *args, **kwargs):
        raise redis.exceptions.ConnectionError("connection refused")

    def get(self, name):
        raise redis.exceptions.ConnectionError("connection refused")

    def delete(self, name):
        raise redis.exceptions.ConnectionError("connection refused")


class DictRedis:
    def __init__(self):
        self.store = {}

    def set(self, name, value, nx=False, px=None):
        if nx and name in self.store:
            return None
        self.store[name] = value
        return True

    def get(self, name):
        return self.store.get(name)

    def delete(self, name):
        self.store.pop(name, None)


class BrokerFailingAfter:
    def __init__(self, successes: int):
        self.successes = successes
        self.sent = []

    def send_task(self, name, **kwargs):
        if len(self.sent) >= self.successes:
            raise OperationalError("broker went away")
        self.sent.append(kwargs["task_id"])


def _celery_queue(redis_client, celery):
    return CeleryJobQueue(redis_client, celery_app=celery, queue_name="test-alerts", retention_seconds=60)


@pytest.mark.asyncio
async def test_redis_outage_at_runtime_keeps_no_alerts(make_warranty):
    w = await make_warranty()
    queue = _celery_queue(DownRedis(), BrokerFailingAfter(successes=3))

    result = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, PURCHASE, 12, now=NOW, queue=queue
    )

    assert result.scheduled is False
    assert result.alerts == [] and result.enqueued == 0
    assert await db.list_by_warranty(w.warranty_id) == []


@pytest.mark.asyncio
async def test_broker_failing_midway_keeps_only_published_alerts(make_warranty):
    w = await make_warranty()
    celery = BrokerFailingAfter(successes=1)

    result = await alert_scheduler.schedule_for_warranty(
        1, w.warranty_id, PURCHASE, 12, now=NOW, queue=_celery_queue(DictRedis(), celery)
    )

    assert result.scheduled is False and result.enqueued == 1
    stored = await db.list_by_warranty(w.warranty_id)
    assert [a.alert_id for a in stored] == [a.alert_id for a in result.alerts]
    assert len(stored) == 1 and stored[0].reminder_kind == "J30"
    assert celery.sent == [f"warranty:{w.warranty_id}:J30:20250502"]


@pytest.mark.asyncio
async def test_reschedule_during_redis_outage_leaves_no_dead_alerts(make_warranty, job_queue):
    w = await make_warranty()
    await alert_scheduler.schedule_for_warranty(1, w.warranty_id, PURCHASE, 12, now=NOW, queue=job_queue)

    result = await alert_scheduler.reschedule_for_warranty(
        1, w.warranty_id, PURCHASE, 18, now=NOW, queue=_celery_queue(DownRedis(), BrokerFailingAfter(3))
    )

    assert result.scheduled is False and result.cancelled == 3
    assert await db.list_by_warranty(w.warranty_id, AlertStatus.SCHEDULED) == []
