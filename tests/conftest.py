"""Shared fixtures: in-memory SQLite database and a fake job queue."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

import db
import db.db as db_impl
from app.jobs.queue import EnqueueResult, JobQueue
from app.types.reminder_contract import JobRecord
from app.utils.dates import warranty_end_date

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class InMemoryJobQueue(JobQueue):
    """Job queue fake with the broker's dedup-by-key behaviour."""

    def __init__(self, available: bool = True):
        self.available = available
        self.jobs: dict[str, JobRecord] = {}
        self.attempts: list[str] = []
        self.requeued: list[JobRecord] = []

    def enqueue_delayed(self, job_key, payload, delay_ms):
        self.attempts.append(job_key)
        if not self.available:
            return EnqueueResult.UNAVAILABLE
        if job_key in self.jobs:
            return EnqueueResult.DUPLICATE
        self.jobs[job_key] = JobRecord(job_key=job_key, payload=payload, delay_ms=max(0, delay_ms))
        return EnqueueResult.ENQUEUED

    def requeue(self, job_key, payload, delay_ms):
        if not self.available:
            return EnqueueResult.UNAVAILABLE
        self.requeued.append(JobRecord(job_key=job_key, payload=payload, delay_ms=max(0, delay_ms)))
        return EnqueueResult.ENQUEUED

    def get_job(self, job_key):
        return self.jobs.get(job_key)


@pytest_asyncio.fixture
async def database():
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    db_impl.use_engine(engine)
    await db.create_all()
    yield engine
    await engine.dispose()
    await db.dispose_engine()


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def make_warranty(database):
    async def _make(
        owner_user_id: int = 1,
        purchase_date: datetime = datetime(2024, 6, 1, tzinfo=timezone.utc),
        duration_months: int = 12,
        name: str = "Laptop warranty",
    ):
        article = await db.insert_article(owner_user_id, f"Article of {name}")
        return await db.insert_warranty(
            owner_user_id=owner_user_id,
            article_id=article.article_id,
            name=name,
            purchase_date=purchase_date,
            duration_months=duration_months,
            end_date=warranty_end_date(purchase_date, duration_months),
        )

    return _make