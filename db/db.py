"""
Async DB helpers for warranty reminders.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

The alert store functions here are the only code allowed to mutate
``alerts`` rows. Each public helper runs in its own transaction.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime
from typing import Any, AsyncIterator, Iterable, Sequence, TypedDict

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.pool import NullPool, StaticPool

from app.errors import ConflictError, NotFoundError
from app.types.reminder_contract import AlertDraft, AlertStatus
from app.utils.dates import as_utc_datetime, utc_now
from db.models import Alert, Article, Base, Warranty

_LOGGER = logging.getLogger(__name__)

ERROR_MESSAGE_MAX = 1000

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None
# set inside worker tasks so they never touch the process-wide pool
_task_session_maker: ContextVar[async_sessionmaker[AsyncSession] | None] = ContextVar(
    "task_session_maker", default=None
)


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite"):
        return url
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            # in-memory databases only live as long as their single connection
            _engine = create_async_engine(
                url, poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine


def use_engine(engine: AsyncEngine) -> None:
    """Point the helpers at an existing engine (tests, scripts)."""
    global _engine, _session_maker
    _engine = engine
    _session_maker = None


def _get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with (_task_session_maker.get() or _get_session_maker())() as session:
        yield session


@asynccontextmanager
async def task_engine() -> AsyncIterator[AsyncEngine]:
    """Bind the helpers to a private, unpooled engine for the current task.

    Worker tasks run on their own event loop, possibly in a thread next to the
    API. Connections pooled by the shared engine belong to the API loop, so a
    task gets its own engine and disposes only that one.
    """
    engine = create_async_engine(_build_url(), poolclass=NullPool)
    token = _task_session_maker.set(async_sessionmaker(engine, expire_on_commit=False))
    try:
        yield engine
    finally:
        _task_session_maker.reset(token)
        await engine.dispose()


# ──────────────────────────────────────────────────────────────────────
# 2. DDL helpers (tests / local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 3. Articles / warranties (read mostly; writes for the warranty service)
# ──────────────────────────────────────────────────────────────────────
async def insert_article(owner_user_id: int, name: str) -> Article:
    article = Article(owner_user_id=owner_user_id, name=name)
    async with session_scope() as s, s.begin():
        s.add(article)
    return article


async def get_article(article_id: int) -> Article | None:
    async with session_scope() as s:
        return await s.get(Article, article_id)


async def get_warranty(warranty_id: int) -> Warranty | None:
    async with session_scope() as s:
        return await s.get(Warranty, warranty_id)


async def get_warranty_by_article(article_id: int) -> Warranty | None:
    async with session_scope() as s:
        res = await s.execute(select(Warranty).where(Warranty.article_id == article_id))
        return res.scalar_one_or_none()


async def insert_warranty(
    owner_user_id: int,
    article_id: int,
    name: str,
    purchase_date: datetime,
    duration_months: int,
    end_date: datetime,
) -> Warranty:
    warranty = Warranty(
        owner_user_id=owner_user_id,
        article_id=article_id,
        name=name,
        purchase_date=purchase_date,
        duration_months=duration_months,
        end_date=end_date,
        is_valid=True,
    )
    try:
        async with session_scope() as s, s.begin():
            s.add(warranty)
    except IntegrityError as exc:
        # unique article_id: a concurrent create won the race
        raise ConflictError(f"warranty already exists for article {article_id}") from exc
    return warranty


async def update_warranty(warranty_id: int, values: dict[str, Any]) -> Warranty | None:
    async with session_scope() as s, s.begin():
        warranty = await s.get(Warranty, warranty_id, with_for_update=True)
        if warranty is None:
            return None
        for key, value in values.items():
            setattr(warranty, key, value)
    return warranty


async def delete_warranty(warranty_id: int) -> bool:
    async with session_scope() as s, s.begin():
        warranty = await s.get(Warranty, warranty_id)
        if warranty is None:
            return False
        # detach alert history before the row goes away
        await s.execute(
            update(Alert).where(Alert.warranty_id == warranty_id).values(warranty_id=None)
        )
        await s.delete(warranty)
    return True


# ──────────────────────────────────────────────────────────────────────
# 4. Alert store
# ──────────────────────────────────────────────────────────────────────
async def _lock_warranty(s: AsyncSession, warranty_id: int) -> Warranty | None:
    # row lock doubles as the per-warranty mutex for (re)scheduling
    stmt = select(Warranty).where(Warranty.warranty_id == warranty_id).with_for_update()
    res = await s.execute(stmt)
    return res.scalar_one_or_none()


async def _insert_alerts(
    s: AsyncSession,
    owner_user_id: int | None,
    warranty_id: int,
    items: Iterable[AlertDraft],
) -> list[Alert]:
    warranty = await _lock_warranty(s, warranty_id)
    if warranty is None:
        raise NotFoundError(f"warranty {warranty_id} not found")
    if owner_user_id is not None and owner_user_id != warranty.owner_user_id:
        raise ConflictError(
            f"owner {owner_user_id} does not own warranty {warranty_id}"
        )

    live = await s.execute(
        select(Alert.reminder_kind).where(
            Alert.warranty_id == warranty_id,
            Alert.status == AlertStatus.SCHEDULED.value,
        )
    )
    live_kinds = set(live.scalars().all())
    alerts = []
    for item in items:
        if item.kind.value in live_kinds:
            _LOGGER.info(
                "alert already scheduled warranty_id=%s kind=%s, skipping",
                warranty_id, item.kind.value,
            )
            continue
        alerts.append(Alert(
            owner_user_id=warranty.owner_user_id,
            warranty_id=warranty.warranty_id,
            article_id=warranty.article_id,
            label=item.label,
            reminder_kind=item.kind.value,
            alert_date=item.execute_at,
            status=AlertStatus.SCHEDULED.value,
        ))
    s.add_all(alerts)
    await s.flush()
    return alerts


async def _cancel_pending(s: AsyncSession, warranty_id: int) -> int:
    res = await s.execute(
        update(Alert)
        .where(
            Alert.warranty_id == warranty_id,
            Alert.status == AlertStatus.SCHEDULED.value,
        )
        .values(status=AlertStatus.CANCELLED.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0


async def create_alerts(
    owner_user_id: int | None,
    warranty_id: int,
    items: Sequence[AlertDraft],
) -> list[Alert]:
    """Bulk-create SCHEDULED alerts for a warranty.

    The owner is always taken from the warranty row; a caller-supplied owner
    that disagrees raises ``ConflictError`` instead of being stored.
    """
    async with session_scope() as s, s.begin():
        alerts = await _insert_alerts(s, owner_user_id, warranty_id, items)
    return alerts


async def replace_pending(
    owner_user_id: int | None,
    warranty_id: int,
    items: Sequence[AlertDraft],
) -> tuple[int, list[Alert]]:
    """Cancel every SCHEDULED alert of a warranty, then create *items*.

    Both steps share one transaction so a warranty is never left with both
    schedules live, nor with none after a failed insert.
    """
    async with session_scope() as s, s.begin():
        warranty = await _lock_warranty(s, warranty_id)
        if warranty is None:
            raise NotFoundError(f"warranty {warranty_id} not found")
        cancelled = await _cancel_pending(s, warranty_id)
        alerts = await _insert_alerts(s, owner_user_id, warranty_id, items)
    return cancelled, alerts


async def cancel_pending(warranty_id: int) -> int:
    async with session_scope() as s, s.begin():
        cancelled = await _cancel_pending(s, warranty_id)
    if cancelled:
        _LOGGER.info("cancelled pending alerts warranty_id=%s count=%s", warranty_id, cancelled)
    return cancelled


async def discard_alerts(alert_ids: Sequence[int]) -> int:
    """Delete SCHEDULED alerts whose job could not be published."""
    if not alert_ids:
        return 0
    async with session_scope() as s, s.begin():
        res = await s.execute(
            delete(Alert).where(
                Alert.alert_id.in_(list(alert_ids)),
                Alert.status == AlertStatus.SCHEDULED.value,
            )
        )
    return res.rowcount or 0


async def get_alert(alert_id: int) -> Alert | None:
    async with session_scope() as s:
        return await s.get(Alert, alert_id)


async def find_live_alert(
    warranty_id: int,
    reminder_kind: str,
    on_day: date,
) -> Alert | None:
    """SCHEDULED/FAILED alert of a warranty for *reminder_kind* due on *on_day* (UTC)."""
    async with session_scope() as s:
        res = await s.execute(
            select(Alert)
            .where(
                Alert.warranty_id == warranty_id,
                Alert.reminder_kind == reminder_kind,
                Alert.status.in_((AlertStatus.SCHEDULED.value, AlertStatus.FAILED.value)),
            )
            .order_by(Alert.alert_id.desc())
        )
        for alert in res.scalars():
            if as_utc_datetime(alert.alert_date).date() == on_day:
                return alert
    return None


async def mark_sent(alert_id: int) -> Alert | None:
    """SCHEDULED/FAILED -> SENT. Redelivery on a SENT alert is a no-op."""
    async with session_scope() as s, s.begin():
        alert = await s.get(Alert, alert_id, with_for_update=True)
        if alert is None:
            _LOGGER.warning("mark_sent: unknown alert_id=%s", alert_id)
            return None
        if alert.status == AlertStatus.SENT.value:
            _LOGGER.debug("mark_sent: alert_id=%s already sent", alert_id)
            return alert
        if alert.status == AlertStatus.CANCELLED.value:
            _LOGGER.warning("mark_sent: alert_id=%s is cancelled, not marking sent", alert_id)
            return alert
        alert.status = AlertStatus.SENT.value
        alert.sent_at = utc_now()
    return alert


async def mark_failed(alert_id: int, error: BaseException | str) -> Alert | None:
    """SCHEDULED -> FAILED with the error recorded.

    A FAILED alert only gets its error refreshed. SENT and CANCELLED alerts are
    never overwritten; the attempt is logged as an anomaly instead.
    """
    message = str(error) or type(error).__name__
    message = message[:ERROR_MESSAGE_MAX]
    async with session_scope() as s, s.begin():
        alert = await s.get(Alert, alert_id, with_for_update=True)
        if alert is None:
            _LOGGER.warning("mark_failed: unknown alert_id=%s", alert_id)
            return None
        if alert.status in (AlertStatus.SENT.value, AlertStatus.CANCELLED.value):
            _LOGGER.warning(
                "mark_failed: refusing %s -> FAILED alert_id=%s error=%r",
                alert.status, alert_id, message,
            )
            return alert
        alert.status = AlertStatus.FAILED.value
        alert.failed_at = utc_now()
        alert.error_message = message
    return alert


async def list_by_owner(
    owner_user_id: int,
    status: AlertStatus | None = None,
) -> list[Alert]:
    async with session_scope() as s:
        stmt = select(Alert).where(Alert.owner_user_id == owner_user_id)
        if status is not None:
            stmt = stmt.where(Alert.status == AlertStatus(status).value)
        stmt = stmt.order_by(Alert.alert_date.asc(), Alert.alert_id.asc())
        res = await s.execute(stmt)
        return list(res.scalars().all())


async def list_by_warranty(
    warranty_id: int,
    status: AlertStatus | None = None,
) -> list[Alert]:
    async with session_scope() as s:
        stmt = select(Alert).where(Alert.warranty_id == warranty_id)
        if status is not None:
            stmt = stmt.where(Alert.status == AlertStatus(status).value)
        stmt = stmt.order_by(Alert.alert_date.asc(), Alert.alert_id.asc())
        res = await s.execute(stmt)
        return list(res.scalars().all())


# 4.1 Consistency scan --------------------------------------------------
class OwnershipViolation(TypedDict):
    alert_id: int
    alert_owner_user_id: int
    linked_type: str  # "warranty" | "article"
    linked_id: int
    linked_owner_user_id: int


async def find_ownership_violations() -> list[OwnershipViolation]:
    violations: list[OwnershipViolation] = []
    async with session_scope() as s:
        by_warranty = await s.execute(
            select(Alert.alert_id, Alert.owner_user_id, Warranty.warranty_id, Warranty.owner_user_id)
            .join(Warranty, Alert.warranty_id == Warranty.warranty_id)
            .where(Alert.owner_user_id != Warranty.owner_user_id)
            .order_by(Alert.alert_id)
        )
        for alert_id, alert_owner, linked_id, linked_owner in by_warranty.all():
            violations.append(OwnershipViolation(
                alert_id=alert_id,
                alert_owner_user_id=alert_owner,
                linked_type="warranty",
                linked_id=linked_id,
                linked_owner_user_id=linked_owner,
            ))

        by_article = await s.execute(
            select(Alert.alert_id, Alert.owner_user_id, Article.article_id, Article.owner_user_id)
            .join(Article, Alert.article_id == Article.article_id)
            .where(Alert.owner_user_id != Article.owner_user_id)
            .order_by(Alert.alert_id)
        )
        for alert_id, alert_owner, linked_id, linked_owner in by_article.all():
            violations.append(OwnershipViolation(
                alert_id=alert_id,
                alert_owner_user_id=alert_owner,
                linked_type="article",
                linked_id=linked_id,
                linked_owner_user_id=linked_owner,
            ))
    return violations


async def find_orphan_alerts() -> list[Alert]:
    async with session_scope() as s:
        res = await s.execute(
            select(Alert)
            .where(Alert.warranty_id.is_(None), Alert.article_id.is_(None))
            .order_by(Alert.alert_id)
        )
        return list(res.scalars().all())
