from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.types.reminder_contract import AlertStatus
from app.utils.dates import utc_now


class Base(DeclarativeBase):
    pass


class Article(Base):
    __tablename__ = "articles"

    article_id:    Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_user_id: Mapped[int] = mapped_column(index=True)
    name:          Mapped[str] = mapped_column(String(255))
    created_at:    Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Warranty(Base):
    __tablename__ = "warranties"

    warranty_id:     Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_user_id:   Mapped[int] = mapped_column(index=True)
    article_id:      Mapped[int] = mapped_column(
        ForeignKey("articles.article_id", ondelete="CASCADE"), unique=True
    )
    name:            Mapped[str] = mapped_column(String(255))
    purchase_date:   Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_months: Mapped[int]
    end_date:        Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_valid:        Mapped[bool] = mapped_column(default=True)
    created_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at:      Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Alert(Base):
    __tablename__ = "alerts"

    alert_id:      Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_user_id: Mapped[int] = mapped_column(index=True)
    warranty_id:   Mapped[int | None] = mapped_column(
        ForeignKey("warranties.warranty_id", ondelete="SET NULL"), index=True
    )
    article_id:    Mapped[int | None] = mapped_column(
        ForeignKey("articles.article_id", ondelete="SET NULL")
    )
    label:         Mapped[str] = mapped_column(String(255))
    reminder_kind: Mapped[str | None] = mapped_column(String(8))
    alert_date:    Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status:        Mapped[str] = mapped_column(String(16), default=AlertStatus.SCHEDULED.value)
    sent_at:       Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at:     Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at:    Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at:    Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_alerts_owner_status", "owner_user_id", "status"),
        # at most one live reminder per kind and warranty
        Index(
            "uq_alerts_scheduled_reminder",
            "warranty_id",
            "reminder_kind",
            unique=True,
            postgresql_where=text("status = 'SCHEDULED'"),
            sqlite_where=text("status = 'SCHEDULED'"),
        ),
    )
