"""articles, warranties and reminder alerts

Revision ID: 20250601_01
Revises: None
Create Date: 2025-06-01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20250601_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "articles",
        sa.Column("article_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_articles_owner_user_id", "articles", ["owner_user_id"])

    op.create_table(
        "warranties",
        sa.Column("warranty_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "article_id",
            sa.Integer(),
            sa.ForeignKey("articles.article_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_warranties_owner_user_id", "warranties", ["owner_user_id"])

    op.create_table(
        "alerts",
        sa.Column("alert_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "warranty_id",
            sa.Integer(),
            sa.ForeignKey("warranties.warranty_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "article_id",
            sa.Integer(),
            sa.ForeignKey("articles.article_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("reminder_kind", sa.String(length=8), nullable=True),
        sa.Column("alert_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="SCHEDULED"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_alerts_owner_user_id", "alerts", ["owner_user_id"])
    op.create_index("ix_alerts_warranty_id", "alerts", ["warranty_id"])
    op.create_index("ix_alerts_owner_status", "alerts", ["owner_user_id", "status"])
    op.create_index(
        "uq_alerts_scheduled_reminder",
        "alerts",
        ["warranty_id", "reminder_kind"],
        unique=True,
        postgresql_where=sa.text("status = 'SCHEDULED'"),
        sqlite_where=sa.text("status = 'SCHEDULED'"),
    )


def downgrade() -> None:
    op.drop_index("uq_alerts_scheduled_reminder", table_name="alerts")
    op.drop_index("ix_alerts_owner_status", table_name="alerts")
    op.drop_index("ix_alerts_warranty_id", table_name="alerts")
    op.drop_index("ix_alerts_owner_user_id", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_warranties_owner_user_id", table_name="warranties")
    op.drop_table("warranties")
    op.drop_index("ix_articles_owner_user_id", table_name="articles")
    op.drop_table("articles")
