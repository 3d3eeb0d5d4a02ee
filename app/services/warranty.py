"""Warranty write path.

Keeps ``end_date`` in step with purchase date and duration, and hooks the
reminder orchestrator into create/update/delete. A reminder scheduling
failure is logged and never turns a successful warranty write into an error.
"""

from __future__ import annotations

import logging

import db
from app.errors import ConflictError, ForbiddenError, NotFoundError
from app.services import alert_scheduler
from app.types.reminder_contract import WarrantyIn, WarrantyPatch
from app.utils.dates import as_utc_datetime, warranty_end_date

_LOGGER = logging.getLogger(__name__)


async def get(owner_user_id: int, warranty_id: int):
    warranty = await db.get_warranty(warranty_id)
    if warranty is None or warranty.owner_user_id != owner_user_id:
        raise NotFoundError("warranty not found")
    return warranty


async def create(owner_user_id: int, data: WarrantyIn):
    article = await db.get_article(data.article_id)
    if article is None:
        raise NotFoundError("article not found")
    if article.owner_user_id != owner_user_id:
        raise ForbiddenError("article belongs to another user")
    # one warranty per article
    if await db.get_warranty_by_article(data.article_id) is not None:
        raise ConflictError("a warranty already exists for this article")

    purchase_date = as_utc_datetime(data.purchase_date)
    warranty = await db.insert_warranty(
        owner_user_id=owner_user_id,
        article_id=data.article_id,
        name=data.name,
        purchase_date=purchase_date,
        duration_months=data.duration_months,
        end_date=warranty_end_date(purchase_date, data.duration_months),
    )
    try:
        await alert_scheduler.schedule_for_warranty(
            owner_user_id, warranty.warranty_id, purchase_date, data.duration_months
        )
    except Exception:  # noqa: BLE001
        _LOGGER.exception("reminder scheduling failed warranty_id=%s", warranty.warranty_id)
    return warranty


async def update(owner_user_id: int, warranty_id: int, patch: WarrantyPatch):
    warranty = await get(owner_user_id, warranty_id)

    values = patch.model_dump(exclude_unset=True, exclude_none=True)
    purchase_date = as_utc_datetime(values.get("purchase_date", warranty.purchase_date))
    duration_months = values.get("duration_months", warranty.duration_months)
    period_changed = "purchase_date" in values or "duration_months" in values
    if "purchase_date" in values:
        values["purchase_date"] = purchase_date
    if period_changed:
        values["end_date"] = warranty_end_date(purchase_date, duration_months)

    updated = await db.update_warranty(warranty_id, values)
    if updated is None:
        raise NotFoundError("warranty not found")

    if period_changed:
        try:
            await alert_scheduler.reschedule_for_warranty(
                owner_user_id, warranty_id, purchase_date, duration_months
            )
        except Exception:  # noqa: BLE001
            _LOGGER.exception("reminder rescheduling failed warranty_id=%s", warranty_id)
    return updated


async def remove(owner_user_id: int, warranty_id: int) -> None:
    await get(owner_user_id, warranty_id)
    await alert_scheduler.cancel_for_warranty(warranty_id)
    await db.delete_warranty(warranty_id)
