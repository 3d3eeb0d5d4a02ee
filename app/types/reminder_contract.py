"""Pydantic models shared by the scheduler, the reminder worker and the API.

The job payload is what travels through the broker, so its field names follow
the wire shape (camelCase) while Python code uses snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ReminderKind(str, Enum):
    J30 = "J30"
    J7 = "J7"
    J1 = "J1"

    @property
    def days_before(self) -> int:
        return int(self.value[1:])


class AlertStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ReminderScheduleItem(BaseModel):
    """One candidate reminder instant computed from a warranty end date."""

    model_config = ConfigDict(frozen=True)

    kind: ReminderKind
    execute_at: datetime


class AlertDraft(BaseModel):
    """Input to the alert store when creating SCHEDULED rows."""

    kind: ReminderKind
    execute_at: datetime
    label: str


class WarrantyReminderJobPayload(BaseModel):
    """Payload of a delayed warranty reminder job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: Literal["warranty_reminder"] = "warranty_reminder"
    warranty_id: int
    alert_id: int
    owner_user_id: int
    article_id: Optional[int] = None
    reminder_kind: ReminderKind
    execute_at: datetime

    @field_validator("execute_at")
    def _require_tz(cls, v: datetime):  # noqa: N805
        if v.tzinfo is None:
            raise ValueError("executeAt must be timezone-aware")
        return v

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class JobRecord(BaseModel):
    """What the job queue knows about an enqueued job."""

    job_key: str
    payload: WarrantyReminderJobPayload
    delay_ms: int = 0


# ──────────────────────────────
# Read side (API)
# ──────────────────────────────


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    alert_id: int
    owner_user_id: int
    warranty_id: Optional[int] = None
    article_id: Optional[int] = None
    label: str
    reminder_kind: Optional[ReminderKind] = None
    alert_date: datetime
    status: AlertStatus
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class AlertListQuery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_user_id: Optional[int] = Field(default=None, gt=0)
    status: Optional[AlertStatus] = None


class WarrantyIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    article_id: int = Field(gt=0)
    name: str = Field(min_length=1)
    purchase_date: datetime
    duration_months: int = Field(gt=0)

    @field_validator("name")
    def _strip_name(cls, v: str):  # noqa: N805
        v = v.strip()
        if not v:
            raise ValueError("name must be a non-empty string")
        return v


class WarrantyPatch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    purchase_date: Optional[datetime] = None
    duration_months: Optional[int] = Field(default=None, gt=0)
    is_valid: Optional[bool] = None


class WarrantyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    warranty_id: int
    owner_user_id: int
    article_id: int
    name: str
    purchase_date: datetime
    duration_months: int
    end_date: datetime
    is_valid: bool
