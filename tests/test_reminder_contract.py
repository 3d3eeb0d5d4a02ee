from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.types.reminder_contract import AlertListQuery, ReminderKind, WarrantyReminderJobPayload


def test_job_payload_wire_shape():
    payload = WarrantyReminderJobPayload(
        warranty_id=1,
        alert_id=2,
        owner_user_id=3,
        reminder_kind=ReminderKind.J30,
        execute_at=datetime(2025, 5, 2, tzinfo=timezone.utc),
    )

    wire = payload.to_wire()

    assert wire == {
        "type": "warranty_reminder",
        "warrantyId": 1,
        "alertId": 2,
        "ownerUserId": 3,
        "articleId": None,
        "reminderKind": "J30",
        "executeAt": "2025-05-02T00:00:00Z",
    }
    assert WarrantyReminderJobPayload.model_validate(wire) == payload


def test_job_payload_requires_aware_instant():
    with pytest.raises(ValidationError, match="timezone-aware"):
        WarrantyReminderJobPayload.model_validate({
            "warrantyId": 1,
            "alertId": 2,
            "ownerUserId": 3,
            "reminderKind": "J7",
            "executeAt": "2025-05-02T00:00:00",
        })


def test_job_payload_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        WarrantyReminderJobPayload.model_validate({
            "warrantyId": 1,
            "alertId": 2,
            "ownerUserId": 3,
            "reminderKind": "J14",
            "executeAt": "2025-05-02T00:00:00Z",
        })


def test_reminder_kind_days():
    assert [k.days_before for k in ReminderKind] == [30, 7, 1]


def test_alert_list_query_coerces_query_strings():
    q = AlertListQuery.model_validate({"ownerUserId": "4", "status": "FAILED"})
    assert q.owner_user_id == 4
    assert q.status.value == "FAILED"
    with pytest.raises(ValidationError):
        AlertListQuery.model_validate({"ownerUserId": "0"})
