from datetime import datetime, timezone

import pytest
from sqlalchemy import update

import db
from app.scripts import check_alert_ownership
from app.types.reminder_contract import AlertDraft, ReminderKind


@pytest.fixture
def keep_engine(monkeypatch):
    async def _noop():
        return None

    monkeypatch.setattr(db, "dispose_engine", _noop)


async def _alert(make_warranty, owner=1):
    w = await make_warranty(owner_user_id=owner)
    draft = AlertDraft(
        kind=ReminderKind.J1,
        execute_at=datetime(2025, 5, 31, tzinfo=timezone.utc),
        label="Warranty reminder J-1",
    )
    return (await db.create_alerts(owner, w.warranty_id, [draft]))[0]


@pytest.mark.asyncio
async def test_ownership_check_passes(make_warranty, keep_engine, capsys):
    await _alert(make_warranty)

    assert await check_alert_ownership.main() == 0
    assert "All alerts are owned" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_ownership_check_reports_drift(make_warranty, keep_engine, capsys):
    alert = await _alert(make_warranty)
    async with db.session_scope() as s, s.begin():
        await s.execute(
            update(db.Alert)
            .where(db.Alert.alert_id == alert.alert_id)
            .values(owner_user_id=5, warranty_id=None, article_id=None)
        )

    assert await check_alert_ownership.main() == 0
    out = capsys.readouterr().out
    assert "Alerts with no associated warranty or article: 1" in out

    other = await _alert(make_warranty, owner=2)
    async with db.session_scope() as s, s.begin():
        await s.execute(
            update(db.Alert).where(db.Alert.alert_id == other.alert_id).values(owner_user_id=9)
        )

    assert await check_alert_ownership.main() == 1
    assert f"Alert {other.alert_id} owned by user 9" in capsys.readouterr().out
