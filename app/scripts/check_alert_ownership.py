"""Full-table scan for alerts whose owner differs from their warranty/article.

Run manually or from a scheduled job:
    python -m app.scripts.check_alert_ownership
Exits non-zero when violations are found.
"""

from __future__ import annotations

import asyncio
import sys

import db


async def main() -> int:
    violations = await db.find_ownership_violations()
    for v in violations:
        print(
            f"Alert {v['alert_id']} owned by user {v['alert_owner_user_id']} but "
            f"{v['linked_type']} {v['linked_id']} owned by user {v['linked_owner_user_id']}"
        )
    if violations:
        print(f"Found {len(violations)} alerts with incorrect ownership")
    else:
        print("All alerts are owned by the owner of their warranty/article")

    orphans = await db.find_orphan_alerts()
    print(f"Alerts with no associated warranty or article: {len(orphans)}")
    for alert in orphans:
        print(f"- Alert {alert.alert_id}: {alert.label!r} owned by user {alert.owner_user_id}")

    await db.dispose_engine()
    return 1 if violations else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(asyncio.run(main()))
