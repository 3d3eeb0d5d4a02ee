from .db import (
    get_engine,
    use_engine,
    session_scope,
    create_all,
    drop_all,
    dispose_engine,
    task_engine,
    insert_article,
    get_article,
    get_warranty,
    get_warranty_by_article,
    insert_warranty,
    update_warranty,
    delete_warranty,
    create_alerts,
    replace_pending,
    cancel_pending,
    discard_alerts,
    get_alert,
    find_live_alert,
    mark_sent,
    mark_failed,
    list_by_owner,
    list_by_warranty,
    find_ownership_violations,
    find_orphan_alerts,
    OwnershipViolation,
)  # noqa: F401
from .models import Alert, Article, Base, Warranty  # noqa: F401
