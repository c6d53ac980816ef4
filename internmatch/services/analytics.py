"""
Analytics & audit trail.

Both are non-critical side effects: they run after the primary operation has
committed, in their own session, and a failure is logged and dropped.
"""

import logging
from typing import Any, Callable, Optional

from internmatch.db.models import AdminAction, AnalyticsEvent
from internmatch.db.postgres import get_db_session

logger = logging.getLogger(__name__)


def fire_and_forget(action: str, fn: Callable[..., Any], *args, **kwargs) -> None:
    """Run a best-effort side effect. Never raises."""
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.warning("Best-effort %s failed", action, exc_info=True)


def _insert_event(user_id: Optional[str], event_type: str, event_data: Optional[dict]) -> None:
    with get_db_session() as db:
        db.add(AnalyticsEvent(user_id=user_id, event_type=event_type, event_data=event_data or {}))


def _insert_admin_action(admin_id: str, action_type: str, target_type: Optional[str],
                         target_id: Optional[str], details: Optional[dict], ip_address: Optional[str]) -> None:
    with get_db_session() as db:
        db.add(AdminAction(
            admin_id=admin_id,
            action_type=action_type,
            target_type=target_type,
            target_id=target_id,
            details=details or {},
            ip_address=ip_address,
        ))


def track_event(user_id: Optional[str], event_type: str, event_data: Optional[dict] = None) -> None:
    fire_and_forget(f"analytics event {event_type}", _insert_event, user_id, event_type, event_data)


def track_admin_action(admin_id: str, action_type: str, *, target_type: Optional[str] = None,
                       target_id: Optional[str] = None, details: Optional[dict] = None,
                       ip_address: Optional[str] = None) -> None:
    fire_and_forget(
        f"audit {action_type}", _insert_admin_action,
        admin_id, action_type, target_type, target_id, details, ip_address,
    )
