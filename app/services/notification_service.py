"""
Notification Service - in-app notifications.

A notification with user_id NULL is addressed to the admin team and
shows up in every admin's list.
"""

import json
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.db.postgres import execute_raw_sql

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {
    "NEW_MATCH", "STATUS_CHANGE", "WEEKLY_DIGEST", "PROFILE_HINT",
    "ADMIN_ALERT", "COMPANY_APPROVED", "COMPANY_REJECTED", "COMPANY_CONTEST",
}

DEFAULT_PREFERENCES = {
    "offers_min_score": 60,
    "enable_email": True,
    "enable_in_app": True,
    "enable_sms": False,
    "digest_daily": True,
}


def create_notification(user_id: Optional[str], type_: str, payload: dict) -> Optional[dict]:
    """
    Insert a notification. Delivery is best effort: a database failure is
    logged and None is returned so the calling action still succeeds.
    """
    if type_ not in NOTIFICATION_TYPES:
        raise ValueError(f"Type de notification invalide: {type_}")
    try:
        rows = execute_raw_sql("""
            INSERT INTO notifications (user_id, type, payload)
            VALUES (:user_id, :type, CAST(:payload AS jsonb))
            RETURNING id, user_id, type, payload, read_at, created_at
        """, {"user_id": user_id, "type": type_, "payload": json.dumps(payload, default=str)})
    except SQLAlchemyError as e:
        logger.error("Could not create %s notification for %s: %s", type_, user_id, e)
        return None
    return rows[0]


def notify_admins(type_: str, payload: dict) -> Optional[dict]:
    return create_notification(None, type_, payload)


def _visibility_clause(user: dict) -> str:
    if user["role"] == "ADMIN":
        return "(user_id = :user_id OR user_id IS NULL)"
    return "user_id = :user_id"


def list_notifications(user: dict, unread_only: bool = False, limit: int = 20, offset: int = 0) -> dict:
    where = _visibility_clause(user)
    if unread_only:
        where += " AND read_at IS NULL"
    params = {"user_id": user["id"], "limit": limit, "offset": offset}

    notifications = execute_raw_sql(f"""
        SELECT id, user_id, type, payload, read_at, created_at
        FROM notifications
        WHERE {where}
        ORDER BY created_at DESC
        LIMIT :limit OFFSET :offset
    """, params)
    total = execute_raw_sql(f"SELECT COUNT(*) AS total FROM notifications WHERE {where}", params)[0]["total"]
    return {"notifications": notifications, "total": total}


def unread_count(user: dict) -> int:
    rows = execute_raw_sql(f"""
        SELECT COUNT(*) AS count FROM notifications
        WHERE {_visibility_clause(user)} AND read_at IS NULL
    """, {"user_id": user["id"]})
    return rows[0]["count"]


def mark_read(user: dict, notification_id: str) -> Optional[dict]:
    rows = execute_raw_sql(f"""
        UPDATE notifications SET read_at = COALESCE(read_at, NOW())
        WHERE id = :id AND {_visibility_clause(user)}
        RETURNING id, read_at
    """, {"id": notification_id, "user_id": user["id"]})
    return rows[0] if rows else None


def mark_all_read(user: dict) -> int:
    rows = execute_raw_sql(f"""
        UPDATE notifications SET read_at = NOW()
        WHERE {_visibility_clause(user)} AND read_at IS NULL
        RETURNING id
    """, {"user_id": user["id"]})
    return len(rows)


def delete_notification(user: dict, notification_id: str) -> bool:
    rows = execute_raw_sql(f"""
        DELETE FROM notifications
        WHERE id = :id AND {_visibility_clause(user)}
        RETURNING id
    """, {"id": notification_id, "user_id": user["id"]})
    return bool(rows)


def get_preferences(user_id: str) -> dict:
    rows = execute_raw_sql("""
        SELECT offers_min_score, enable_email, enable_in_app, enable_sms, digest_daily
        FROM notification_preferences WHERE user_id = :user_id
    """, {"user_id": user_id})
    return rows[0] if rows else dict(DEFAULT_PREFERENCES)


def update_preferences(user_id: str, changes: dict) -> dict:
    prefs = {**get_preferences(user_id), **{k: v for k, v in changes.items() if v is not None}}
    rows = execute_raw_sql("""
        INSERT INTO notification_preferences
            (user_id, offers_min_score, enable_email, enable_in_app, enable_sms, digest_daily)
        VALUES (:user_id, :offers_min_score, :enable_email, :enable_in_app, :enable_sms, :digest_daily)
        ON CONFLICT (user_id) DO UPDATE SET
            offers_min_score = EXCLUDED.offers_min_score,
            enable_email = EXCLUDED.enable_email,
            enable_in_app = EXCLUDED.enable_in_app,
            enable_sms = EXCLUDED.enable_sms,
            digest_daily = EXCLUDED.digest_daily,
            updated_at = NOW()
        RETURNING offers_min_score, enable_email, enable_in_app, enable_sms, digest_daily
    """, {"user_id": user_id, **prefs})
    return rows[0]
