"""
Notification preferences and delivery history persistence.
"""

import logging
from typing import Optional, Dict, Any

from complio.router_utils import first_row

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = (30, 14, 7, 1)

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "email_enabled": True,
    "sms_enabled": False,
    "phone_number": None,
    "email_address": None,
    "reminder_30_days": True,
    "reminder_14_days": True,
    "reminder_7_days": True,
    "reminder_1_day": True,
    "weekly_digest_enabled": True,
    "weekly_digest_day": 1,  # 0 = Sunday
    "weekly_digest_time": "09:00:00",
    "reminder_channels": ["email"],
}


def reminder_preference_key(days: int) -> str:
    return "reminder_1_day" if days == 1 else f"reminder_{days}_days"


def get_preferences(supabase, user_id: str) -> Optional[dict]:
    """Stored preference row for a user, or None."""
    result = supabase.table("notification_preferences")\
        .select("*")\
        .eq("user_id", user_id)\
        .limit(1)\
        .execute()
    return first_row(result)


def record_notification(
    supabase,
    user_id: str,
    notification_type: str,
    channel: str,
    recipient: str,
    status: str,
    subject: Optional[str] = None,
    document_id: Optional[str] = None,
    reminder_days_before: Optional[int] = None,
    error_message: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Append a notification_history row. Failures are logged, never raised."""
    row: Dict[str, Any] = {
        "user_id": user_id,
        "notification_type": notification_type,
        "channel": channel,
        "recipient": recipient,
        "status": status,
    }
    if subject is not None:
        row["subject"] = subject
    if document_id is not None:
        row["document_id"] = document_id
    if reminder_days_before is not None:
        row["reminder_days_before"] = reminder_days_before
    if error_message is not None:
        row["error_message"] = error_message
    if metadata is not None:
        row["metadata"] = metadata

    try:
        supabase.table("notification_history").insert(row).execute()
    except Exception as e:
        logger.error(f"Error logging {notification_type} notification for {user_id}: {e}")
