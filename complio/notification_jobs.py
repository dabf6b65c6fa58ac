"""
Scheduled Notification Jobs

Deadline reminders (30/14/7/1 days before a document expires) and the
weekly compliance digest. Both are run by the cron endpoints and by the
background worker with the service-role Supabase client.

Calendar days are UTC days.
"""

import math
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Tuple

from complio.compliance_score_engine import parse_expiration_date
from complio.email_service import send_email, generate_deadline_reminder_email, generate_weekly_digest_email
from complio.notification_store import (
    REMINDER_OFFSETS,
    get_preferences,
    record_notification,
    reminder_preference_key,
)
from complio.router_utils import first_row
from complio.sms_service import send_sms, generate_deadline_reminder_sms, generate_weekly_digest_sms
from complio.supabase_client import get_auth_user

logger = logging.getLogger(__name__)

DIGEST_LOOKAHEAD_DAYS = 30
DIGEST_MAX_DEADLINES = 10

# Static feed until a compliance updates source is wired in
COMPLIANCE_UPDATES: List[Dict[str, str]] = [
    {
        "title": "State sustainability reporting update",
        "summary": "Texas SB-249 requires quarterly energy disclosures from floral retailers beginning June 15.",
    },
    {
        "title": "Federal packaging compliance",
        "summary": "USDA has released revised compostable packaging guidelines impacting subscription deliveries.",
    },
]


# =============================================================================
# TIME WINDOWS
# =============================================================================

def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def reminder_window(now: datetime, days: int) -> Tuple[datetime, datetime]:
    """First and last instant of the UTC calendar day `days` after now."""
    day_start = start_of_day(_as_utc(now) + timedelta(days=days))
    return day_start, day_start + timedelta(days=1) - timedelta(microseconds=1)


def week_start(now: datetime) -> datetime:
    """Sunday 00:00 UTC of the week containing now."""
    now = _as_utc(now)
    return start_of_day(now - timedelta(days=digest_weekday(now)))


def digest_weekday(now: datetime) -> int:
    """Weekday with 0 = Sunday, as stored in weekly_digest_day."""
    return (now.weekday() + 1) % 7


def _plural_days(n: int) -> str:
    return f"{n} day{'' if n == 1 else 's'}"


def reminder_subject(filename: str, days: int) -> str:
    return f"Reminder: {filename} deadline in {_plural_days(days)}"


# =============================================================================
# DEADLINE REMINDERS
# =============================================================================

def _already_reminded(supabase, user_id: str, document_id: str, days: int, since: datetime) -> bool:
    existing = supabase.table("notification_history")\
        .select("id")\
        .eq("user_id", user_id)\
        .eq("document_id", document_id)\
        .eq("reminder_days_before", days)\
        .eq("notification_type", "deadline_reminder")\
        .gte("sent_at", since.isoformat())\
        .limit(1)\
        .execute()
    return first_row(existing) is not None


def _send_document_reminder(supabase, doc: dict, days: int, since: datetime) -> Tuple[int, List[str]]:
    """Send one document's reminder on every configured channel. Returns (sent, errors)."""
    user_id = doc["user_id"]
    prefs = get_preferences(supabase, user_id) or {}

    if prefs.get(reminder_preference_key(days)) is False:
        return 0, []

    user = get_auth_user(user_id)
    if not user:
        logger.warning(f"[Reminders] Could not resolve user {user_id} for document {doc['id']}")
        return 0, []

    if _already_reminded(supabase, user_id, doc["id"], days, since):
        return 0, []

    deadline = parse_expiration_date(doc["expiration_date"])
    metadata = user.get("user_metadata") or {}
    subject = reminder_subject(doc["filename"], days)
    sent, errors = 0, []

    for channel in prefs.get("reminder_channels") or ["email"]:
        recipient: Optional[str] = None
        result: Optional[Dict[str, Any]] = None

        if channel == "email" and prefs.get("email_enabled") is not False:
            recipient = prefs.get("email_address") or user.get("email")
            if recipient:
                body = generate_deadline_reminder_email(doc["filename"], deadline, days)
                result = send_email(recipient, subject, body)
        elif channel == "sms" and prefs.get("sms_enabled"):
            recipient = prefs.get("phone_number") or metadata.get("phone")
            if recipient:
                result = send_sms(recipient, generate_deadline_reminder_sms(doc["filename"], deadline, days))
        else:
            continue

        success = bool(result and result["success"])
        error_message = None
        if result and not success:
            error_message = str(result.get("error"))
            errors.append(f"Failed to send {channel} reminder for document {doc['id']}: {error_message}")
        elif not recipient:
            error_message = f"No {channel} recipient"

        if success:
            sent += 1

        record_notification(
            supabase, user_id, "deadline_reminder", channel, recipient or "",
            status="sent" if success else "failed",
            subject=subject if channel == "email" else None,
            document_id=doc["id"],
            reminder_days_before=days,
            error_message=error_message,
            metadata={"deadlineDate": deadline.isoformat() if deadline else doc["expiration_date"]},
        )

    return sent, errors


def run_deadline_reminders(supabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Send reminders for documents expiring 30, 14, 7 and 1 day(s) from now.

    A reminder is sent at most once per document and offset per day.
    Returns {"success": True, "totalSent": n} plus "errors" when any occurred.
    """
    now = _as_utc(now)
    dedupe_since = start_of_day(now)
    total_sent = 0
    errors: List[str] = []

    for days in REMINDER_OFFSETS:
        window_start, window_end = reminder_window(now, days)

        try:
            documents = supabase.table("documents")\
                .select("id, user_id, filename, expiration_date")\
                .not_.is_("expiration_date", "null")\
                .gte("expiration_date", window_start.isoformat())\
                .lte("expiration_date", window_end.isoformat())\
                .execute()
        except Exception as e:
            logger.error(f"[Reminders] Error fetching documents for {days}-day reminder: {e}")
            errors.append(f"Error fetching documents for {days}-day reminder: {e}")
            continue

        for doc in documents.data or []:
            try:
                sent, doc_errors = _send_document_reminder(supabase, doc, days, dedupe_since)
                total_sent += sent
                errors.extend(doc_errors)
            except Exception as e:
                logger.error(f"[Reminders] Error processing document {doc.get('id')}: {e}")
                errors.append(f"Error processing document {doc.get('id')}: {e}")

    logger.info(f"[Reminders] Sent {total_sent} deadline reminder(s), {len(errors)} error(s)")
    response: Dict[str, Any] = {"success": True, "totalSent": total_sent}
    if errors:
        response["errors"] = errors
    return response


# =============================================================================
# WEEKLY DIGEST
# =============================================================================

def upcoming_deadlines(supabase, user_id: str, now: datetime) -> List[Dict[str, Any]]:
    """Up to 10 documents expiring within the next 30 days, soonest first."""
    horizon = now + timedelta(days=DIGEST_LOOKAHEAD_DAYS)
    result = supabase.table("documents")\
        .select("id, filename, expiration_date")\
        .eq("user_id", user_id)\
        .not_.is_("expiration_date", "null")\
        .gte("expiration_date", now.isoformat())\
        .lte("expiration_date", horizon.isoformat())\
        .order("expiration_date", desc=False)\
        .limit(DIGEST_MAX_DEADLINES)\
        .execute()

    deadlines = []
    for doc in result.data or []:
        deadline = parse_expiration_date(doc["expiration_date"])
        if deadline is None:
            continue
        deadlines.append({
            "documentName": doc["filename"],
            "deadlineDate": deadline,
            "daysUntil": math.ceil((deadline - now).total_seconds() / 86400),
        })
    return deadlines


def _send_user_digest(supabase, pref: dict, now: datetime, since: datetime) -> Tuple[int, List[str]]:
    user_id = pref["user_id"]
    user = get_auth_user(user_id)
    if not user:
        return 0, [f"Error fetching user {user_id}"]

    already_sent = first_row(
        supabase.table("notification_history")
            .select("id")
            .eq("user_id", user_id)
            .eq("notification_type", "weekly_digest")
            .gte("sent_at", since.isoformat())
            .limit(1)
            .execute()
    )
    if already_sent:
        return 0, []

    metadata = user.get("user_metadata") or {}
    email = user.get("email") or ""
    deadlines = upcoming_deadlines(supabase, user_id, now)
    updates = COMPLIANCE_UPDATES
    history_metadata = {
        "upcomingDeadlinesCount": len(deadlines),
        "recentUpdatesCount": len(updates),
    }
    sent, errors = 0, []

    recipient = pref.get("email_address") or email
    if recipient and pref.get("email_enabled"):
        subject = f"compl.io Weekly Digest - {len(deadlines)} Upcoming Deadlines"
        body = generate_weekly_digest_email(
            metadata.get("full_name") or email.split("@")[0] or "there",
            metadata.get("industry"),
            deadlines,
            updates,
        )
        result = send_email(recipient, subject, body)
        if result["success"]:
            sent += 1
        else:
            errors.append(f"Failed to send email to {recipient}: {result.get('error')}")
        record_notification(
            supabase, user_id, "weekly_digest", "email", recipient,
            status="sent" if result["success"] else "failed",
            subject=subject,
            error_message=None if result["success"] else str(result.get("error")),
            metadata=history_metadata,
        )

    phone = pref.get("phone_number")
    if pref.get("sms_enabled") and phone:
        result = send_sms(phone, generate_weekly_digest_sms(len(deadlines), len(updates)))
        if result["success"]:
            sent += 1
        else:
            errors.append(f"Failed to send SMS to {phone}: {result.get('error')}")
        record_notification(
            supabase, user_id, "weekly_digest", "sms", phone,
            status="sent" if result["success"] else "failed",
            error_message=None if result["success"] else str(result.get("error")),
            metadata=history_metadata,
        )

    return sent, errors


def run_weekly_digest(supabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Send the weekly digest to every user whose digest day is today.
    Users already sent a digest since Sunday 00:00 are skipped.
    """
    now = _as_utc(now)
    since = week_start(now)

    preferences = supabase.table("notification_preferences")\
        .select("*")\
        .eq("weekly_digest_enabled", True)\
        .eq("weekly_digest_day", digest_weekday(now))\
        .execute()

    if not preferences.data:
        return {"success": True, "message": "No users to send digest to today", "totalSent": 0}

    total_sent = 0
    errors: List[str] = []
    for pref in preferences.data:
        try:
            sent, user_errors = _send_user_digest(supabase, pref, now, since)
            total_sent += sent
            errors.extend(user_errors)
        except Exception as e:
            logger.error(f"[Digest] Error processing user {pref.get('user_id')}: {e}")
            errors.append(f"Error processing user {pref.get('user_id')}: {e}")

    logger.info(f"[Digest] Sent {total_sent} weekly digest(s), {len(errors)} error(s)")
    response: Dict[str, Any] = {"success": True, "totalSent": total_sent}
    if errors:
        response["errors"] = errors
    return response
