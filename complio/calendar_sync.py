"""
Google Calendar Sync

OAuth consent and token handling for a user's Google Calendar connection,
and the all-day deadline events kept in step with document expiration
dates.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Tuple

from jose import jwt, JWTError
from google.auth.transport.requests import Request
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from complio.compliance_score_engine import parse_expiration_date
from complio.router_utils import first_row, utc_now_iso
from complio.supabase_client import get_supabase

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
STATE_MAX_AGE_MINUTES = 10

EVENT_REMINDERS = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 24 * 60},
        {"method": "popup", "minutes": 60},
    ],
}


class CalendarSyncError(Exception):
    """Raised when the calendar connection cannot be used."""


# =============================================================================
# CONFIGURATION
# =============================================================================

def get_app_url() -> str:
    return (os.environ.get("APP_URL") or os.environ.get("NEXT_PUBLIC_APP_URL") or "http://localhost:3000").rstrip("/")


def get_redirect_uri() -> str:
    return os.environ.get("GOOGLE_REDIRECT_URI") or f"{get_app_url()}/api/calendar/callback"


def _client_credentials() -> Tuple[str, str]:
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise CalendarSyncError("Google Calendar is not configured")
    return client_id, client_secret


def is_configured() -> bool:
    return bool(os.environ.get("GOOGLE_CLIENT_ID") and os.environ.get("GOOGLE_CLIENT_SECRET"))


# =============================================================================
# OAUTH
# =============================================================================

def _state_secret() -> str:
    secret = os.environ.get("OAUTH_STATE_SECRET") or os.environ.get("GOOGLE_CLIENT_SECRET")
    if not secret:
        raise CalendarSyncError("OAuth state secret not configured")
    return secret


def sign_oauth_state(user_id: str) -> str:
    """Signed, short-lived state so the callback can trust the user id."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=STATE_MAX_AGE_MINUTES)
    return jwt.encode({"sub": user_id, "exp": expires}, _state_secret(), algorithm="HS256")


def verify_oauth_state(state: str) -> Optional[str]:
    """User id carried by a state token, or None when invalid or expired."""
    try:
        claims = jwt.decode(state, _state_secret(), algorithms=["HS256"])
    except (JWTError, CalendarSyncError) as e:
        logger.warning(f"[Calendar] Invalid OAuth state: {e}")
        return None
    return claims.get("sub")


def build_oauth_flow() -> Flow:
    client_id, client_secret = _client_credentials()
    redirect_uri = get_redirect_uri()
    return Flow.from_client_config(
        {
            "web": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        },
        scopes=CALENDAR_SCOPES,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )


def build_authorization_url(user_id: str) -> str:
    """Consent URL requesting offline access, with the user id in `state`."""
    flow = build_oauth_flow()
    auth_url, _state = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        state=sign_oauth_state(user_id),
    )
    return auth_url


def exchange_code(code: str) -> Credentials:
    flow = build_oauth_flow()
    flow.fetch_token(code=code)
    return flow.credentials


def _expiry_to_iso(expiry: Optional[datetime]) -> Optional[str]:
    if not expiry:
        return None
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry.isoformat()


def build_calendar_service(credentials: Credentials):
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def find_primary_calendar(service) -> Tuple[str, str]:
    """(calendar_id, calendar_name) of the primary calendar, with defaults."""
    try:
        items = service.calendarList().list().execute().get("items", [])
    except HttpError as e:
        logger.error(f"[Calendar] Error fetching calendar list: {e}")
        return "primary", "Primary Calendar"

    for item in items:
        if item.get("primary"):
            return item.get("id") or "primary", item.get("summary") or "Primary Calendar"
    return "primary", "Primary Calendar"


def store_connection(supabase, user_id: str, credentials: Credentials, calendar_id: str, calendar_name: str):
    """Upsert the user's calendar_sync row, keeping a prior refresh token."""
    refresh_token = credentials.refresh_token
    if not refresh_token:
        existing = get_calendar_sync(supabase, user_id)
        refresh_token = existing.get("refresh_token") if existing else None

    now = utc_now_iso()
    supabase.table("calendar_sync").upsert(
        {
            "user_id": user_id,
            "access_token": credentials.token,
            "refresh_token": refresh_token,
            "token_expiry": _expiry_to_iso(credentials.expiry),
            "calendar_id": calendar_id,
            "calendar_name": calendar_name,
            "synced_at": now,
            "updated_at": now,
        },
        on_conflict="user_id",
    ).execute()


# =============================================================================
# CONNECTION
# =============================================================================

def get_calendar_sync(supabase, user_id: str) -> Optional[dict]:
    result = supabase.table("calendar_sync")\
        .select("*")\
        .eq("user_id", user_id)\
        .limit(1)\
        .execute()
    return first_row(result)


def get_calendar_credentials(supabase, calendar_sync: Dict[str, Any]) -> Credentials:
    """
    Credentials for a stored connection, refreshed when the stored token
    has expired. Raises CalendarSyncError when the refresh fails.
    """
    client_id, client_secret = _client_credentials()
    credentials = Credentials(
        token=calendar_sync.get("access_token"),
        refresh_token=calendar_sync.get("refresh_token"),
        token_uri=TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        scopes=CALENDAR_SCOPES,
    )

    expiry = parse_expiration_date(calendar_sync.get("token_expiry"))
    if expiry and expiry <= datetime.now(timezone.utc) and calendar_sync.get("refresh_token"):
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            logger.error(f"[Calendar] Token refresh failed for {calendar_sync.get('user_id')}: {e}")
            raise CalendarSyncError("Failed to refresh calendar token") from e

        supabase.table("calendar_sync")\
            .update({
                "access_token": credentials.token,
                "token_expiry": _expiry_to_iso(credentials.expiry),
                "updated_at": utc_now_iso(),
            })\
            .eq("user_id", calendar_sync.get("user_id"))\
            .execute()

    return credentials


# =============================================================================
# EVENTS
# =============================================================================

def to_event_date(value: Any) -> Optional[str]:
    """YYYY-MM-DD for an all-day event. Date strings keep their calendar day."""
    if not value:
        return None
    if isinstance(value, str):
        day = value.strip().split("T")[0]
        try:
            datetime.strptime(day, "%Y-%m-%d")
            return day
        except ValueError:
            pass
    parsed = parse_expiration_date(value)
    return parsed.date().isoformat() if parsed else None


def build_deadline_event(filename: str, date_string: str) -> Dict[str, Any]:
    end_date = (datetime.strptime(date_string, "%Y-%m-%d") + timedelta(days=1)).strftime("%Y-%m-%d")
    return {
        "summary": f"{filename} - Deadline",
        "description": f"Deadline for: {filename}",
        "start": {"date": date_string},
        "end": {"date": end_date},
        "reminders": EVENT_REMINDERS,
    }


def upsert_deadline_event(
    service,
    calendar_id: str,
    filename: str,
    date_string: str,
    event_id: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Update the stored event, or create one when there is none or it is gone.
    Returns (event_id, action) with action created, updated or recreated.
    """
    body = build_deadline_event(filename, date_string)

    if event_id:
        try:
            service.events().get(calendarId=calendar_id, eventId=event_id).execute()
        except HttpError:
            logger.info(f"[Calendar] Event {event_id} not found, creating new event for {filename}")
        else:
            service.events().update(calendarId=calendar_id, eventId=event_id, body=body).execute()
            return event_id, "updated"

    created = service.events().insert(calendarId=calendar_id, body=body).execute()
    return created["id"], "recreated" if event_id else "created"


def _store_event_id(supabase, document_id: str, event_id: Optional[str]):
    supabase.table("documents")\
        .update({"calendar_event_id": event_id})\
        .eq("id", document_id)\
        .execute()


def _stamp_synced(supabase, user_id: str):
    now = utc_now_iso()
    supabase.table("calendar_sync")\
        .update({"synced_at": now, "updated_at": now})\
        .eq("user_id", user_id)\
        .execute()


def sync_document_to_calendar(
    user_id: str,
    document_id: str,
    filename: str,
    expiration_date: Optional[str],
    existing_event_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Keep one document's deadline event in step with its expiration date.

    Returns {"success": bool, "eventId"?, "action"?, "error"?}. A user
    without a calendar connection is a successful no-op. Never raises.
    """
    supabase = get_supabase()
    if not supabase:
        return {"success": False, "error": "Database unavailable"}

    try:
        calendar_sync = get_calendar_sync(supabase, user_id)
        if not calendar_sync:
            return {"success": True}

        credentials = get_calendar_credentials(supabase, calendar_sync)
        service = build_calendar_service(credentials)
        calendar_id = calendar_sync.get("calendar_id") or "primary"

        date_string = to_event_date(expiration_date)
        if not date_string:
            if existing_event_id:
                try:
                    service.events().delete(calendarId=calendar_id, eventId=existing_event_id).execute()
                except HttpError as e:
                    logger.info(f"[Calendar] Event {existing_event_id} already gone: {e}")
                _store_event_id(supabase, document_id, None)
            return {"success": True}

        event_id, action = upsert_deadline_event(service, calendar_id, filename, date_string, existing_event_id)
        if event_id != existing_event_id:
            _store_event_id(supabase, document_id, event_id)
        _stamp_synced(supabase, user_id)

        logger.info(f"[Calendar] {action} event {event_id} for document {document_id}")
        return {"success": True, "eventId": event_id, "action": action}

    except CalendarSyncError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"[Calendar] Error syncing document {document_id}: {e}", exc_info=True)
        return {"success": False, "error": str(e) or "Failed to sync to calendar"}


def sync_all_deadlines(supabase, user_id: str, calendar_sync: Dict[str, Any], credentials: Credentials) -> List[Dict[str, Any]]:
    """Sync every dated document of a user. Per-document failures are skipped."""
    result = supabase.table("documents")\
        .select("id, filename, expiration_date, calendar_event_id")\
        .eq("user_id", user_id)\
        .not_.is_("expiration_date", "null")\
        .execute()

    service = build_calendar_service(credentials)
    calendar_id = calendar_sync.get("calendar_id") or "primary"

    synced = []
    for doc in result.data or []:
        date_string = to_event_date(doc.get("expiration_date"))
        if not date_string:
            continue

        existing_event_id = doc.get("calendar_event_id")
        try:
            event_id, action = upsert_deadline_event(
                service, calendar_id, doc.get("filename"), date_string, existing_event_id
            )
        except HttpError as e:
            logger.error(f"[Calendar] Error syncing event for {doc.get('filename')}: {e}")
            continue

        if event_id != existing_event_id:
            _store_event_id(supabase, doc["id"], event_id)

        synced.append({
            "title": f"{doc.get('filename')} - Deadline",
            "date": date_string,
            "eventId": event_id,
            "action": action,
        })

    _stamp_synced(supabase, user_id)
    return synced
