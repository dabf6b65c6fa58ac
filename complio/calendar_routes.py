"""
Calendar Routes

Google Calendar connect/disconnect, the OAuth callback, connection status
and a full re-sync of document deadlines.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from complio import calendar_sync
from complio.auth_permissions import AuthContext, get_auth_context
from complio.router_utils import require_supabase, backend_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


def _redirect(query: str) -> RedirectResponse:
    return RedirectResponse(url=f"{calendar_sync.get_app_url()}/?{query}", status_code=307)


def _error_redirect(reason: str) -> RedirectResponse:
    return _redirect(f"calendar_error={quote(reason)}")


@router.get("/auth")
async def calendar_auth(
    action: str = "connect",
    auth: AuthContext = Depends(get_auth_context)
):
    """`connect` returns the Google consent URL; `disconnect` drops the stored tokens."""
    if action == "disconnect":
        supabase = require_supabase()
        try:
            supabase.table("calendar_sync").delete().eq("user_id", auth.user_id).execute()
        except Exception as e:
            raise backend_error("[Calendar] Error disconnecting calendar", e, "Failed to disconnect calendar")
        logger.info(f"[Calendar] user={auth.user_id} disconnected")
        return {"success": True, "connected": False}

    if not calendar_sync.is_configured():
        raise HTTPException(status_code=500, detail="Google Calendar is not configured")

    return {"authUrl": calendar_sync.build_authorization_url(auth.user_id)}


@router.get("/callback")
def calendar_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None
):
    """OAuth redirect target. The signed `state` identifies the user."""
    if error:
        return _error_redirect(error)
    if not code or not state:
        return _error_redirect("missing_code_or_state")

    user_id = calendar_sync.verify_oauth_state(state)
    if not user_id:
        return _error_redirect("unauthorized")

    try:
        credentials = calendar_sync.exchange_code(code)
    except Exception as e:
        logger.error(f"[Calendar] Code exchange failed for {user_id}: {e}")
        return _error_redirect(str(e) or "callback_failed")

    if not credentials.token:
        return _error_redirect("no_access_token")

    service = calendar_sync.build_calendar_service(credentials)
    calendar_id, calendar_name = calendar_sync.find_primary_calendar(service)

    supabase = calendar_sync.get_supabase()
    if not supabase:
        return _error_redirect("storage_failed")
    try:
        calendar_sync.store_connection(supabase, user_id, credentials, calendar_id, calendar_name)
    except Exception as e:
        logger.error(f"[Calendar] Error storing tokens for {user_id}: {e}")
        return _error_redirect("storage_failed")

    logger.info(f"[Calendar] user={user_id} connected {calendar_name}")
    return _redirect("calendar_success=true")


@router.get("/status")
async def calendar_status(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    try:
        row = calendar_sync.get_calendar_sync(supabase, auth.user_id)
    except Exception as e:
        raise backend_error("[Calendar] Error fetching status", e, "Failed to fetch calendar status")

    if not row:
        return {"connected": False}

    return {
        "connected": True,
        "calendarName": row.get("calendar_name"),
        "syncedAt": row.get("synced_at"),
        "updatedAt": row.get("updated_at"),
    }


@router.post("/sync")
def calendar_sync_all(auth: AuthContext = Depends(get_auth_context)):
    """Create or update a deadline event for every dated document."""
    supabase = require_supabase()

    connection = calendar_sync.get_calendar_sync(supabase, auth.user_id)
    if not connection:
        raise HTTPException(
            status_code=400,
            detail="Calendar not connected. Please connect your Google Calendar first."
        )

    try:
        credentials = calendar_sync.get_calendar_credentials(supabase, connection)
    except calendar_sync.CalendarSyncError:
        raise HTTPException(
            status_code=401,
            detail="Failed to refresh calendar token. Please reconnect your calendar."
        )

    try:
        events = calendar_sync.sync_all_deadlines(supabase, auth.user_id, connection, credentials)
    except Exception as e:
        raise backend_error("[Calendar] Error syncing deadlines", e, str(e) or "Failed to sync calendar")

    logger.info(f"[Calendar] user={auth.user_id} synced {len(events)} event(s)")
    return {"success": True, "syncedCount": len(events), "events": events}
