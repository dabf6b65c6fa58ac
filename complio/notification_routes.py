"""
Notification Routes

Per-user notification preferences and the delivery history written by the
reminder jobs and forum notifications.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from complio.auth_permissions import AuthContext, get_auth_context
from complio.notification_store import DEFAULT_PREFERENCES, get_preferences
from complio.router_utils import require_supabase, first_row, page_bounds, backend_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class PreferencesUpdateRequest(BaseModel):
    email_enabled: Optional[bool] = None
    email_address: Optional[str] = None
    sms_enabled: Optional[bool] = None
    phone_number: Optional[str] = None
    reminder_30_days: Optional[bool] = None
    reminder_14_days: Optional[bool] = None
    reminder_7_days: Optional[bool] = None
    reminder_1_day: Optional[bool] = None
    weekly_digest_enabled: Optional[bool] = None
    weekly_digest_day: Optional[int] = None
    weekly_digest_time: Optional[str] = None
    reminder_channels: Optional[List[str]] = None


@router.get("/preferences")
async def get_notification_preferences(auth: AuthContext = Depends(get_auth_context)):
    """Stored preferences, or the defaults for a user who never saved any."""
    supabase = require_supabase()

    try:
        preferences = get_preferences(supabase, auth.user_id)
    except Exception as e:
        raise backend_error(f"[Notifications] Error fetching preferences for {auth.user_id}", e,
                            "Failed to fetch notification preferences")

    if not preferences:
        preferences = {
            **DEFAULT_PREFERENCES,
            "email_address": auth.email,
            "phone_number": auth.user_metadata.get("phone"),
        }
    elif not preferences.get("email_address") and auth.email:
        preferences["email_address"] = auth.email

    return {"preferences": preferences}


@router.post("/preferences")
async def update_notification_preferences(
    body: PreferencesUpdateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Upsert only the fields present in the request body."""
    supabase = require_supabase()
    updates = {"user_id": auth.user_id, **body.model_dump(exclude_unset=True)}

    try:
        result = supabase.table("notification_preferences")\
            .upsert(updates, on_conflict="user_id")\
            .execute()
    except Exception as e:
        logger.error(f"[Notifications] Error updating preferences for {auth.user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "preferences": first_row(result)}


@router.get("/history")
async def get_notification_history(
    userId: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context)
):
    auth.require_self(userId, "Unauthorized")
    supabase = require_supabase()
    start, end = page_bounds(limit, offset)

    try:
        result = supabase.table("notification_history")\
            .select("*")\
            .eq("user_id", auth.user_id)\
            .order("sent_at", desc=True)\
            .range(start, end)\
            .execute()
    except Exception as e:
        raise backend_error("[Notifications] Error fetching history", e,
                            "Failed to fetch notification history")

    return {"notifications": result.data or []}
