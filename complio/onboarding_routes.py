"""
Onboarding Routes

First-run progress for the dashboard: the current step, whether onboarding
is finished, and the preferences collected along the way.
"""

import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from complio.auth_permissions import AuthContext, get_auth_context
from complio.router_utils import require_supabase, first_row, utc_now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


class OnboardingRequest(BaseModel):
    currentStep: Optional[Any] = None
    completed: Optional[bool] = None
    preferences: Optional[Dict[str, Any]] = None


@router.get("")
async def get_onboarding(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    try:
        result = supabase.table("onboarding")\
            .select("*")\
            .eq("user_id", auth.user_id)\
            .limit(1)\
            .execute()
    except Exception as e:
        logger.error(f"[Onboarding] Error fetching state for {auth.user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {"data": first_row(result)}


@router.post("")
async def save_onboarding(
    body: OnboardingRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    try:
        result = supabase.table("onboarding").upsert(
            {
                "user_id": auth.user_id,
                "current_step": body.currentStep,
                "completed": body.completed or False,
                "preferences": body.preferences or {},
                "updated_at": utc_now_iso(),
            },
            on_conflict="user_id",
        ).execute()
    except Exception as e:
        logger.error(f"[Onboarding] Error saving state for {auth.user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"[Onboarding] user={auth.user_id} step={body.currentStep} completed={bool(body.completed)}")
    return {"success": True, "data": first_row(result)}
