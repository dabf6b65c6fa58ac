"""
Profile Routes

Account stats, recent community activity, business profile fields and the
profile photo. Profile data lives in the Supabase Auth user metadata.
"""

import uuid
import logging
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from complio.auth_permissions import (
    AuthContext,
    get_auth_context,
    validate_file_upload,
    AVATAR_FILE_TYPES,
    MAX_AVATAR_SIZE_MB,
)
from complio.router_utils import require_supabase, backend_error
from complio.supabase_client import get_auth_user, update_user_metadata

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])

AVATAR_BUCKET = "avatars"


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    business_type: Optional[str] = None
    industry: Optional[str] = None
    businessModel: Optional[str] = None
    customerDemographic: Optional[str] = None
    weeklyCustomers: Optional[Any] = None
    businessName: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    businessDescription: Optional[str] = None
    foundedDate: Optional[str] = None
    teamSize: Optional[Any] = None
    primaryFocus: Optional[str] = None
    taxId: Optional[str] = None
    businessRegistrationDate: Optional[str] = None
    licenseNumbers: Optional[Any] = None
    notificationPreferences: Optional[Any] = None
    complianceAlertFrequency: Optional[str] = None
    preferredCommunication: Optional[str] = None
    privacySettings: Optional[Any] = None


@router.get("/stats")
async def get_profile_stats(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()

    try:
        result = supabase.table("documents")\
            .select("id", count="exact")\
            .eq("user_id", auth.user_id)\
            .execute()
    except Exception as e:
        raise backend_error("[Profile] Error counting documents", e, "Failed to fetch stats")

    user = get_auth_user(auth.user_id) or {}
    return {
        "documentCount": result.count or 0,
        "accountCreatedAt": user.get("created_at"),
        "lastSignInAt": user.get("last_sign_in_at"),
        "email": user.get("email") or auth.email,
        "emailVerified": user.get("email_confirmed_at") is not None,
    }


@router.get("/activity")
async def get_profile_activity(
    userId: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context)
):
    """The caller's published posts and replies, newest first."""
    auth.require_self(userId, "Unauthorized")
    supabase = require_supabase()

    posts: List[dict] = []
    replies: List[dict] = []
    try:
        posts = supabase.table("forum_posts")\
            .select("id, title, content, created_at, like_count, reply_count")\
            .eq("user_id", auth.user_id)\
            .eq("status", "published")\
            .order("created_at", desc=True)\
            .limit(limit)\
            .execute().data or []
    except Exception as e:
        logger.error(f"[Profile] Error fetching posts for {auth.user_id}: {e}")

    try:
        replies = supabase.table("forum_replies")\
            .select("id, content, created_at, post_id")\
            .eq("user_id", auth.user_id)\
            .eq("status", "published")\
            .order("created_at", desc=True)\
            .limit(limit)\
            .execute().data or []
    except Exception as e:
        logger.error(f"[Profile] Error fetching replies for {auth.user_id}: {e}")

    titles: Dict[str, str] = {}
    reply_post_ids = list({r["post_id"] for r in replies if r.get("post_id")})
    if reply_post_ids:
        reply_posts = supabase.table("forum_posts")\
            .select("id, title")\
            .in_("id", reply_post_ids)\
            .execute()
        titles = {p["id"]: p["title"] for p in reply_posts.data or []}

    activities = [
        {
            "id": post["id"],
            "type": "post",
            "title": post.get("title"),
            "content": post.get("content"),
            "created_at": post.get("created_at"),
            "like_count": post.get("like_count") or 0,
            "reply_count": post.get("reply_count") or 0,
        }
        for post in posts
    ] + [
        {
            "id": reply["id"],
            "type": "reply",
            "content": reply.get("content"),
            "created_at": reply.get("created_at"),
            "post_id": reply.get("post_id"),
            "post_title": titles.get(reply.get("post_id")),
        }
        for reply in replies
    ]

    activities.sort(key=lambda a: a.get("created_at") or "", reverse=True)
    return {"activities": activities[:limit]}


@router.post("/update")
async def update_profile(
    body: ProfileUpdateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Merge the provided fields into the user's metadata."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return {"success": True}

    try:
        update_user_metadata(auth.user_id, updates)
    except Exception as e:
        logger.error(f"[Profile] Error updating profile for {auth.user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"[Profile] user={auth.user_id} updated {sorted(updates)}")
    return {"success": True}


@router.post("/upload-photo")
async def upload_profile_photo(
    photo: Optional[UploadFile] = File(default=None),
    auth: AuthContext = Depends(get_auth_context)
):
    if photo is None:
        raise HTTPException(status_code=400, detail="No file provided")

    contents = await photo.read()
    filename = photo.filename or "avatar"
    validation = validate_file_upload(
        filename, photo.content_type, len(contents), AVATAR_FILE_TYPES, MAX_AVATAR_SIZE_MB
    )
    if not validation["valid"]:
        raise HTTPException(status_code=400, detail="; ".join(validation["errors"]))

    supabase = require_supabase()
    extension = filename.rsplit(".", 1)[-1] if "." in filename else "jpg"
    file_path = f"avatars/{auth.user_id}/{uuid.uuid4()}.{extension}"
    bucket = supabase.storage.from_(AVATAR_BUCKET)

    try:
        bucket.upload(file_path, contents, {
            "content-type": photo.content_type,
            "cache-control": "3600",
            "upsert": "true",
        })
    except Exception as e:
        raise backend_error("[Profile] Avatar upload failed", e, "Failed to upload photo")

    public_url = bucket.get_public_url(file_path)

    try:
        update_user_metadata(auth.user_id, {"avatar_url": public_url})
    except Exception as e:
        logger.error(f"[Profile] Error saving avatar for {auth.user_id}: {e}")
        try:
            bucket.remove([file_path])
        except Exception as cleanup_error:
            logger.warning(f"[Profile] Could not remove orphaned avatar {file_path}: {cleanup_error}")
        raise HTTPException(status_code=500, detail="Failed to update profile")

    return {"success": True, "url": public_url}


@router.post("/remove-photo")
async def remove_profile_photo(auth: AuthContext = Depends(get_auth_context)):
    try:
        update_user_metadata(auth.user_id, {"avatar_url": None})
    except Exception as e:
        logger.error(f"[Profile] Error removing avatar for {auth.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove profile photo")

    return {"success": True}
