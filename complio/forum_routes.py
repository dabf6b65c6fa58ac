"""
Community Forum Routes

Posts, replies, likes, bookmarks and follows for the compl.io community.
Reads are public; writes require authentication. Author info comes from
the Supabase Auth admin API.
"""

import re
import logging
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from complio.auth_permissions import AuthContext, get_auth_context, get_optional_auth_context
from complio.forum_notifications import send_forum_notification
from complio.router_utils import require_supabase, first_row, page_bounds, backend_error
from complio.supabase_client import get_public_user_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/forum", tags=["forum"])

SORT_FIELDS = {"created_at", "last_activity_at", "like_count", "reply_count"}
DEFAULT_SORT = "last_activity_at"
MENTION_PATTERN = re.compile(r"@(\w+)")


# =============================================================================
# REQUEST MODELS
# =============================================================================

class PostCreateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    industry: Optional[str] = None
    businessModel: Optional[str] = None
    customerDemographic: Optional[str] = None
    weeklyCustomers: Optional[Any] = None
    board: Optional[str] = None
    images: Optional[List[str]] = None


class PostUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    board: Optional[str] = None
    images: Optional[List[str]] = None


class ReplyCreateRequest(BaseModel):
    postId: Optional[str] = None
    content: Optional[str] = None
    parentReplyId: Optional[str] = None


class ReplyUpdateRequest(BaseModel):
    content: Optional[str] = None


class LikeRequest(BaseModel):
    postId: Optional[str] = None
    replyId: Optional[str] = None


class BookmarkRequest(BaseModel):
    postId: Optional[str] = None


class FollowRequest(BaseModel):
    followingId: Optional[str] = None


# =============================================================================
# HELPERS
# =============================================================================

def _search_filter(search: str) -> str:
    # Characters that would break the PostgREST or() grammar
    term = re.sub(r"[,()]", " ", search).strip()
    return f"title.ilike.%{term}%,content.ilike.%{term}%"


def _ids_for_user(supabase, table: str, column: str, user_id: str, ids: List[str]) -> set:
    if not ids:
        return set()
    result = supabase.table(table)\
        .select(column)\
        .eq("user_id", user_id)\
        .in_(column, ids)\
        .execute()
    return {row[column] for row in result.data or [] if row.get(column)}


def _get_owned_row(supabase, table: str, row_id: str, user_id: str, label: str) -> dict:
    try:
        row = first_row(
            supabase.table(table).select("*").eq("id", row_id).limit(1).execute()
        )
    except Exception as e:
        raise backend_error(f"[Forum] Error fetching {label} {row_id}", e, "Internal server error")

    if not row or row.get("user_id") != user_id:
        raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found or unauthorized")
    return row


def _find_toggle_row(supabase, table: str, filters: Dict[str, str]) -> Optional[dict]:
    query = supabase.table(table).select("id")
    for column, value in filters.items():
        query = query.eq(column, value)
    return first_row(query.limit(1).execute())


# =============================================================================
# POSTS
# =============================================================================

@router.get("/posts")
async def list_posts(
    board: Optional[str] = None,
    industry: Optional[str] = None,
    businessModel: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = DEFAULT_SORT,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context)
):
    """List published posts with filters, sorting and paging."""
    supabase = require_supabase()
    sort_field = sortBy if sortBy in SORT_FIELDS else DEFAULT_SORT
    start, end = page_bounds(limit, offset)

    try:
        query = supabase.table("forum_posts").select("*").eq("status", "published")
        if board:
            query = query.eq("board", board)
        if industry:
            query = query.eq("industry", industry)
        if businessModel:
            query = query.eq("business_model", businessModel)
        if search:
            query = query.or_(_search_filter(search))
        result = query.order(sort_field, desc=True).range(start, end).execute()
    except Exception as e:
        raise backend_error("[Forum] Error fetching posts", e, "Failed to fetch posts")

    user_cache: Dict[str, dict] = {}
    posts = [{**post, "user": get_public_user_info(post["user_id"], user_cache)} for post in result.data or []]

    if auth:
        post_ids = [p["id"] for p in posts]
        liked = _ids_for_user(supabase, "forum_likes", "post_id", auth.user_id, post_ids)
        bookmarked = _ids_for_user(supabase, "forum_bookmarks", "post_id", auth.user_id, post_ids)
        for post in posts:
            post["isLiked"] = post["id"] in liked
            post["isBookmarked"] = post["id"] in bookmarked

    return {"posts": posts}


@router.post("/posts", status_code=201)
async def create_post(
    body: PostCreateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    """Publish a new post."""
    if not body.title or not body.content:
        raise HTTPException(status_code=400, detail="Title and content are required")

    supabase = require_supabase()

    try:
        result = supabase.table("forum_posts").insert({
            "user_id": auth.user_id,
            "title": body.title.strip(),
            "content": body.content.strip(),
            "industry": body.industry or None,
            "business_model": body.businessModel or None,
            "customer_demographic": body.customerDemographic or None,
            "weekly_customers": body.weeklyCustomers or None,
            "board": body.board or None,
            "images": body.images or [],
            "status": "published",
            "view_count": 1,
        }).execute()
    except Exception as e:
        raise backend_error("[Forum] Error creating post", e, "Failed to create post")

    post = first_row(result)
    logger.info(f"[Forum] user={auth.user_id} created post {post.get('id') if post else None}")
    return {"post": post}


@router.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context)
):
    """A published post with its replies. Each read counts as a view."""
    supabase = require_supabase()

    try:
        post = first_row(
            supabase.table("forum_posts")
                .select("*")
                .eq("id", post_id)
                .eq("status", "published")
                .limit(1)
                .execute()
        )
    except Exception as e:
        raise backend_error(f"[Forum] Error fetching post {post_id}", e, "Internal server error")

    if not post:
        raise HTTPException(status_code=404, detail="Post not found")

    view_count = (post.get("view_count") or 0) + 1
    try:
        supabase.table("forum_posts").update({"view_count": view_count}).eq("id", post_id).execute()
        post["view_count"] = view_count
    except Exception as e:
        logger.warning(f"[Forum] Could not increment views for {post_id}: {e}")

    try:
        replies_result = supabase.table("forum_replies")\
            .select("*")\
            .eq("post_id", post_id)\
            .eq("status", "published")\
            .order("created_at", desc=False)\
            .execute()
        replies = replies_result.data or []
    except Exception as e:
        logger.error(f"[Forum] Error fetching replies for {post_id}: {e}")
        replies = []

    user_cache: Dict[str, dict] = {}
    post["user"] = get_public_user_info(post["user_id"], user_cache)
    replies = [{**reply, "user": get_public_user_info(reply["user_id"], user_cache)} for reply in replies]

    liked_replies: set = set()
    post["isLiked"] = False
    post["isBookmarked"] = False
    if auth:
        post["isLiked"] = _find_toggle_row(supabase, "forum_likes", {"user_id": auth.user_id, "post_id": post_id}) is not None
        post["isBookmarked"] = _find_toggle_row(supabase, "forum_bookmarks", {"user_id": auth.user_id, "post_id": post_id}) is not None
        liked_replies = _ids_for_user(supabase, "forum_likes", "reply_id", auth.user_id, [r["id"] for r in replies])

    for reply in replies:
        reply["isLiked"] = reply["id"] in liked_replies

    return {"post": post, "replies": replies}


@router.put("/posts/{post_id}")
async def update_post(
    post_id: str,
    body: PostUpdateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    _get_owned_row(supabase, "forum_posts", post_id, auth.user_id, "post")

    provided = body.model_dump(exclude_unset=True)
    update_data: Dict[str, Any] = {}
    for field in ("title", "content"):
        if provided.get(field) is not None:
            update_data[field] = provided[field].strip()
    for field in ("board", "images"):
        if field in provided:
            update_data[field] = provided[field]

    if not update_data:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        result = supabase.table("forum_posts").update(update_data).eq("id", post_id).execute()
    except Exception as e:
        raise backend_error(f"[Forum] Error updating post {post_id}", e, "Failed to update post")

    return {"post": first_row(result)}


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    _get_owned_row(supabase, "forum_posts", post_id, auth.user_id, "post")

    try:
        supabase.table("forum_posts").delete().eq("id", post_id).execute()
    except Exception as e:
        raise backend_error(f"[Forum] Error deleting post {post_id}", e, "Failed to delete post")

    return {"success": True}


# =============================================================================
# REPLIES
# =============================================================================

@router.post("/replies", status_code=201)
async def create_reply(
    body: ReplyCreateRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(get_auth_context)
):
    """Reply to a published post; the post author is notified by email."""
    if not body.postId or not body.content:
        raise HTTPException(status_code=400, detail="Post ID and content are required")

    supabase = require_supabase()

    post = first_row(
        supabase.table("forum_posts")
            .select("id, user_id")
            .eq("id", body.postId)
            .eq("status", "published")
            .limit(1)
            .execute()
    )
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")

    if body.parentReplyId:
        parent = first_row(
            supabase.table("forum_replies")
                .select("id")
                .eq("id", body.parentReplyId)
                .eq("post_id", body.postId)
                .limit(1)
                .execute()
        )
        if not parent:
            raise HTTPException(status_code=404, detail="Parent reply not found")

    try:
        result = supabase.table("forum_replies").insert({
            "post_id": body.postId,
            "user_id": auth.user_id,
            "content": body.content.strip(),
            "parent_reply_id": body.parentReplyId or None,
            "status": "published",
        }).execute()
    except Exception as e:
        raise backend_error("[Forum] Error creating reply", e, "Failed to create reply")

    reply = first_row(result) or {}
    reply["user"] = get_public_user_info(auth.user_id)

    if post["user_id"] != auth.user_id:
        background_tasks.add_task(
            send_forum_notification,
            supabase, post["user_id"], "reply",
            post_id=body.postId, reply_id=reply.get("id"), actor_user_id=auth.user_id,
        )

    mentions = MENTION_PATTERN.findall(body.content)
    if mentions:
        # TODO: resolve @usernames to user ids once profiles carry a unique handle
        logger.info(f"[Forum] Mentions in reply {reply.get('id')}: {mentions}")

    return {"reply": reply}


@router.put("/replies/{reply_id}")
async def update_reply(
    reply_id: str,
    body: ReplyUpdateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    if not body.content:
        raise HTTPException(status_code=400, detail="Content is required")

    supabase = require_supabase()
    _get_owned_row(supabase, "forum_replies", reply_id, auth.user_id, "reply")

    try:
        result = supabase.table("forum_replies")\
            .update({"content": body.content.strip()})\
            .eq("id", reply_id)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Forum] Error updating reply {reply_id}", e, "Failed to update reply")

    reply = first_row(result) or {}
    reply["user"] = get_public_user_info(auth.user_id)
    return {"reply": reply}


@router.delete("/replies/{reply_id}")
async def delete_reply(
    reply_id: str,
    auth: AuthContext = Depends(get_auth_context)
):
    """Soft delete: the reply is hidden, not removed."""
    supabase = require_supabase()
    _get_owned_row(supabase, "forum_replies", reply_id, auth.user_id, "reply")

    try:
        supabase.table("forum_replies").update({"status": "deleted"}).eq("id", reply_id).execute()
    except Exception as e:
        raise backend_error(f"[Forum] Error deleting reply {reply_id}", e, "Failed to delete reply")

    return {"success": True}


# =============================================================================
# LIKES / BOOKMARKS / FOLLOWS
# =============================================================================

@router.post("/likes")
async def toggle_like(
    body: LikeRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(get_auth_context)
):
    if not body.postId and not body.replyId:
        raise HTTPException(status_code=400, detail="Either postId or replyId is required")
    if body.postId and body.replyId:
        raise HTTPException(status_code=400, detail="Cannot like both post and reply")

    supabase = require_supabase()
    column, target_id = ("post_id", body.postId) if body.postId else ("reply_id", body.replyId)

    try:
        existing = _find_toggle_row(supabase, "forum_likes", {"user_id": auth.user_id, column: target_id})
        if existing:
            supabase.table("forum_likes").delete().eq("id", existing["id"]).execute()
            return {"liked": False}

        result = supabase.table("forum_likes").insert({
            "user_id": auth.user_id,
            "post_id": body.postId or None,
            "reply_id": body.replyId or None,
        }).execute()
    except Exception as e:
        raise backend_error("[Forum] Error toggling like", e, "Failed to update like")

    if body.postId:
        post = first_row(
            supabase.table("forum_posts").select("user_id").eq("id", body.postId).limit(1).execute()
        )
        if post and post["user_id"] != auth.user_id:
            background_tasks.add_task(
                send_forum_notification,
                supabase, post["user_id"], "like",
                post_id=body.postId, actor_user_id=auth.user_id,
            )

    return {"liked": True, "like": first_row(result)}


@router.get("/bookmarks")
async def list_bookmarks(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context)
):
    """The caller's bookmarked posts that are still published, newest bookmark first."""
    supabase = require_supabase()
    start, end = page_bounds(limit, offset)

    try:
        bookmarks = supabase.table("forum_bookmarks")\
            .select("post_id, created_at")\
            .eq("user_id", auth.user_id)\
            .order("created_at", desc=True)\
            .range(start, end)\
            .execute()
        post_ids = [b["post_id"] for b in bookmarks.data or []]

        posts_by_id = {}
        if post_ids:
            posts = supabase.table("forum_posts")\
                .select("*")\
                .in_("id", post_ids)\
                .eq("status", "published")\
                .execute()
            posts_by_id = {p["id"]: p for p in posts.data or []}
    except Exception as e:
        raise backend_error("[Forum] Error fetching bookmarks", e, "Failed to fetch bookmarks")

    user_cache: Dict[str, dict] = {}
    ordered = []
    for post_id in post_ids:
        post = posts_by_id.get(post_id)
        if post:
            ordered.append({**post, "user": get_public_user_info(post["user_id"], user_cache), "isBookmarked": True})

    return {"posts": ordered}


@router.post("/bookmarks")
async def toggle_bookmark(
    body: BookmarkRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    if not body.postId:
        raise HTTPException(status_code=400, detail="Post ID is required")

    supabase = require_supabase()

    try:
        existing = _find_toggle_row(supabase, "forum_bookmarks", {"user_id": auth.user_id, "post_id": body.postId})
        if existing:
            supabase.table("forum_bookmarks").delete().eq("id", existing["id"]).execute()
            return {"bookmarked": False}

        result = supabase.table("forum_bookmarks").insert({
            "user_id": auth.user_id,
            "post_id": body.postId,
        }).execute()
    except Exception as e:
        raise backend_error("[Forum] Error toggling bookmark", e, "Failed to update bookmark")

    return {"bookmarked": True, "bookmark": first_row(result)}


@router.get("/follows")
async def list_follows(
    type: str = Query(default="following"),
    userId: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context)
):
    """Users that `userId` (default: caller) follows, or its followers."""
    supabase = require_supabase()
    target = userId or auth.user_id

    if type == "followers":
        match_column, user_column = "following_id", "follower_id"
    else:
        match_column, user_column = "follower_id", "following_id"

    try:
        result = supabase.table("forum_follows")\
            .select(user_column)\
            .eq(match_column, target)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Forum] Error fetching {type}", e, f"Failed to fetch {type}")

    user_cache: Dict[str, dict] = {}
    users = [get_public_user_info(row[user_column], user_cache) for row in result.data or []]
    return {"users": users}


@router.post("/follows")
async def toggle_follow(
    body: FollowRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(get_auth_context)
):
    if not body.followingId:
        raise HTTPException(status_code=400, detail="Following ID is required")
    if body.followingId == auth.user_id:
        raise HTTPException(status_code=400, detail="Cannot follow yourself")

    supabase = require_supabase()

    try:
        existing = _find_toggle_row(
            supabase, "forum_follows", {"follower_id": auth.user_id, "following_id": body.followingId}
        )
        if existing:
            supabase.table("forum_follows").delete().eq("id", existing["id"]).execute()
            return {"following": False}

        result = supabase.table("forum_follows").insert({
            "follower_id": auth.user_id,
            "following_id": body.followingId,
        }).execute()
    except Exception as e:
        raise backend_error("[Forum] Error toggling follow", e, "Failed to update follow")

    background_tasks.add_task(
        send_forum_notification,
        supabase, body.followingId, "follow",
        actor_user_id=auth.user_id,
    )
    return {"following": True, "follow": first_row(result)}
