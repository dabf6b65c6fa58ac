"""
Email notifications for forum activity: replies, mentions, likes and follows.
"""

import html
import logging
from typing import Optional, Dict, Any

from complio.email_service import send_email, app_url
from complio.notification_store import get_preferences, record_notification
from complio.router_utils import first_row
from complio.supabase_client import get_auth_user

logger = logging.getLogger(__name__)

FORUM_NOTIFICATION_TYPES = ("reply", "mention", "like", "follow")
DEFAULT_ACTOR_NAME = "A community member"


def display_name(user: Optional[dict], default: str = DEFAULT_ACTOR_NAME) -> str:
    """full_name, then name, then the email's local part."""
    if not user:
        return default
    metadata = user.get("user_metadata") or {}
    email = user.get("email") or ""
    return metadata.get("full_name") or metadata.get("name") or email.split("@")[0] or default


def _link_button(href: str, label: str) -> str:
    return (
        f'<p><a href="{href}" style="display: inline-block; padding: 10px 20px; '
        f'background-color: #1F7A5C; color: white; text-decoration: none; border-radius: 5px;">{label}</a></p>'
    )


def build_forum_email(notification_type: str, actor_name: str, post_title: str, post_link: str) -> tuple:
    """(subject, html body) for a forum notification type."""
    actor = html.escape(actor_name)
    title = html.escape(post_title)

    if notification_type == "reply":
        subject = f"{actor_name} replied to your post: {post_title}"
        message = f'<strong>{actor}</strong> replied to your post "<strong>{title}</strong>".'
        button = _link_button(post_link, "View Reply")
    elif notification_type == "mention":
        subject = f"{actor_name} mentioned you in a post"
        message = f'<strong>{actor}</strong> mentioned you in a post "<strong>{title}</strong>".'
        button = _link_button(post_link, "View Post")
    elif notification_type == "like":
        subject = f"{actor_name} liked your post"
        message = f'<strong>{actor}</strong> liked your post "<strong>{title}</strong>".'
        button = _link_button(post_link, "View Post")
    elif notification_type == "follow":
        subject = f"{actor_name} started following you"
        message = f"<strong>{actor}</strong> started following you on compl.io."
        button = _link_button(f"{app_url()}/Community", "Visit Community")
    else:
        raise ValueError(f"Unknown forum notification type: {notification_type}")

    body = f"<p>Hi there,</p><p>{message}</p>{button}<p>Best regards,<br>The compl.io Team</p>"
    return subject, body


def send_forum_notification(
    supabase,
    user_id: str,
    notification_type: str,
    post_id: Optional[str] = None,
    reply_id: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Email a user about forum activity and record it in notification_history.
    Returns True when an email was sent. Never raises.
    """
    history_metadata = {"postId": post_id, "replyId": reply_id, "actorUserId": actor_user_id, **(metadata or {})}
    history_type = f"forum_{notification_type}"

    try:
        prefs = get_preferences(supabase, user_id)
        if prefs and prefs.get("email_enabled") is False:
            return False

        recipient = (prefs or {}).get("email_address")
        if not recipient:
            recipient = (get_auth_user(user_id) or {}).get("email")
        if not recipient:
            logger.info(f"[Forum] No email found for user {user_id}")
            return False

        actor_name = display_name(get_auth_user(actor_user_id)) if actor_user_id else DEFAULT_ACTOR_NAME

        post_title, post_link = "", ""
        if post_id:
            post = first_row(
                supabase.table("forum_posts").select("title").eq("id", post_id).limit(1).execute()
            )
            if post:
                post_title = post.get("title") or ""
                post_link = f"{app_url()}/Community/{post_id}"

        subject, body = build_forum_email(notification_type, actor_name, post_title, post_link)
        result = send_email(recipient, subject, body)

        record_notification(
            supabase, user_id, history_type, "email", recipient,
            status="sent" if result["success"] else "failed",
            subject=subject,
            error_message=None if result["success"] else str(result.get("error")),
            metadata=history_metadata,
        )
        return bool(result["success"])

    except Exception as e:
        logger.error(f"[Forum] Error sending {history_type} notification to {user_id}: {e}")
        record_notification(
            supabase, user_id, history_type, "email", "",
            status="failed", subject="", error_message=str(e), metadata=history_metadata,
        )
        return False
