"""
Email Service

Transactional email through the Resend REST API, plus the HTML templates
for deadline reminders and the weekly digest.

Configuration via environment variables:
    RESEND_API_KEY: Resend API key
    EMAIL_FROM: Sender (default: compl.io <notifications@compl.io>)
    APP_URL: Dashboard base URL used in links
"""

import os
import html
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

import requests

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM = "compl.io <notifications@compl.io>"
REQUEST_TIMEOUT_SECONDS = 10


def is_enabled() -> bool:
    return bool(os.environ.get("RESEND_API_KEY"))


def app_url() -> str:
    return (os.environ.get("APP_URL") or os.environ.get("NEXT_PUBLIC_APP_URL") or "http://localhost:3000").rstrip("/")


def send_email(to: str, subject: str, html_body: str, from_: Optional[str] = None) -> Dict[str, Any]:
    """
    Send one email.

    Returns {"success": True, "data": {...}} or {"success": False, "error": str}.
    Never raises.
    """
    api_key = os.environ.get("RESEND_API_KEY")
    if not api_key:
        logger.error("RESEND_API_KEY is not set")
        return {"success": False, "error": "Email service not configured"}

    sender = from_ or os.environ.get("EMAIL_FROM") or DEFAULT_FROM

    try:
        response = requests.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={"from": sender, "to": [to], "subject": subject, "html": html_body},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.error(f"Error sending email to {to}: {e}")
        return {"success": False, "error": str(e)}

    if response.status_code >= 400:
        try:
            error = response.json().get("message") or response.text
        except ValueError:
            error = response.text
        logger.error(f"Resend rejected email to {to}: {response.status_code} {error}")
        return {"success": False, "error": error}

    logger.info(f"Sent email '{subject}' to {to}")
    return {"success": True, "data": response.json()}


# =============================================================================
# FORMATTING
# =============================================================================

def format_long_date(value: datetime) -> str:
    """e.g. Monday, January 5, 2026"""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_short_date(value: datetime) -> str:
    """e.g. Jan 5, 2026"""
    return f"{value:%b} {value.day}, {value.year}"


def _days(n: int) -> str:
    return f"{n} {'day' if n == 1 else 'days'}"


def render_layout(title: str, header: str, body_html: str) -> str:
    """Shared compl.io email frame around a body fragment."""
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(title)}</title>
  </head>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #10b981; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
      <h1 style="color: white; margin: 0;">{html.escape(header)}</h1>
    </div>
    <div style="background-color: #f9fafb; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 8px 8px;">
      {body_html}
    </div>
  </body>
</html>"""


def _button(href: str, label: str) -> str:
    return (
        f'<div style="margin-top: 30px; text-align: center;">'
        f'<a href="{href}" style="display: inline-block; background-color: #10b981; color: white; '
        f'padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: 600;">{label}</a>'
        f'</div>'
    )


def _footer(reason: str) -> str:
    return (
        f'<p style="margin-top: 30px; font-size: 14px; color: #9ca3af; text-align: center;">'
        f'{reason}<br>'
        f'<a href="{app_url()}/Profile" style="color: #10b981;">Manage notification preferences</a>'
        f'</p>'
    )


# =============================================================================
# TEMPLATES
# =============================================================================

def generate_deadline_reminder_email(document_name: str, deadline: datetime, days_until: int) -> str:
    body = f"""
      <h2 style="color: #111827; margin-top: 0;">&#9200; Deadline Reminder</h2>
      <p style="font-size: 16px;">This is a reminder about an upcoming deadline:</p>
      <div style="background-color: white; border-left: 4px solid #10b981; padding: 20px; margin: 20px 0; border-radius: 4px;">
        <p style="margin: 0; font-size: 18px; font-weight: 600; color: #111827;">{html.escape(document_name)}</p>
        <p style="margin: 10px 0 0 0; color: #6b7280;"><strong>Deadline:</strong> {format_long_date(deadline)}</p>
        <p style="margin: 10px 0 0 0; color: #6b7280;"><strong>Time remaining:</strong> {_days(days_until)}</p>
      </div>
      <p style="color: #6b7280;">Please take action to ensure this deadline is met on time.</p>
      {_button(f"{app_url()}/Documents", "View Document")}
      {_footer("You're receiving this because you have deadline reminders enabled.")}
    """
    return render_layout("Deadline Reminder", "compl.io", body)


def generate_weekly_digest_email(
    user_name: Optional[str],
    industry: Optional[str],
    upcoming_deadlines: List[Dict[str, Any]],
    recent_updates: List[Dict[str, str]],
) -> str:
    """
    upcoming_deadlines: [{"documentName", "deadlineDate" (datetime), "daysUntil"}]
    recent_updates: [{"title", "summary"}]
    """
    if upcoming_deadlines:
        deadlines_html = "".join(
            f'<div style="background-color: white; border-left: 4px solid #10b981; padding: 15px; margin: 10px 0; border-radius: 4px;">'
            f'<p style="margin: 0; font-weight: 600; color: #111827;">{html.escape(d["documentName"])}</p>'
            f'<p style="margin: 5px 0 0 0; color: #6b7280; font-size: 14px;">'
            f'Due in {_days(d["daysUntil"])} &bull; {format_short_date(d["deadlineDate"])}</p>'
            f'</div>'
            for d in upcoming_deadlines
        )
    else:
        deadlines_html = '<p style="color: #6b7280;">No upcoming deadlines in the next 30 days. Great job staying on top of things!</p>'

    if recent_updates:
        updates_html = "".join(
            f'<div style="background-color: white; padding: 15px; margin: 10px 0; border-radius: 4px; border: 1px solid #e5e7eb;">'
            f'<p style="margin: 0; font-weight: 600; color: #111827;">{html.escape(u["title"])}</p>'
            f'<p style="margin: 5px 0 0 0; color: #6b7280; font-size: 14px;">{html.escape(u["summary"])}</p>'
            f'</div>'
            for u in recent_updates
        )
    else:
        updates_html = '<p style="color: #6b7280;">No new compliance updates this week.</p>'

    industry_suffix = f" for {html.escape(industry)} businesses" if industry else ""
    body = f"""
      <h2 style="color: #111827; margin-top: 0;">Hello {html.escape(user_name or "there")},</h2>
      <p style="font-size: 16px; color: #374151;">Here's your weekly compliance digest{industry_suffix}:</p>
      <div style="margin: 30px 0;">
        <h3 style="color: #111827; font-size: 18px; margin-bottom: 15px;">Upcoming Deadlines</h3>
        {deadlines_html}
      </div>
      <div style="margin: 30px 0;">
        <h3 style="color: #111827; font-size: 18px; margin-bottom: 15px;">Compliance Updates</h3>
        {updates_html}
      </div>
      {_button(app_url(), "View Dashboard")}
      {_footer("This digest is personalized based on your business profile and industry.")}
    """
    return render_layout("Weekly Compliance Digest", "compl.io Weekly Digest", body)
