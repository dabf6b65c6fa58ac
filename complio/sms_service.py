"""
SMS Service

Text messages through the Twilio REST API.

Configuration via environment variables:
    TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN: Twilio credentials
    TWILIO_PHONE_NUMBER: Sender number in E.164 format
"""

import os
import logging
from datetime import datetime
from typing import Dict, Any

import requests

from complio.email_service import app_url, format_short_date

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
REQUEST_TIMEOUT_SECONDS = 10


def is_enabled() -> bool:
    return bool(
        os.environ.get("TWILIO_ACCOUNT_SID")
        and os.environ.get("TWILIO_AUTH_TOKEN")
        and os.environ.get("TWILIO_PHONE_NUMBER")
    )


def send_sms(to: str, message: str) -> Dict[str, Any]:
    """
    Send one SMS to an E.164 number.

    Returns {"success": True, "data": {...}} or {"success": False, "error": str}.
    Never raises.
    """
    account_sid = os.environ.get("TWILIO_ACCOUNT_SID")
    auth_token = os.environ.get("TWILIO_AUTH_TOKEN")
    if not account_sid or not auth_token:
        logger.error("Twilio credentials are not set")
        return {"success": False, "error": "SMS service not configured"}

    from_number = os.environ.get("TWILIO_PHONE_NUMBER")
    if not from_number:
        logger.error("TWILIO_PHONE_NUMBER is not set")
        return {"success": False, "error": "Twilio phone number not configured"}

    try:
        response = requests.post(
            TWILIO_MESSAGES_URL.format(sid=account_sid),
            auth=(account_sid, auth_token),
            data={"From": from_number, "To": to, "Body": message},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.error(f"Error sending SMS to {to}: {e}")
        return {"success": False, "error": str(e)}

    if response.status_code >= 400:
        try:
            error = response.json().get("message") or response.text
        except ValueError:
            error = response.text
        logger.error(f"Twilio rejected SMS to {to}: {response.status_code} {error}")
        return {"success": False, "error": error}

    payload = response.json()
    logger.info(f"Sent SMS {payload.get('sid')} to {to}")
    return {"success": True, "data": payload}


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def generate_deadline_reminder_sms(document_name: str, deadline: datetime, days_until: int) -> str:
    # Kept short to fit a single SMS segment where possible
    return (
        f"compl.io: {document_name} deadline in {_plural(days_until, 'day')} "
        f"({format_short_date(deadline)}). View: {app_url()}/Documents"
    )


def generate_weekly_digest_sms(upcoming_deadlines_count: int, recent_updates_count: int) -> str:
    return (
        f"compl.io Weekly Digest: {_plural(upcoming_deadlines_count, 'upcoming deadline')}, "
        f"{_plural(recent_updates_count, 'new compliance update')}. View: {app_url()}"
    )
