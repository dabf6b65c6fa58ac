"""
Notification Tests

Preferences and history endpoints, the deadline reminder and weekly digest
jobs, the cron entry points, forum notification emails and the Resend /
Twilio senders.
"""

from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from complio.main import app
from complio import email_service, sms_service
from complio.forum_notifications import display_name, send_forum_notification
from complio.notification_jobs import (
    reminder_window,
    run_deadline_reminders,
    run_weekly_digest,
    week_start,
)

client = TestClient(app)

REMINDER_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
MONDAY = datetime(2026, 1, 19, 9, 0, tzinfo=timezone.utc)
SENT = {"success": True, "data": {"id": "msg_1"}}


def history(db, **filters):
    rows = db.rows("notification_history")
    return [r for r in rows if all(r.get(k) == v for k, v in filters.items())]


# =============================================================================
# PREFERENCES & HISTORY ENDPOINTS
# =============================================================================

class TestPreferencesEndpoints:
    """GET/POST /api/notifications/preferences"""

    def test_defaults_for_new_user(self, fake_supabase, mock_auth, auth_headers):
        response = client.get("/api/notifications/preferences", headers=auth_headers)

        assert response.status_code == 200
        prefs = response.json()["preferences"]
        assert prefs["email_enabled"] is True
        assert prefs["sms_enabled"] is False
        assert prefs["email_address"] == "owner@example.com"
        assert prefs["phone_number"] == "+15550001111"
        assert prefs["weekly_digest_day"] == 1
        assert prefs["weekly_digest_time"] == "09:00:00"
        assert prefs["reminder_channels"] == ["email"]
        assert all(prefs[k] for k in ("reminder_30_days", "reminder_14_days", "reminder_7_days", "reminder_1_day"))

    def test_upsert_only_provided_fields(self, fake_supabase, mock_auth, auth_headers):
        response = client.post(
            "/api/notifications/preferences", headers=auth_headers, json={"sms_enabled": True}
        )
        assert response.status_code == 200
        assert fake_supabase.rows("notification_preferences")[0]["sms_enabled"] is True
        assert "email_enabled" not in fake_supabase.rows("notification_preferences")[0]

        client.post("/api/notifications/preferences", headers=auth_headers, json={"reminder_7_days": False})
        rows = fake_supabase.rows("notification_preferences")
        assert len(rows) == 1
        assert rows[0]["sms_enabled"] is True
        assert rows[0]["reminder_7_days"] is False

    def test_stored_row_falls_back_to_auth_email(self, fake_supabase, mock_auth, auth_headers):
        fake_supabase.seed("notification_preferences", {"user_id": "user-1", "email_address": None, "sms_enabled": True})
        prefs = client.get("/api/notifications/preferences", headers=auth_headers).json()["preferences"]
        assert prefs["email_address"] == "owner@example.com"
        assert prefs["sms_enabled"] is True


class TestHistoryEndpoint:
    """GET /api/notifications/history"""

    def test_other_user_is_forbidden(self, fake_supabase, mock_auth, auth_headers):
        response = client.get("/api/notifications/history?userId=user-2", headers=auth_headers)
        assert response.status_code == 403

    def test_newest_first(self, fake_supabase, mock_auth, auth_headers):
        fake_supabase.seed(
            "notification_history",
            {"user_id": "user-1", "subject": "old", "sent_at": "2026-01-01T00:00:00+00:00"},
            {"user_id": "user-1", "subject": "new", "sent_at": "2026-01-10T00:00:00+00:00"},
            {"user_id": "user-2", "subject": "theirs", "sent_at": "2026-01-11T00:00:00+00:00"},
        )
        response = client.get("/api/notifications/history?userId=user-1&limit=5", headers=auth_headers)
        assert [n["subject"] for n in response.json()["notifications"]] == ["new", "old"]


# =============================================================================
# DEADLINE REMINDERS
# =============================================================================

class TestReminderWindows:
    """UTC calendar-day windows."""

    def test_window_covers_whole_target_day(self):
        start, end = reminder_window(REMINDER_NOW, 7)
        assert start == datetime(2026, 1, 22, tzinfo=timezone.utc)
        assert end.date() == start.date()
        assert end.hour == 23 and end.minute == 59

    def test_week_starts_sunday(self):
        assert week_start(MONDAY) == datetime(2026, 1, 18, tzinfo=timezone.utc)
        sunday = datetime(2026, 1, 18, 15, 0, tzinfo=timezone.utc)
        assert week_start(sunday) == datetime(2026, 1, 18, tzinfo=timezone.utc)


class TestDeadlineReminders:
    """run_deadline_reminders"""

    @pytest.fixture
    def seven_day_doc(self, fake_supabase):
        return fake_supabase.seed("documents", {
            "user_id": "user-1", "filename": "license.pdf", "expiration_date": "2026-01-22T09:00:00+00:00",
        })

    def test_sends_email_with_default_preferences(self, fake_supabase, seven_day_doc):
        fake_supabase.seed("documents", {
            "user_id": "user-1", "filename": "later.pdf", "expiration_date": "2026-01-23T09:00:00+00:00",
        })
        with patch("complio.notification_jobs.send_email", return_value=SENT) as mock_email:
            result = run_deadline_reminders(fake_supabase, now=REMINDER_NOW)

        assert result == {"success": True, "totalSent": 1}
        to, subject, body = mock_email.call_args[0]
        assert to == "owner@example.com"
        assert subject == "Reminder: license.pdf deadline in 7 days"
        assert "Thursday, January 22, 2026" in body

        rows = history(fake_supabase, notification_type="deadline_reminder")
        assert len(rows) == 1
        assert rows[0]["status"] == "sent"
        assert rows[0]["channel"] == "email"
        assert rows[0]["reminder_days_before"] == 7
        assert rows[0]["document_id"] == seven_day_doc["id"]

    def test_respects_disabled_offset(self, fake_supabase, seven_day_doc):
        fake_supabase.seed("notification_preferences", {"user_id": "user-1", "reminder_7_days": False})
        with patch("complio.notification_jobs.send_email") as mock_email:
            result = run_deadline_reminders(fake_supabase, now=REMINDER_NOW)
        assert result["totalSent"] == 0
        mock_email.assert_not_called()

    def test_skips_already_sent_today(self, fake_supabase, seven_day_doc):
        fake_supabase.seed("notification_history", {
            "user_id": "user-1", "document_id": seven_day_doc["id"], "reminder_days_before": 7,
            "notification_type": "deadline_reminder", "sent_at": "2026-01-15T06:00:00+00:00",
        })
        with patch("complio.notification_jobs.send_email") as mock_email:
            run_deadline_reminders(fake_supabase, now=REMINDER_NOW)
        mock_email.assert_not_called()

    def test_email_and_sms_channels(self, fake_supabase, seven_day_doc):
        fake_supabase.seed("notification_preferences", {
            "user_id": "user-1", "sms_enabled": True, "phone_number": "+15551234567",
            "reminder_channels": ["email", "sms"],
        })
        with patch("complio.notification_jobs.send_email", return_value=SENT), \
                patch("complio.notification_jobs.send_sms", return_value=SENT) as mock_sms:
            result = run_deadline_reminders(fake_supabase, now=REMINDER_NOW)

        assert result["totalSent"] == 2
        assert mock_sms.call_args[0][0] == "+15551234567"
        assert {r["channel"] for r in history(fake_supabase)} == {"email", "sms"}

    def test_failed_send_is_logged_and_reported(self, fake_supabase, seven_day_doc):
        with patch("complio.notification_jobs.send_email", return_value={"success": False, "error": "bounced"}):
            result = run_deadline_reminders(fake_supabase, now=REMINDER_NOW)

        assert result["totalSent"] == 0
        assert "bounced" in result["errors"][0]
        row = history(fake_supabase)[0]
        assert row["status"] == "failed"
        assert row["error_message"] == "bounced"

    def test_unknown_user_is_skipped(self, fake_supabase):
        fake_supabase.seed("documents", {
            "user_id": "ghost", "filename": "x.pdf", "expiration_date": "2026-01-16T09:00:00+00:00",
        })
        with patch("complio.notification_jobs.send_email") as mock_email:
            result = run_deadline_reminders(fake_supabase, now=REMINDER_NOW)
        assert result == {"success": True, "totalSent": 0}
        mock_email.assert_not_called()


# =============================================================================
# WEEKLY DIGEST
# =============================================================================

class TestWeeklyDigest:
    """run_weekly_digest"""

    @pytest.fixture
    def monday_prefs(self, fake_supabase):
        return fake_supabase.seed("notification_preferences", {
            "user_id": "user-1", "weekly_digest_enabled": True, "weekly_digest_day": 1,
            "email_enabled": True, "sms_enabled": False,
        })

    def test_no_users_today(self, fake_supabase):
        fake_supabase.seed("notification_preferences", {
            "user_id": "user-1", "weekly_digest_enabled": True, "weekly_digest_day": 3,
        })
        result = run_weekly_digest(fake_supabase, now=MONDAY)
        assert result == {"success": True, "message": "No users to send digest to today", "totalSent": 0}

    def test_sends_digest_with_upcoming_deadlines(self, fake_supabase, monday_prefs):
        fake_supabase.seed(
            "documents",
            {"user_id": "user-1", "filename": "permit.pdf", "expiration_date": "2026-01-25T12:00:00+00:00"},
            {"user_id": "user-1", "filename": "far.pdf", "expiration_date": "2026-06-01T00:00:00+00:00"},
        )
        with patch("complio.notification_jobs.send_email", return_value=SENT) as mock_email:
            result = run_weekly_digest(fake_supabase, now=MONDAY)

        assert result == {"success": True, "totalSent": 1}
        to, subject, body = mock_email.call_args[0]
        assert to == "owner@example.com"
        assert subject == "compl.io Weekly Digest - 1 Upcoming Deadlines"
        assert "permit.pdf" in body
        assert "far.pdf" not in body
        assert "Due in 7 days" in body
        assert "Hello Olivia Owner," in body

        row = history(fake_supabase, notification_type="weekly_digest")[0]
        assert row["metadata"] == {"upcomingDeadlinesCount": 1, "recentUpdatesCount": 2}

    def test_skips_user_already_sent_this_week(self, fake_supabase, monday_prefs):
        fake_supabase.seed("notification_history", {
            "user_id": "user-1", "notification_type": "weekly_digest", "sent_at": "2026-01-18T10:00:00+00:00",
        })
        with patch("complio.notification_jobs.send_email") as mock_email:
            result = run_weekly_digest(fake_supabase, now=MONDAY)
        assert result["totalSent"] == 0
        mock_email.assert_not_called()

    def test_sms_digest(self, fake_supabase):
        fake_supabase.seed("notification_preferences", {
            "user_id": "user-1", "weekly_digest_enabled": True, "weekly_digest_day": 1,
            "email_enabled": False, "sms_enabled": True, "phone_number": "+15551234567",
        })
        with patch("complio.notification_jobs.send_email") as mock_email, \
                patch("complio.notification_jobs.send_sms", return_value=SENT) as mock_sms:
            result = run_weekly_digest(fake_supabase, now=MONDAY)

        assert result["totalSent"] == 1
        mock_email.assert_not_called()
        assert "0 upcoming deadlines, 2 new compliance updates" in mock_sms.call_args[0][1]


class TestCronEndpoints:
    """GET /api/cron/*"""

    def test_missing_secret(self, fake_supabase):
        assert client.get("/api/cron/deadline-reminders").status_code == 401

    def test_wrong_secret(self, fake_supabase):
        response = client.get("/api/cron/weekly-digest", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_runs_job(self, fake_supabase):
        with patch("complio.cron_routes.run_deadline_reminders", return_value={"success": True, "totalSent": 3}) as job:
            response = client.get(
                "/api/cron/deadline-reminders", headers={"Authorization": "Bearer test-cron-secret"}
            )
        assert response.status_code == 200
        assert response.json() == {"success": True, "totalSent": 3}
        job.assert_called_once_with(fake_supabase)


# =============================================================================
# FORUM NOTIFICATIONS
# =============================================================================

class TestForumNotifications:
    """send_forum_notification"""

    @pytest.fixture
    def author(self, fake_supabase):
        fake_supabase.auth.admin.add_user("user-2", "maria@example.com", {"name": "Maria"})
        return fake_supabase.seed("forum_posts", {"user_id": "user-2", "title": "Sales tax on gift cards?"})

    def test_reply_email(self, fake_supabase, author):
        with patch("complio.forum_notifications.send_email", return_value=SENT) as mock_email:
            sent = send_forum_notification(
                fake_supabase, "user-2", "reply", post_id=author["id"], reply_id="r1", actor_user_id="user-1"
            )

        assert sent is True
        to, subject, body = mock_email.call_args[0]
        assert to == "maria@example.com"
        assert subject == "Olivia Owner replied to your post: Sales tax on gift cards?"
        assert f"https://app.compl.io/Community/{author['id']}" in body

        row = history(fake_supabase, notification_type="forum_reply")[0]
        assert row["status"] == "sent"
        assert row["metadata"]["replyId"] == "r1"

    def test_email_disabled(self, fake_supabase, author):
        fake_supabase.seed("notification_preferences", {"user_id": "user-2", "email_enabled": False})
        with patch("complio.forum_notifications.send_email") as mock_email:
            assert send_forum_notification(fake_supabase, "user-2", "like", post_id=author["id"]) is False
        mock_email.assert_not_called()

    def test_unknown_type_is_recorded_as_failure(self, fake_supabase, author):
        with patch("complio.forum_notifications.send_email") as mock_email:
            assert send_forum_notification(fake_supabase, "user-2", "poke") is False
        mock_email.assert_not_called()
        assert history(fake_supabase, notification_type="forum_poke")[0]["status"] == "failed"

    def test_display_name_fallbacks(self):
        assert display_name({"email": "jo@x.com", "user_metadata": {"full_name": "Jo Smith"}}) == "Jo Smith"
        assert display_name({"email": "jo@x.com", "user_metadata": {"name": "Jo"}}) == "Jo"
        assert display_name({"email": "jo@x.com", "user_metadata": {}}) == "jo"
        assert display_name(None) == "A community member"


# =============================================================================
# SENDERS & TEMPLATES
# =============================================================================

class TestEmailService:
    """Resend sender"""

    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        assert email_service.send_email("a@b.com", "Hi", "<p>x</p>") == {
            "success": False, "error": "Email service not configured"
        }

    def test_posts_to_resend(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        response = MagicMock(status_code=200)
        response.json.return_value = {"id": "em_1"}
        with patch("complio.email_service.requests.post", return_value=response) as mock_post:
            result = email_service.send_email("a@b.com", "Hi", "<p>x</p>")

        assert result == {"success": True, "data": {"id": "em_1"}}
        kwargs = mock_post.call_args.kwargs
        assert kwargs["headers"] == {"Authorization": "Bearer re_test"}
        assert kwargs["json"] == {
            "from": "compl.io <notifications@compl.io>", "to": ["a@b.com"], "subject": "Hi", "html": "<p>x</p>",
        }

    def test_network_error_is_returned(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        with patch("complio.email_service.requests.post", side_effect=requests.ConnectionError("down")):
            result = email_service.send_email("a@b.com", "Hi", "<p>x</p>")
        assert result["success"] is False
        assert "down" in result["error"]

    def test_date_formats(self):
        assert email_service.format_long_date(datetime(2026, 1, 5)) == "Monday, January 5, 2026"
        assert email_service.format_short_date(datetime(2026, 1, 5)) == "Jan 5, 2026"

    def test_reminder_template_escapes_filename(self):
        body = email_service.generate_deadline_reminder_email("<b>permit</b>", datetime(2026, 1, 5), 1)
        assert "&lt;b&gt;permit&lt;/b&gt;" in body
        assert "1 day<" in body


class TestSmsService:
    """Twilio sender"""

    def test_missing_phone_number(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
        monkeypatch.delenv("TWILIO_PHONE_NUMBER", raising=False)
        assert sms_service.send_sms("+1555", "hi")["error"] == "Twilio phone number not configured"

    def test_posts_to_twilio(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
        monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15550000000")
        response = MagicMock(status_code=201)
        response.json.return_value = {"sid": "SM1"}
        with patch("complio.sms_service.requests.post", return_value=response) as mock_post:
            result = sms_service.send_sms("+15551234567", "hi")

        assert result["success"] is True
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages.json"
        assert kwargs["auth"] == ("AC1", "tok")
        assert kwargs["data"] == {"From": "+15550000000", "To": "+15551234567", "Body": "hi"}

    def test_reminder_text(self):
        text = sms_service.generate_deadline_reminder_sms("License", datetime(2026, 1, 5), 1)
        assert text == "compl.io: License deadline in 1 day (Jan 5, 2026). View: https://app.compl.io/Documents"
