"""
Cron Routes

Entry points for the scheduler. Both jobs require
`Authorization: Bearer $CRON_SECRET` and use the service-role client.
"""

import logging

from fastapi import APIRouter, Depends

from complio.auth_permissions import verify_cron_secret
from complio.notification_jobs import run_deadline_reminders, run_weekly_digest
from complio.router_utils import require_supabase, backend_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/deadline-reminders")
def deadline_reminders():
    supabase = require_supabase()
    try:
        return run_deadline_reminders(supabase)
    except Exception as e:
        raise backend_error("[Cron] Deadline reminders failed", e, str(e) or "An error occurred")


@router.get("/weekly-digest")
def weekly_digest():
    supabase = require_supabase()
    try:
        return run_weekly_digest(supabase)
    except Exception as e:
        raise backend_error("[Cron] Weekly digest failed", e, str(e) or "An error occurred")
