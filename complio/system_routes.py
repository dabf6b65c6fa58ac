"""
System Routes

Public health check reporting which backends are configured and reachable.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel

from complio import __version__, calendar_sync, chatbot_agent, email_service, sms_service
from complio.supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]


def _configured(flag: bool) -> str:
    return "configured" if flag else "not configured"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.
    Public - no auth required. Only the database is required for "healthy".
    """
    services = {}

    try:
        supabase = get_supabase()
        if supabase:
            supabase.table("documents").select("id").limit(1).execute()
            services["database"] = "healthy"
        else:
            services["database"] = "unavailable"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        services["database"] = f"error: {str(e)[:50]}"

    services["ai"] = _configured(chatbot_agent.is_configured())
    services["email"] = _configured(email_service.is_enabled())
    services["sms"] = _configured(sms_service.is_enabled())
    services["calendar"] = _configured(calendar_sync.is_configured())

    return HealthResponse(
        status="healthy" if services["database"] == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=os.getenv("ENVIRONMENT", "development"),
        services=services,
    )
