import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from complio import __version__, chatbot_agent
from complio.auth_permissions import get_cors_origins
from complio.supabase_client import get_supabase

from complio.assistant_routes import router as assistant_router
from complio.calendar_routes import router as calendar_router
from complio.compliance_routes import router as compliance_router
from complio.cron_routes import router as cron_router
from complio.document_routes import router as document_router
from complio.forum_routes import router as forum_router
from complio.notification_routes import router as notification_router
from complio.onboarding_routes import router as onboarding_router
from complio.profile_routes import router as profile_router
from complio.system_routes import router as system_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="compl.io API",
    description="Compliance document tracking, health scoring, reminders and community forum",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    port = os.environ.get("PORT", "8000")
    logger.info(f"compl.io API starting on port {port}")
    logger.info(f"Supabase connected: {get_supabase() is not None}")
    logger.info(f"AI Service: {'Configured' if chatbot_agent.is_configured() else 'NOT CONFIGURED - set GOOGLE_CLOUD_API_KEY'}")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "compl.io API",
        "version": __version__,
        "description": "Compliance health scoring and deadline tracking",
        "docs": "/docs",
        "health": "/api/system/health"
    }


# Register Routers
app.include_router(document_router)
app.include_router(compliance_router)
app.include_router(assistant_router)
app.include_router(forum_router)
app.include_router(notification_router)
app.include_router(cron_router)
app.include_router(calendar_router)
app.include_router(onboarding_router)
app.include_router(profile_router)
app.include_router(system_router)
