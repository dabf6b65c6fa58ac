"""
Authentication & Request Guards

Bearer-token authentication for the compl.io API, plus the shared guards
used by the routers: per-user rate limiting, upload validation and the
cron secret check.
"""

import os
import uuid
import logging
import secrets
import functools
from typing import List, Dict, Any, Optional, Callable
from datetime import datetime, timedelta

from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from complio.supabase_client import verify_supabase_token

logger = logging.getLogger(__name__)


# =============================================================================
# AUTHORIZATION CONTEXT
# =============================================================================

class AuthContext:
    """
    Authorization context for a request.
    Contains the Supabase user id, email and user metadata.
    """
    def __init__(
        self,
        user_id: str,
        email: Optional[str],
        user_metadata: Optional[Dict[str, Any]] = None,
        role: Optional[str] = None,
        request_id: Optional[str] = None
    ):
        self.user_id = user_id
        self.email = email
        self.user_metadata = user_metadata or {}
        self.role = role
        self.request_id = request_id or str(uuid.uuid4())[:8]

    def require_self(self, user_id: Optional[str], message: str = "Forbidden"):
        """Raise 403 when a query targets another user's data"""
        if user_id and user_id != self.user_id:
            raise HTTPException(status_code=403, detail=message)

    def to_log_context(self) -> Dict[str, Any]:
        """Return context suitable for logging"""
        return {
            "user_id": self.user_id,
            "role": self.role,
            "request_id": self.request_id,
        }


# =============================================================================
# AUTHENTICATION HELPERS
# =============================================================================

security = HTTPBearer(auto_error=False)


def _extract_bearer_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials:
        return credentials.credentials

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthContext:
    """
    Extract and validate authentication, returning an AuthContext.
    This is the primary auth dependency for protected endpoints.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

    token = _extract_bearer_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = verify_supabase_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return AuthContext(
        user_id=user["id"],
        email=user.get("email"),
        user_metadata=user.get("user_metadata"),
        role=user.get("role"),
        request_id=request_id
    )


async def get_optional_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Optional[AuthContext]:
    """
    Like get_auth_context but returns None instead of raising for unauthenticated requests.
    Used by the public forum reads.
    """
    try:
        return await get_auth_context(request, credentials)
    except HTTPException:
        return None


async def verify_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> bool:
    """Cron endpoints accept only `Authorization: Bearer $CRON_SECRET`."""
    expected = os.environ.get("CRON_SECRET")
    token = _extract_bearer_token(request, credentials)

    if not expected or not token or not secrets.compare_digest(token, expected):
        logger.warning(f"[Cron] Rejected call to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


# =============================================================================
# RATE LIMITING
# =============================================================================

_rate_limit_cache: Dict[str, Dict[str, Any]] = {}

RATE_LIMITS = {
    "assistant": {"max_requests": 20, "window_minutes": 1},
    "tagging": {"max_requests": 20, "window_minutes": 1},
    "document_analysis": {"max_requests": 10, "window_minutes": 1},
    "default": {"max_requests": 60, "window_minutes": 1},
}


def check_rate_limit(user_id: str, endpoint: str) -> bool:
    """
    Check if request is within rate limits.
    Returns True if allowed, raises HTTPException if rate limited.
    """
    limit_config = RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
    max_requests = limit_config["max_requests"]
    window_minutes = limit_config["window_minutes"]

    cache_key = f"{user_id}:{endpoint}"
    now = datetime.utcnow()
    window_start = now - timedelta(minutes=window_minutes)

    entry = _rate_limit_cache.get(cache_key)
    if entry and entry["window_start"] > window_start:
        if entry["count"] >= max_requests:
            logger.warning(f"[RateLimit] {cache_key} exceeded {max_requests}/{window_minutes}m")
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Max {max_requests} requests per {window_minutes} minute(s)."
            )
        entry["count"] += 1
    else:
        _rate_limit_cache[cache_key] = {"window_start": now, "count": 1}

    return True


def rate_limit(endpoint: str):
    """Decorator to apply rate limiting to an endpoint"""
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            auth: AuthContext = kwargs.get("auth")
            if auth:
                check_rate_limit(auth.user_id, endpoint)
            return await func(*args, **kwargs)
        return wrapper
    return decorator


# =============================================================================
# FILE UPLOAD VALIDATION
# =============================================================================

DOCUMENT_FILE_TYPES = {
    "application/pdf": [".pdf"],
    "application/msword": [".doc"],
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": [".docx"],
    "application/vnd.ms-excel": [".xls"],
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": [".xlsx"],
    "image/png": [".png"],
    "image/jpeg": [".jpg", ".jpeg"],
    "image/jpg": [".jpg", ".jpeg"],
}

AVATAR_FILE_TYPES = {
    "image/jpeg": [".jpg", ".jpeg"],
    "image/jpg": [".jpg", ".jpeg"],
    "image/png": [".png"],
    "image/webp": [".webp"],
}

MAX_DOCUMENT_SIZE_MB = 10
MAX_AVATAR_SIZE_MB = 5


def validate_file_upload(
    filename: str,
    content_type: Optional[str],
    file_size: int,
    allowed_types: Dict[str, List[str]] = DOCUMENT_FILE_TYPES,
    max_size_mb: int = MAX_DOCUMENT_SIZE_MB,
) -> Dict[str, Any]:
    """
    Validate an uploaded file's declared type and size.
    Returns validation result dict with a valid flag and any errors.
    """
    errors = []

    if content_type not in allowed_types:
        errors.append(f"File type {content_type or 'unknown'} not allowed")

    if file_size > max_size_mb * 1024 * 1024:
        errors.append(f"File size exceeds {max_size_mb}MB limit")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "filename": filename,
        "content_type": content_type,
        "size": file_size,
    }


# =============================================================================
# CORS CONFIGURATION
# =============================================================================

def get_cors_origins() -> List[str]:
    """Get allowed CORS origins from environment"""
    origins_str = os.getenv("CORS_ORIGINS", "")

    if not origins_str:
        app_url = os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL")
        origins = ["http://localhost:3000", "https://compl.io", "https://www.compl.io"]
        if app_url and app_url not in origins:
            origins.append(app_url)
        return origins

    return [o.strip() for o in origins_str.split(",") if o.strip()]
