import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from fastapi import HTTPException

from complio.supabase_client import get_supabase

logger = logging.getLogger(__name__)


def require_supabase():
    """Return the Supabase client or fail the request with 503."""
    supabase = get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return supabase


def first_row(result: Any) -> Optional[dict]:
    """First row of a PostgREST response, or None when nothing matched."""
    data = getattr(result, "data", None)
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def page_bounds(limit: int, offset: int) -> Tuple[int, int]:
    """Inclusive PostgREST range for a limit/offset page."""
    limit = max(1, limit)
    offset = max(0, offset)
    return offset, offset + limit - 1


def backend_error(context: str, error: Exception, detail: str) -> HTTPException:
    """Log a backend failure and build the 500 to raise for it."""
    logger.error(f"{context}: {error}")
    return HTTPException(status_code=500, detail=detail)
