"""
Compliance Score Routes

Serves the compliance health score for the caller's document set.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from complio.auth_permissions import AuthContext, get_auth_context
from complio.compliance_score_engine import compute_score
from complio.router_utils import require_supabase, backend_error
from complio.schemas import ComplianceScoreResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/compliance", tags=["compliance"])


@router.get("/score", response_model=ComplianceScoreResponse)
async def get_compliance_score(auth: AuthContext = Depends(get_auth_context)):
    """Compute the caller's compliance health score from their documents."""
    supabase = require_supabase()

    try:
        result = supabase.table("documents")\
            .select("id, category, expiration_date")\
            .eq("user_id", auth.user_id)\
            .execute()
    except Exception as e:
        raise backend_error(f"[Compliance] Error fetching documents for {auth.user_id}", e, "Failed to fetch documents")

    score = compute_score(result.data or [], now=datetime.now(timezone.utc))
    logger.info(
        f"[Compliance] user={auth.user_id} score={score.overall_score} "
        f"documents={score.stats.total_documents}"
    )
    return score.to_dict()
