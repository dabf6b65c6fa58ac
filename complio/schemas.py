from typing import List
from pydantic import BaseModel, Field

# =============================================================================
# ASSISTANT
# =============================================================================

class ChatMessage(BaseModel):
    role: str
    content: str


# =============================================================================
# COMPLIANCE SCORE
# =============================================================================

class CategoryScoreModel(BaseModel):
    category: str
    score: int = Field(..., ge=0, le=100)
    issues: float
    total: int


class ComplianceStatsModel(BaseModel):
    totalDocuments: int
    expiredDocuments: int
    expiringSoon: int
    documentsWithExpiration: int
    documentsWithoutExpiration: int


class ComplianceScoreResponse(BaseModel):
    overallScore: int = Field(..., ge=0, le=100)
    categoryScores: List[CategoryScoreModel]
    recommendations: List[str] = Field(..., max_length=5)
    stats: ComplianceStatsModel
