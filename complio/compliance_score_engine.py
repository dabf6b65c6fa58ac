"""
Compliance Score Engine
Computes a 0-100 compliance health score from a user's documents, with
per-category breakdowns and prioritized recommendations.

The engine is pure: callers fetch the documents and pass in `now`.
"""

import math
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

CATEGORIES = [
    "Tax",
    "Legal",
    "Compliance",
    "HR",
    "Finance",
    "Planning",
    "Governance",
    "Risk",
    "Operations",
]

UNCATEGORIZED = "Uncategorized"

# Categories where an untracked deadline is itself a finding
EXPIRATION_REQUIRED_CATEGORIES = {"Compliance", "Legal", "Tax", "Risk"}

EXPIRING_WINDOW_DAYS = 30

FRACTION_PATTERN = re.compile(r"(?<=\d\d:\d\d:\d\d)\.(\d+)")
EXPIRED_PENALTY = 1.0
MISSING_EXPIRATION_PENALTY = 0.3
EXPIRING_BASE_PENALTY = 0.2
EXPIRING_SCALED_PENALTY = 0.3

OVERALL_EXPIRED_DEDUCTION = 10
OVERALL_EXPIRING_DEDUCTION = 2
FOCUS_THRESHOLD = 70
MAX_RECOMMENDATIONS = 5


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CategoryScore:
    """Score for a single document category"""
    category: str
    score: int = 100
    issues: float = 0.0
    total: int = 0

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "score": self.score,
            "issues": self.issues,
            "total": self.total,
        }


@dataclass
class ComplianceStats:
    total_documents: int = 0
    expired_documents: int = 0
    expiring_soon: int = 0
    documents_with_expiration: int = 0
    documents_without_expiration: int = 0

    def to_dict(self) -> dict:
        return {
            "totalDocuments": self.total_documents,
            "expiredDocuments": self.expired_documents,
            "expiringSoon": self.expiring_soon,
            "documentsWithExpiration": self.documents_with_expiration,
            "documentsWithoutExpiration": self.documents_without_expiration,
        }


@dataclass
class ComplianceScore:
    """Full score result returned by GET /api/compliance/score"""
    overall_score: int
    category_scores: List[CategoryScore] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    stats: ComplianceStats = field(default_factory=ComplianceStats)

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "categoryScores": [c.to_dict() for c in self.category_scores],
            "recommendations": list(self.recommendations),
            "stats": self.stats.to_dict(),
        }


# ============================================================================
# Helpers
# ============================================================================

def round_half_up(value: float) -> int:
    """Round .5 upward, matching the dashboard's rounding."""
    return int(math.floor(value + 0.5))


def parse_expiration_date(value: Any) -> Optional[datetime]:
    """
    Parse a stored expiration date into an aware UTC datetime.

    Bare dates (YYYY-MM-DD) are midnight UTC. Naive timestamps are taken as
    UTC. Anything unparseable is treated as "no expiration".
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        # Postgres trims trailing zeros; fromisoformat wants 3 or 6 digits before 3.11
        text = FRACTION_PATTERN.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable expiration_date: {value!r}")
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


# ============================================================================
# Calculator
# ============================================================================

class ComplianceScoreCalculator:
    """
    Scores a document snapshot.

    Each document contributes a penalty to its category bucket:
    expired 1.0, expiring within 30 days 0.2-0.5 depending on how close,
    missing date 0.3 in deadline-driven categories. Category scores are
    weighted by document count; expired and expiring documents are then
    deducted again from the overall score.
    """

    def __init__(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self.now = now
        self.window_end = now + timedelta(days=EXPIRING_WINDOW_DAYS)

    def calculate(self, documents: Iterable[Dict[str, Any]]) -> ComplianceScore:
        documents = list(documents or [])
        stats = ComplianceStats(total_documents=len(documents))

        buckets: Dict[str, CategoryScore] = {
            name: CategoryScore(category=name) for name in CATEGORIES + [UNCATEGORIZED]
        }

        for doc in documents:
            category = doc.get("category")
            category = (category.strip() if isinstance(category, str) else "") or UNCATEGORIZED
            penalty = self._document_penalty(doc, category, stats)

            bucket = buckets.get(category)
            if bucket is None:
                # Unknown category: counted in stats only
                continue
            bucket.total += 1
            bucket.issues += penalty

        category_scores = []
        for bucket in buckets.values():
            if bucket.total == 0:
                continue
            bucket.score = max(0, min(100, round_half_up(100 - bucket.issues / bucket.total * 100)))
            bucket.issues = round_half_up(bucket.issues * 10) / 10
            category_scores.append(bucket)

        overall = self._overall_score(category_scores, stats)
        recommendations = self._generate_recommendations(category_scores, stats)

        result = ComplianceScore(
            overall_score=overall,
            category_scores=category_scores,
            recommendations=recommendations,
            stats=stats,
        )
        logger.debug(
            f"Compliance score {overall} from {stats.total_documents} documents "
            f"({stats.expired_documents} expired, {stats.expiring_soon} expiring)"
        )
        return result

    def _document_penalty(self, doc: Dict[str, Any], category: str, stats: ComplianceStats) -> float:
        expiration = parse_expiration_date(doc.get("expiration_date"))

        if expiration is None:
            stats.documents_without_expiration += 1
            if category in EXPIRATION_REQUIRED_CATEGORIES:
                return MISSING_EXPIRATION_PENALTY
            return 0.0

        stats.documents_with_expiration += 1

        if expiration < self.now:
            stats.expired_documents += 1
            return EXPIRED_PENALTY

        if expiration <= self.window_end:
            stats.expiring_soon += 1
            days_until = math.ceil((expiration - self.now).total_seconds() / 86400)
            return EXPIRING_BASE_PENALTY + EXPIRING_SCALED_PENALTY * (1 - days_until / EXPIRING_WINDOW_DAYS)

        return 0.0

    def _overall_score(self, category_scores: List[CategoryScore], stats: ComplianceStats) -> int:
        categorised = sum(c.total for c in category_scores)
        if categorised == 0:
            weighted = 100.0
        else:
            weighted = sum(c.score * (c.total / categorised) for c in category_scores)

        weighted -= stats.expired_documents * OVERALL_EXPIRED_DEDUCTION
        weighted -= stats.expiring_soon * OVERALL_EXPIRING_DEDUCTION
        return max(0, min(100, round_half_up(weighted)))

    def _generate_recommendations(self, category_scores: List[CategoryScore], stats: ComplianceStats) -> List[str]:
        recommendations = []

        if stats.expired_documents > 0:
            n = stats.expired_documents
            recommendations.append(
                f"Renew {n} expired {_plural(n, 'document', 'documents')} immediately "
                f"to avoid compliance issues."
            )

        if stats.expiring_soon > 0:
            n = stats.expiring_soon
            recommendations.append(
                f"Take action on {n} {_plural(n, 'document', 'documents')} expiring within 30 days."
            )

        if stats.total_documents > 0:
            n = stats.documents_without_expiration
            share = round_half_up(n / stats.total_documents * 100)
            if share > 50:
                recommendations.append(
                    f"Add expiration dates to {n} {_plural(n, 'document', 'documents')} "
                    f"to improve compliance tracking."
                )

        if category_scores:
            lowest = min(category_scores, key=lambda c: c.score)
            if lowest.score < FOCUS_THRESHOLD:
                recommendations.append(
                    f"Focus on improving your {lowest.category} compliance "
                    f"(current score: {lowest.score}%)."
                )

        if stats.total_documents == 0:
            recommendations.append("Upload your first compliance document to get started with tracking.")

        if not recommendations:
            recommendations.append("Great job! Your compliance is in good shape. Keep up the good work!")

        return recommendations[:MAX_RECOMMENDATIONS]


def compute_score(documents: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> ComplianceScore:
    """Score a document snapshot as of `now` (defaults to the current time)."""
    return ComplianceScoreCalculator(now=now).calculate(documents)
