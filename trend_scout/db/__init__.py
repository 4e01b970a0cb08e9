"""Database layer."""

from trend_scout.db.models import (
    Base,
    CandidateRootRow,
    NewsItemRow,
    TrendKeywordRow,
    TrendRootRow,
    TrendRunRow,
    TrendTaskRow,
)
from trend_scout.db.repository import TrendRepository

__all__ = [
    "Base",
    "CandidateRootRow",
    "NewsItemRow",
    "TrendKeywordRow",
    "TrendRootRow",
    "TrendRunRow",
    "TrendTaskRow",
    "TrendRepository",
]
