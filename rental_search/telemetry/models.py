from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from rental_search.cache.keys import canonicalize
from rental_search.common.clock import Clock
from rental_search.common.enums import FeedbackType
from rental_search.ranking.models import RankedResult


@dataclass(frozen=True)
class RankingFeedbackEvent:
    event_id: str
    user_id: str
    listing_id: str
    feedback: FeedbackType
    displayed_rank: int
    displayed_score: float
    components: Dict[str, float]
    created_at: datetime
    experiment_id: Optional[str] = None
    variant_id: Optional[str] = None
    search_id: Optional[str] = None
    ai_score: Optional[float] = None

    event_type = "ranking_feedback"

    def as_payload(self) -> Dict[str, Any]:
        return canonicalize(self)


@dataclass(frozen=True)
class SearchPerformanceEvent:
    event_id: str
    method: str
    total_ms: float
    p95_ms: Optional[float]
    result_count: int
    total_candidates: int
    fallback: bool
    created_at: datetime
    over_budget: bool = False
    cache_hit_rate: Optional[float] = None
    variant_id: Optional[str] = None
    adapters: Dict[str, str] = field(default_factory=dict)

    event_type = "search_performance"

    def as_payload(self) -> Dict[str, Any]:
        return canonicalize(self)


def build_feedback_event(
    result: RankedResult,
    *,
    user_id: str,
    feedback: FeedbackType,
    displayed_rank: Optional[int] = None,
    displayed_score: Optional[float] = None,
    experiment_id: Optional[str] = None,
    search_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> RankingFeedbackEvent:
    clock = clock or Clock()
    personalization = result.personalization
    return RankingFeedbackEvent(
        event_id=str(uuid4()),
        user_id=user_id,
        listing_id=result.listing_id,
        feedback=feedback,
        displayed_rank=displayed_rank if displayed_rank is not None else result.rank,
        displayed_score=displayed_score if displayed_score is not None else result.score,
        components=result.components.as_dict(),
        created_at=clock.now(),
        experiment_id=experiment_id,
        variant_id=result.variant_id,
        search_id=search_id,
        ai_score=personalization.ai_score if personalization else None,
    )
