from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from rental_search.common.enums import SearchMethod
from rental_search.common.errors import ServiceError
from rental_search.ranking.models import RankedResult, UserPreferences
from rental_search.retrieval.models import SearchFilters


class SearchUnavailableError(ServiceError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="SEARCH_UNAVAILABLE", details=details)


@dataclass(frozen=True)
class SearchRequest:
    query: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    user_id: Optional[str] = None
    include_ai_score: bool = False
    preferences: Optional[UserPreferences] = None
    search_id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(frozen=True)
class SearchDiagnostics:
    code: str
    total_ms: float
    embedding_ms: Optional[float] = None
    ai_scoring_ms: Optional[float] = None
    cache_hit_rate: Optional[float] = None
    circuit_breaker_open: bool = False
    adapters: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    latency_p95_ms: Optional[float] = None


@dataclass(frozen=True)
class SearchResponse:
    search_id: str
    results: List[RankedResult]
    count: int
    total_candidates: int
    method: SearchMethod
    fallback: bool
    diagnostics: SearchDiagnostics
    variant_id: Optional[str] = None
    experiment_id: Optional[str] = None
    flags: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrchestratorSettings:
    adapter_timeout_s: float = 2.0
    request_timeout_s: float = 5.0
    candidate_limit: int = 200
    fallback_on_empty: bool = True
    ranking_experiment_id: Optional[str] = None
    max_workers: int = 8


def preferences_from_filters(filters: SearchFilters) -> UserPreferences:
    return UserPreferences(
        budget_min=filters.budget_min,
        budget_max=filters.budget_max,
        preferred_districts=(filters.district,) if filters.district else (),
        commute_destination=filters.university,
        max_commute_minutes=filters.max_commute_minutes,
        essential_amenities=tuple(sorted(filters.amenities)),
    )
