from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from rental_search.common.enums import BreakerState, ScoringStatus
from rental_search.common.errors import ServiceError
from rental_search.ranking.models import UserPreferences


MAX_CANDIDATES_PER_REQUEST = 50


class ScorerError(ServiceError):
    def __init__(self, message: str, *, code: str = "SCORER_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class ScorerTimeoutError(ScorerError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="SCORER_TIMEOUT", details=details)


class ScorerUnavailableError(ScorerError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="SCORER_UNAVAILABLE", details=details)


class InvalidScoreError(ScorerError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="INVALID_SCORE", details=details)


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    preferences: UserPreferences = field(default_factory=UserPreferences)
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AIScore:
    score: float
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScoringJob:
    listing_id: str
    ai_score: Optional[float]
    success: bool
    status: ScoringStatus
    reasons: List[str] = field(default_factory=list)
    error: Optional[str] = None
    scored_at: Optional[datetime] = None


@dataclass(frozen=True)
class BatchScoringResult:
    results: List[ScoringJob]
    successful: int
    failed: int
    total_ms: float
    circuit_breaker_open: bool

    def by_listing(self) -> Dict[str, ScoringJob]:
        return {job.listing_id: job for job in self.results}


@dataclass(frozen=True)
class CircuitBreakerState:
    state: BreakerState
    consecutive_failures: int
    failure_threshold: int
    cooldown_s: float
    last_transition_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state == BreakerState.open
