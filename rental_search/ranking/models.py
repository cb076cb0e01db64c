from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rental_search.common.enums import Origin
from rental_search.common.errors import ServiceError
from rental_search.retrieval.models import ListingCandidate


COMPONENTS = (
    "price",
    "location",
    "amenities",
    "market_value",
    "engagement",
    "accessibility",
    "commute",
    "legal",
    "trust",
    "relevance",
)

MAX_PROS = 5
MAX_CONS = 5
PRO_THRESHOLD = 90.0
CON_THRESHOLD = 30.0


class RankingError(ServiceError):
    def __init__(self, message: str, *, code: str = "RANKING_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class InvalidWeightsError(RankingError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="INVALID_WEIGHTS", details=details)


@dataclass(frozen=True)
class UserPreferences:
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    preferred_districts: Tuple[str, ...] = ()
    commute_destination: Optional[str] = None
    max_commute_minutes: Optional[float] = None
    essential_amenities: Tuple[str, ...] = ()
    important_amenities: Tuple[str, ...] = ()
    nice_to_have_amenities: Tuple[str, ...] = ()
    needs_wheelchair: bool = False
    needs_elevator: bool = False
    needs_step_free: bool = False
    needs_registration: bool = False

    @property
    def has_accessibility_needs(self) -> bool:
        return self.needs_wheelchair or self.needs_elevator or self.needs_step_free


@dataclass(frozen=True)
class WeightConfig:
    price: float = 20.0
    location: float = 15.0
    amenities: float = 15.0
    market_value: float = 10.0
    engagement: float = 5.0
    accessibility: float = 5.0
    commute: float = 10.0
    legal: float = 5.0
    trust: float = 10.0
    relevance: float = 5.0

    def __post_init__(self) -> None:
        non_finite = [name for name in COMPONENTS if not math.isfinite(getattr(self, name))]
        if non_finite:
            raise InvalidWeightsError("weights must be finite numbers", details={"components": non_finite})
        negative = [name for name in COMPONENTS if getattr(self, name) < 0]
        if negative:
            raise InvalidWeightsError("weights must be non-negative", details={"components": negative})
        if self.total <= 0:
            raise InvalidWeightsError("weights must not sum to zero")

    @property
    def total(self) -> float:
        return sum(getattr(self, name) for name in COMPONENTS)

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in COMPONENTS}

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]]) -> "WeightConfig":
        if not overrides:
            return cls()
        unknown = sorted(set(overrides) - set(COMPONENTS))
        if unknown:
            raise InvalidWeightsError("unknown weight components", details={"components": unknown})
        values = cls().as_dict()
        for name, value in overrides.items():
            try:
                values[name] = float(value)
            except (TypeError, ValueError) as exc:
                raise InvalidWeightsError("weights must be numeric", details={"component": name}) from exc
        return cls(**values)


@dataclass(frozen=True)
class ScoreComponents:
    price: float
    location: float
    amenities: float
    market_value: float
    engagement: float
    accessibility: float
    commute: float
    legal: float
    trust: float
    relevance: float

    def as_dict(self) -> Dict[str, float]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(frozen=True)
class Personalization:
    ai_score: Optional[float]
    reasons: List[str] = field(default_factory=list)
    success: bool = False
    status: str = "skipped"


@dataclass(frozen=True)
class RankedResult:
    listing_id: str
    rank: int
    score: float
    components: ScoreComponents
    candidate: ListingCandidate
    pros: List[str] = field(default_factory=list)
    cons: List[str] = field(default_factory=list)
    origin: Optional[Origin] = None
    origins: Tuple[Origin, ...] = ()
    distance_m: Optional[float] = None
    variant_id: Optional[str] = None
    personalization: Optional[Personalization] = None
