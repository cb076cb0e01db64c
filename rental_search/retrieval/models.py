from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from rental_search.common.enums import Origin, SortOption
from rental_search.common.errors import ServiceError


class RetrievalError(ServiceError):
    def __init__(self, message: str, *, code: str = "RETRIEVAL_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class ListingStoreError(RetrievalError):
    def __init__(self, message: str, *, code: str = "LISTING_STORE_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class AdapterTimeoutError(RetrievalError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="ADAPTER_TIMEOUT", details=details)


class EmbeddingError(RetrievalError):
    def __init__(self, message: str, *, code: str = "EMBEDDING_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class EmbeddingTimeoutError(EmbeddingError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="EMBEDDING_TIMEOUT", details=details)


class EmbeddingUnavailableError(EmbeddingError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="EMBEDDING_SERVICE_UNAVAILABLE", details=details)


class DimensionMismatchError(EmbeddingError):
    def __init__(self, *, expected: int, received: int) -> None:
        super().__init__(
            "Vector dimension mismatch",
            code="VECTOR_DIM_MISMATCH",
            details={"expected": expected, "received": received},
        )


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ListingCandidate:
    listing_id: str
    price: float
    rooms: int
    latitude: float
    longitude: float
    address: str
    district: str
    amenities: FrozenSet[str] = frozenset()
    media_quality: Optional[float] = None
    completeness: Optional[float] = None
    favorites: int = 0
    messages: int = 0
    views: int = 0
    owner_verified: bool = False
    title: str = ""
    description: str = ""
    suggested_price: Optional[float] = None
    district_average_price: Optional[float] = None
    commute_minutes: Mapping[str, float] = field(default_factory=dict)
    registration_possible: Optional[bool] = None
    created_at: Optional[datetime] = None

    @property
    def engagement_count(self) -> int:
        return self.favorites + self.messages

    def has_amenity(self, name: str) -> bool:
        wanted = normalize_amenity(name)
        return any(normalize_amenity(item) == wanted for item in self.amenities)

    def commute_to(self, destination: Optional[str]) -> Optional[float]:
        if not self.commute_minutes:
            return None
        if destination is None:
            return min(self.commute_minutes.values())
        return self.commute_minutes.get(destination)


@dataclass(frozen=True)
class SearchFilters:
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    rooms: Optional[int] = None
    amenities: FrozenSet[str] = frozenset()
    district: Optional[str] = None
    center: Optional[GeoPoint] = None
    radius_m: Optional[float] = None
    university: Optional[str] = None
    max_commute_minutes: Optional[float] = None
    sort: SortOption = SortOption.relevance
    limit: int = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 1 or self.limit > 100:
            raise ValueError("limit must be between 1 and 100")
        if self.offset < 0:
            raise ValueError("offset must be non-negative")
        if self.budget_min is not None and self.budget_max is not None and self.budget_min > self.budget_max:
            raise ValueError("budget_min must not exceed budget_max")
        if self.radius_m is not None and self.radius_m <= 0:
            raise ValueError("radius_m must be positive")


@dataclass(frozen=True)
class RetrievalResult:
    candidate: ListingCandidate
    origin: Origin
    raw_relevance: float
    distance_m: Optional[float] = None


def normalize_amenity(name: str) -> str:
    return " ".join(name.strip().lower().replace("_", " ").replace("-", " ").split())


@dataclass(frozen=True)
class MergedCandidate:
    candidate: ListingCandidate
    origin: Optional[Origin] = None
    origins: Tuple[Origin, ...] = ()
    relevance: Optional[float] = None
    distance_m: Optional[float] = None

    @property
    def listing_id(self) -> str:
        return self.candidate.listing_id
