from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from rental_search.retrieval.models import ListingCandidate, SearchFilters, normalize_amenity
from rental_search.retrieval.utils import haversine_m, tokenize


class ListingStore(Protocol):
    def query(self, filters: SearchFilters) -> List[ListingCandidate]: ...

    def get(self, listing_id: str) -> Optional[ListingCandidate]: ...

    def get_many(self, listing_ids: Iterable[str]) -> List[ListingCandidate]: ...

    def text_search(self, tokens: List[str], *, limit: int) -> List[Tuple[str, float]]: ...


class InMemoryListingStore:
    def __init__(
        self,
        listings: Iterable[ListingCandidate] = (),
        *,
        title_weight: float = 2.0,
        body_weight: float = 1.0,
    ) -> None:
        self._listings: Dict[str, ListingCandidate] = {}
        self._lock = threading.Lock()
        self._title_weight = title_weight
        self._body_weight = body_weight
        for listing in listings:
            self.add(listing)

    def add(self, listing: ListingCandidate) -> None:
        with self._lock:
            self._listings[listing.listing_id] = listing

    def get(self, listing_id: str) -> Optional[ListingCandidate]:
        with self._lock:
            return self._listings.get(listing_id)

    def get_many(self, listing_ids: Iterable[str]) -> List[ListingCandidate]:
        with self._lock:
            return [self._listings[listing_id] for listing_id in listing_ids if listing_id in self._listings]

    def list(self) -> List[ListingCandidate]:
        with self._lock:
            return sorted(self._listings.values(), key=lambda item: item.listing_id)

    def query(self, filters: SearchFilters) -> List[ListingCandidate]:
        return [listing for listing in self.list() if matches_filters(listing, filters)]

    def text_search(self, tokens: List[str], *, limit: int) -> List[Tuple[str, float]]:
        if not tokens:
            return []
        scores: Dict[str, float] = {}
        for listing in self.list():
            title_tokens = tokenize(listing.title)
            body_tokens = tokenize(" ".join([listing.description, listing.address, listing.district]))
            title_count = sum(title_tokens.count(token) for token in tokens)
            body_count = sum(body_tokens.count(token) for token in tokens)
            score = title_count * self._title_weight + body_count * self._body_weight
            if score > 0:
                scores[listing.listing_id] = score
        ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return ordered[:limit]


def matches_filters(listing: ListingCandidate, filters: SearchFilters) -> bool:
    if filters.budget_min is not None and listing.price < filters.budget_min:
        return False
    if filters.budget_max is not None and listing.price > filters.budget_max:
        return False
    if filters.rooms is not None and listing.rooms < filters.rooms:
        return False
    if filters.district and filters.district.strip().lower() not in listing.district.lower():
        return False
    if filters.amenities:
        available = {normalize_amenity(item) for item in listing.amenities}
        if not all(normalize_amenity(item) in available for item in filters.amenities):
            return False
    if filters.center is not None and filters.radius_m is not None:
        distance = haversine_m(
            filters.center.latitude,
            filters.center.longitude,
            listing.latitude,
            listing.longitude,
        )
        if distance > filters.radius_m:
            return False
    if filters.max_commute_minutes is not None:
        minutes = listing.commute_to(filters.university)
        if minutes is not None and minutes > filters.max_commute_minutes:
            return False
    return True
