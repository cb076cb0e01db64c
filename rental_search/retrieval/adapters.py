from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from rental_search.cache.keys import normalize_text_key
from rental_search.cache.lru import TTLCache
from rental_search.common.enums import Origin
from rental_search.retrieval.embeddings import Embedder, VectorIndex, ensure_dimension
from rental_search.retrieval.models import (
    ListingCandidate,
    ListingStoreError,
    RetrievalResult,
    SearchFilters,
    normalize_amenity,
)
from rental_search.retrieval.repository import ListingStore
from rental_search.retrieval.utils import haversine_m, tokenize


logger = logging.getLogger(__name__)


class RetrievalAdapter(Protocol):
    origin: Origin

    def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        *,
        limit: int,
        timeout_s: Optional[float] = None,
    ) -> List[RetrievalResult]: ...


def _distance(candidate: ListingCandidate, filters: SearchFilters) -> Optional[float]:
    if filters.center is None:
        return None
    return round(
        haversine_m(filters.center.latitude, filters.center.longitude, candidate.latitude, candidate.longitude),
        1,
    )


def _call_store(operation, *args, **kwargs):
    try:
        return operation(*args, **kwargs)
    except ListingStoreError:
        raise
    except Exception as exc:
        raise ListingStoreError("Listing store query failed", details={"error": exc.__class__.__name__}) from exc


class StructuredAdapter:
    origin = Origin.structured

    def __init__(self, store: ListingStore) -> None:
        self._store = store

    def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        *,
        limit: int,
        timeout_s: Optional[float] = None,
    ) -> List[RetrievalResult]:
        rows = _call_store(self._store.query, filters)
        results = [
            RetrievalResult(
                candidate=row,
                origin=self.origin,
                raw_relevance=self._fit(row, filters),
                distance_m=_distance(row, filters),
            )
            for row in rows
        ]
        results.sort(key=lambda item: (-item.raw_relevance, item.candidate.listing_id))
        return results[:limit]

    def _fit(self, candidate: ListingCandidate, filters: SearchFilters) -> float:
        completeness = candidate.completeness if candidate.completeness is not None else 0.5
        media = candidate.media_quality if candidate.media_quality is not None else 0.5
        fit = completeness * 0.6 + media * 0.4
        if filters.amenities:
            available = {normalize_amenity(item) for item in candidate.amenities}
            extra = len(available - {normalize_amenity(item) for item in filters.amenities})
            fit += min(extra, 5) * 0.02
        if filters.center is not None and filters.radius_m:
            distance = _distance(candidate, filters) or 0.0
            fit += max(0.0, 1.0 - distance / filters.radius_m) * 0.5
        return round(fit, 6)


class SemanticAdapter:
    origin = Origin.semantic

    def __init__(
        self,
        *,
        embedder: Embedder,
        index: VectorIndex,
        store: ListingStore,
        cache: Optional[TTLCache] = None,
        min_similarity: float = 0.0,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._store = store
        self._cache = cache
        self._min_similarity = min_similarity

    @property
    def cache(self) -> Optional[TTLCache]:
        return self._cache

    def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        *,
        limit: int,
        timeout_s: Optional[float] = None,
    ) -> List[RetrievalResult]:
        text = normalize_text_key(query)
        if not text:
            return []
        vector = self._embed(text, timeout_s=timeout_s)
        ensure_dimension(vector, self._index.dimension)
        hits = [hit for hit in self._index.nearest(vector, limit=limit) if hit[1] > self._min_similarity]
        similarity = dict(hits)
        rows = _call_store(self._store.get_many, [listing_id for listing_id, _ in hits])
        results = [
            RetrievalResult(
                candidate=row,
                origin=self.origin,
                raw_relevance=similarity[row.listing_id],
                distance_m=_distance(row, filters),
            )
            for row in rows
        ]
        results.sort(key=lambda item: (-item.raw_relevance, item.candidate.listing_id))
        return results

    def _embed(self, text: str, *, timeout_s: Optional[float]) -> List[float]:
        if self._cache is not None:
            cached = self._cache.get(text)
            if cached is not None:
                logger.debug("embedding cache hit", extra={"query_length": len(text)})
                return cached
        vector = self._embedder.embed(text, timeout_s=timeout_s)
        if self._cache is not None:
            self._cache.set(text, vector)
        return vector


class KeywordAdapter:
    origin = Origin.keyword

    def __init__(self, store: ListingStore) -> None:
        self._store = store

    def retrieve(
        self,
        query: str,
        filters: SearchFilters,
        *,
        limit: int,
        timeout_s: Optional[float] = None,
        as_fallback: bool = False,
    ) -> List[RetrievalResult]:
        tokens = tokenize(query)
        if not tokens:
            return []
        hits = _call_store(self._store.text_search, tokens, limit=limit)
        scores = dict(hits)
        rows = _call_store(self._store.get_many, [listing_id for listing_id, _ in hits])
        origin = Origin.fallback if as_fallback else self.origin
        results = [
            RetrievalResult(
                candidate=row,
                origin=origin,
                raw_relevance=scores[row.listing_id],
                distance_m=_distance(row, filters),
            )
            for row in rows
        ]
        results.sort(key=lambda item: (-item.raw_relevance, item.candidate.listing_id))
        return results
