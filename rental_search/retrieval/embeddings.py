from __future__ import annotations

import math
import threading
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from rental_search.common.errors import TransportError, TransportTimeoutError, TransportUnavailableError
from rental_search.common.http import JsonHttpTransport
from rental_search.retrieval.models import (
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingTimeoutError,
    EmbeddingUnavailableError,
)
from rental_search.retrieval.utils import cosine_similarity


DEFAULT_DIMENSION = 768


class Embedder(Protocol):
    dimension: int

    def embed(self, text: str, *, timeout_s: Optional[float] = None) -> List[float]: ...


class VectorIndex(Protocol):
    dimension: int

    def nearest(self, vector: Sequence[float], *, limit: int) -> List[Tuple[str, float]]: ...


def normalize_vector(vector: Sequence[float]) -> List[float]:
    magnitude = math.sqrt(sum(value * value for value in vector))
    if magnitude == 0:
        return list(vector)
    return [value / magnitude for value in vector]


def ensure_dimension(vector: Sequence[float], dimension: int) -> None:
    if len(vector) != dimension:
        raise DimensionMismatchError(expected=dimension, received=len(vector))


class InMemoryVectorIndex:
    def __init__(self, *, dimension: int = DEFAULT_DIMENSION) -> None:
        self.dimension = dimension
        self._vectors: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def upsert(self, listing_id: str, vector: Sequence[float]) -> None:
        ensure_dimension(vector, self.dimension)
        with self._lock:
            self._vectors[listing_id] = normalize_vector(vector)

    def remove(self, listing_id: str) -> None:
        with self._lock:
            self._vectors.pop(listing_id, None)

    def nearest(self, vector: Sequence[float], *, limit: int) -> List[Tuple[str, float]]:
        ensure_dimension(vector, self.dimension)
        with self._lock:
            items = list(self._vectors.items())
        scores = [(listing_id, cosine_similarity(vector, stored)) for listing_id, stored in items]
        ordered = sorted(scores, key=lambda item: (-item[1], item[0]))
        return ordered[:limit]


class HttpEmbedder:
    def __init__(
        self,
        *,
        base_url: str,
        model: str = "text-embedding-004",
        dimension: int = DEFAULT_DIMENSION,
        transport: Optional[JsonHttpTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self.dimension = dimension
        self._transport = transport or JsonHttpTransport()

    def embed(self, text: str, *, timeout_s: Optional[float] = None) -> List[float]:
        try:
            response = self._transport.request(
                method="POST",
                url=f"{self._base_url}/embed",
                json_body={"model": self._model, "input": text},
                timeout_s=timeout_s,
            )
        except TransportTimeoutError as exc:
            raise EmbeddingTimeoutError("Embedding request timed out", details=exc.details) from exc
        except TransportUnavailableError as exc:
            raise EmbeddingUnavailableError("Embedding service unreachable", details=exc.details) from exc
        except TransportError as exc:
            raise EmbeddingError("Embedding request failed", details=exc.details) from exc
        values = response.get("embedding") or response.get("values")
        if not isinstance(values, list):
            raise EmbeddingError("Embedding response missing vector", code="INVALID_EMBEDDING")
        try:
            vector = [float(value) for value in values]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError("Embedding response has non-numeric values", code="INVALID_EMBEDDING") from exc
        ensure_dimension(vector, self.dimension)
        return normalize_vector(vector)
