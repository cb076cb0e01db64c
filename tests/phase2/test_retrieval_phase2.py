from __future__ import annotations

import pytest

from rental_search.common.enums import Origin
from rental_search.common.errors import TransportError, TransportTimeoutError, TransportUnavailableError
from rental_search.retrieval.adapters import KeywordAdapter, SemanticAdapter, StructuredAdapter
from rental_search.retrieval.embeddings import HttpEmbedder
from rental_search.retrieval.models import (
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingTimeoutError,
    EmbeddingUnavailableError,
    GeoPoint,
    ListingStoreError,
    SearchFilters,
)

from search_support import FailingStore, StubEmbedder


class FakeTransport:
    def __init__(self, response=None, error=None):
        self._response = response or {}
        self._error = error
        self.calls = []

    def request(self, *, method, url, params=None, json_body=None, timeout_s=None):
        self.calls.append({"method": method, "url": url, "json_body": json_body, "timeout_s": timeout_s})
        if self._error is not None:
            raise self._error
        return self._response


def _ids(results):
    return [item.candidate.listing_id for item in results]


def test_structured_adapter_applies_filter_predicates(store):
    adapter = StructuredAdapter(store)

    by_budget = adapter.retrieve("", SearchFilters(budget_max=1500), limit=50)
    assert sorted(_ids(by_budget)) == ["l1", "l2", "l3"]

    by_amenity = adapter.retrieve("", SearchFilters(amenities=frozenset({"Elevator"})), limit=50)
    assert sorted(_ids(by_amenity)) == ["l2", "l4"]

    by_district = adapter.retrieve("", SearchFilters(district="mitte", rooms=2), limit=50)
    assert _ids(by_district) == ["l4"]

    nearby = adapter.retrieve(
        "",
        SearchFilters(center=GeoPoint(latitude=52.52, longitude=13.405), radius_m=1000),
        limit=50,
    )
    assert sorted(_ids(nearby)) == ["l1", "l4"]
    assert all(item.origin == Origin.structured for item in nearby)
    assert all(item.distance_m is not None for item in nearby)
    closest = next(item for item in nearby if item.candidate.listing_id == "l1")
    assert closest.distance_m == pytest.approx(0.0, abs=1.0)


def test_structured_adapter_relevance_prefers_complete_listings(store):
    results = StructuredAdapter(store).retrieve("", SearchFilters(), limit=50)
    assert _ids(results)[0] == "l4"
    assert _ids(results)[-1] == "l3"


def test_structured_adapter_wraps_store_failures():
    adapter = StructuredAdapter(FailingStore(RuntimeError("db down")))
    with pytest.raises(ListingStoreError) as exc_info:
        adapter.retrieve("", SearchFilters(), limit=10)
    assert exc_info.value.code == "LISTING_STORE_ERROR"


def test_keyword_adapter_weights_title_over_body(store):
    adapter = KeywordAdapter(store)
    results = adapter.retrieve("campus", SearchFilters(), limit=10)
    assert _ids(results) == ["l1", "l3"]
    assert results[0].raw_relevance == 2.0
    assert results[1].raw_relevance == 1.0
    assert all(item.origin == Origin.keyword for item in results)

    fallback = adapter.retrieve("campus", SearchFilters(), limit=10, as_fallback=True)
    assert all(item.origin == Origin.fallback for item in fallback)
    assert adapter.retrieve("   ", SearchFilters(), limit=10) == []


def test_semantic_adapter_ranks_by_similarity_and_caches_embeddings(store, index, embedder, embedding_cache):
    adapter = SemanticAdapter(embedder=embedder, index=index, store=store, cache=embedding_cache)

    first = adapter.retrieve("Quiet   Flat", SearchFilters(), limit=10)
    second = adapter.retrieve("quiet flat", SearchFilters(), limit=10)

    assert _ids(first) == ["l2", "l3"]
    assert first[0].raw_relevance == pytest.approx(1.0)
    assert _ids(second) == _ids(first)
    assert embedder.calls == 1
    assert embedding_cache.stats().hits == 1


def test_semantic_adapter_rejects_wrong_dimension(store, index):
    adapter = SemanticAdapter(embedder=StubEmbedder({"loft": [1.0, 0.0, 0.0]}), index=index, store=store)
    with pytest.raises(DimensionMismatchError) as exc_info:
        adapter.retrieve("loft", SearchFilters(), limit=10)
    assert exc_info.value.details == {"expected": 4, "received": 3}


def test_semantic_adapter_propagates_embedding_errors(store, index):
    adapter = SemanticAdapter(
        embedder=StubEmbedder(error=EmbeddingUnavailableError("down")),
        index=index,
        store=store,
    )
    with pytest.raises(EmbeddingUnavailableError):
        adapter.retrieve("studio", SearchFilters(), limit=10)


def test_http_embedder_normalizes_vector():
    transport = FakeTransport(response={"embedding": [3.0, 4.0, 0.0, 0.0]})
    embedder = HttpEmbedder(base_url="http://127.0.0.1:8600/", dimension=4, transport=transport)

    vector = embedder.embed("studio", timeout_s=0.5)

    assert vector == pytest.approx([0.6, 0.8, 0.0, 0.0])
    assert transport.calls[0]["url"] == "http://127.0.0.1:8600/embed"
    assert transport.calls[0]["timeout_s"] == 0.5


@pytest.mark.parametrize(
    "error, expected",
    [
        (TransportTimeoutError("slow"), EmbeddingTimeoutError),
        (TransportUnavailableError("refused"), EmbeddingUnavailableError),
        (TransportError("boom"), EmbeddingError),
    ],
)
def test_http_embedder_maps_transport_errors(error, expected):
    embedder = HttpEmbedder(base_url="http://127.0.0.1:8600", dimension=4, transport=FakeTransport(error=error))
    with pytest.raises(expected):
        embedder.embed("studio")


def test_http_embedder_validates_payload():
    missing = HttpEmbedder(base_url="http://127.0.0.1:8600", dimension=4, transport=FakeTransport(response={}))
    with pytest.raises(EmbeddingError) as exc_info:
        missing.embed("studio")
    assert exc_info.value.code == "INVALID_EMBEDDING"

    short = HttpEmbedder(
        base_url="http://127.0.0.1:8600",
        dimension=4,
        transport=FakeTransport(response={"values": [1.0, 0.0]}),
    )
    with pytest.raises(DimensionMismatchError):
        short.embed("studio")


def test_search_filters_validate_bounds():
    with pytest.raises(ValueError):
        SearchFilters(limit=0)
    with pytest.raises(ValueError):
        SearchFilters(limit=101)
    with pytest.raises(ValueError):
        SearchFilters(offset=-1)
    with pytest.raises(ValueError):
        SearchFilters(budget_min=2000, budget_max=1000)
