from __future__ import annotations

from datetime import datetime, timezone

from fastapi.testclient import TestClient
import pytest

from rental_search.common.clock import FrozenClock
from rental_search.retrieval.embeddings import InMemoryVectorIndex
from rental_search.retrieval.models import ListingCandidate, ListingStoreError
from rental_search.retrieval.repository import InMemoryListingStore
from rental_search.search import app as search_app
from rental_search.search.config import SearchConfig, build_search_service, load_search_config
from rental_search.telemetry.sink import InMemoryTelemetrySink, TelemetryEmitter


FIXED_TIME = datetime(2026, 1, 28, tzinfo=timezone.utc)


class StubEmbedder:
    dimension = 3

    def embed(self, text, *, timeout_s=None):
        return [1.0, 0.0, 0.0] if "garden" in text else [0.0, 1.0, 0.0]


class BrokenStore(InMemoryListingStore):
    def query(self, filters):
        raise ListingStoreError("replica lag")

    def get_many(self, listing_ids):
        raise ListingStoreError("replica lag")

    def text_search(self, tokens, *, limit):
        raise ListingStoreError("replica lag")


def _listings():
    return [
        ListingCandidate(
            listing_id="near",
            title="Garden flat with balcony",
            price=950,
            rooms=2,
            latitude=52.5200,
            longitude=13.4050,
            address="Torstrasse 1",
            district="Mitte",
            amenities=frozenset({"balcony", "garden"}),
            owner_verified=True,
        ),
        ListingCandidate(
            listing_id="mid",
            title="Balcony room",
            price=700,
            rooms=1,
            latitude=52.5290,
            longitude=13.4050,
            address="Invalidenstrasse 3",
            district="Mitte",
            amenities=frozenset({"balcony"}),
        ),
        ListingCandidate(
            listing_id="far",
            title="Penthouse",
            price=2600,
            rooms=4,
            latitude=52.4500,
            longitude=13.3000,
            address="Steglitzer Damm 9",
            district="Steglitz",
        ),
    ]


@pytest.fixture
def telemetry_sink():
    return InMemoryTelemetrySink()


@pytest.fixture
def client(monkeypatch, telemetry_sink):
    index = InMemoryVectorIndex(dimension=3)
    index.upsert("near", [1.0, 0.0, 0.0])
    index.upsert("mid", [0.0, 1.0, 0.0])
    service = build_search_service(
        config=SearchConfig(embedding_dimension=3, adapter_timeout_s=1.0),
        store=InMemoryListingStore(_listings()),
        embedder=StubEmbedder(),
        index=index,
        telemetry=TelemetryEmitter(telemetry_sink),
        clock=FrozenClock(FIXED_TIME),
    )
    monkeypatch.setattr(search_app, "_service", service)
    yield TestClient(search_app.app)
    service.close()


def test_search_returns_ranked_results_with_diagnostics(client, telemetry_sink):
    response = client.post(
        "/search",
        json={"schema_version": "v1", "query": "garden", "filters": {"budget_max": 1500}, "limit": 10},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    data = body["data"]
    assert data["method"] == "hybrid"
    assert data["fallback"] is False
    assert data["count"] == len(data["results"])
    assert {item["listing_id"] for item in data["results"]} >= {"near", "mid"}
    top = data["results"][0]
    assert top["listing_id"] == "near"
    assert top["rank"] == 1
    assert top["origins"] == ["structured", "semantic"]
    assert set(top["listing"]) == {"title", "price", "rooms", "district", "address"}
    assert data["diagnostics"]["code"] == "OK"
    assert data["diagnostics"]["adapters"] == {"structured": "ok", "semantic": "ok"}
    assert len(telemetry_sink.records("search_performance")) == 1


def test_search_geo_filters_and_distance_sort(client):
    response = client.post(
        "/search",
        json={
            "schema_version": "v1",
            "filters": {"latitude": 52.52, "longitude": 13.405, "radius_m": 2000, "sort": "distance"},
        },
    )

    assert response.status_code == 200
    results = response.json()["data"]["results"]
    assert [item["listing_id"] for item in results] == ["near", "mid"]
    assert results[0]["distance_m"] < results[1]["distance_m"]


def test_search_rejects_bad_requests(client):
    wrong_version = client.post("/search", json={"schema_version": "v2", "query": "garden"})
    assert wrong_version.status_code == 400
    assert wrong_version.json()["error"]["code"] == "VALIDATION_ERROR"

    inverted_budget = client.post(
        "/search",
        json={"schema_version": "v1", "filters": {"budget_min": 2000, "budget_max": 1000}},
    )
    assert inverted_budget.status_code == 400
    assert "budget_min" in inverted_budget.json()["error"]["message"]

    assert client.post("/search", json={"schema_version": "v1", "unknown": True}).status_code == 422
    assert client.post("/search", json={"schema_version": "v1", "limit": 500}).status_code == 422
    assert client.post("/search", json={"schema_version": "v1", "query": "x" * 501}).status_code == 422


def test_search_returns_503_when_listing_store_is_down(monkeypatch):
    service = build_search_service(
        config=SearchConfig(semantic_enabled=False),
        store=BrokenStore(),
        telemetry=TelemetryEmitter(InMemoryTelemetrySink()),
    )
    monkeypatch.setattr(search_app, "_service", service)
    try:
        response = TestClient(search_app.app).post("/search", json={"schema_version": "v1", "query": "loft"})
    finally:
        service.close()

    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "SEARCH_UNAVAILABLE"
    assert error["details"]["adapters"] == {"structured": "LISTING_STORE_ERROR", "keyword": "LISTING_STORE_ERROR"}


def test_metrics_endpoint_reports_latency_and_caches(client):
    client.post("/search", json={"schema_version": "v1", "query": "garden"})
    client.post("/search", json={"schema_version": "v1", "query": "garden"})

    response = client.get("/search/metrics")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["latency"]["count"] == 2
    assert data["latency"]["budget_ms"] == 250.0
    assert data["embedding_cache"]["hits"] == 1
    assert data["telemetry"] == {"emitted": 2, "dropped": 0}


def test_search_config_reads_environment(monkeypatch):
    monkeypatch.setenv("SEARCH_ADAPTER_TIMEOUT_S", "0.5")
    monkeypatch.setenv("SEARCH_SEMANTIC_ENABLED", "false")
    monkeypatch.setenv("RANKING_EXPERIMENT_ID", "rank-weights")
    monkeypatch.setenv("SEARCH_LATENCY_BUDGET_MS", "300")

    cfg = load_search_config()

    assert cfg.adapter_timeout_s == 0.5
    assert cfg.semantic_enabled is False
    assert cfg.ranking_experiment_id == "rank-weights"
    assert cfg.latency_budget_ms == 300.0
    assert cfg.embedding_url == SearchConfig.embedding_url
