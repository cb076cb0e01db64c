from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from rental_search.cache.lru import TTLCache
from rental_search.common.clock import Clock
from rental_search.common.http import JsonHttpTransport
from rental_search.experiments.repository import ExperimentRepository
from rental_search.experiments.service import ExperimentService
from rental_search.ranking.service import RankingEngine
from rental_search.retrieval.adapters import KeywordAdapter, SemanticAdapter, StructuredAdapter
from rental_search.retrieval.embeddings import DEFAULT_DIMENSION, Embedder, HttpEmbedder, InMemoryVectorIndex, VectorIndex
from rental_search.retrieval.repository import InMemoryListingStore, ListingStore
from rental_search.scoring.service import BatchScoringService
from rental_search.search.metrics import LatencyTracker
from rental_search.search.models import OrchestratorSettings
from rental_search.search.service import HybridSearchOrchestrator
from rental_search.telemetry.config import build_telemetry_emitter
from rental_search.telemetry.sink import TelemetryEmitter


@dataclass(frozen=True)
class SearchConfig:
    adapter_timeout_s: float = 2.0
    request_timeout_s: float = 5.0
    candidate_limit: int = 200
    max_workers: int = 8
    fallback_on_empty: bool = True
    semantic_enabled: bool = True
    embedding_url: str = "http://127.0.0.1:8600"
    embedding_model: str = "text-embedding-004"
    embedding_dimension: int = DEFAULT_DIMENSION
    embedding_cache_max_entries: int = 1000
    embedding_cache_ttl_s: float = 3600.0
    ranking_experiment_id: Optional[str] = None
    latency_budget_ms: float = 250.0
    latency_window: int = 1000


def load_search_config() -> SearchConfig:
    return SearchConfig(
        adapter_timeout_s=float(os.getenv("SEARCH_ADAPTER_TIMEOUT_S", "2")),
        request_timeout_s=float(os.getenv("SEARCH_REQUEST_TIMEOUT_S", "5")),
        candidate_limit=int(os.getenv("SEARCH_CANDIDATE_LIMIT", "200")),
        max_workers=int(os.getenv("SEARCH_MAX_WORKERS", "8")),
        fallback_on_empty=os.getenv("SEARCH_FALLBACK_ON_EMPTY", "true").lower() == "true",
        semantic_enabled=os.getenv("SEARCH_SEMANTIC_ENABLED", "true").lower() == "true",
        embedding_url=os.getenv("EMBEDDING_URL", SearchConfig.embedding_url),
        embedding_model=os.getenv("EMBEDDING_MODEL", SearchConfig.embedding_model),
        embedding_dimension=int(os.getenv("EMBEDDING_DIMENSION", str(DEFAULT_DIMENSION))),
        embedding_cache_max_entries=int(os.getenv("EMBEDDING_CACHE_MAX_ENTRIES", "1000")),
        embedding_cache_ttl_s=float(os.getenv("EMBEDDING_CACHE_TTL_S", "3600")),
        ranking_experiment_id=os.getenv("RANKING_EXPERIMENT_ID") or None,
        latency_budget_ms=float(os.getenv("SEARCH_LATENCY_BUDGET_MS", "250")),
        latency_window=int(os.getenv("SEARCH_LATENCY_WINDOW", "1000")),
    )


def build_search_service(
    *,
    config: Optional[SearchConfig] = None,
    store: Optional[ListingStore] = None,
    embedder: Optional[Embedder] = None,
    index: Optional[VectorIndex] = None,
    experiments: Optional[ExperimentService] = None,
    scoring: Optional[BatchScoringService] = None,
    telemetry: Optional[TelemetryEmitter] = None,
    clock: Optional[Clock] = None,
) -> HybridSearchOrchestrator:
    cfg = config or load_search_config()
    clock = clock or Clock()
    store = store or InMemoryListingStore()

    semantic = None
    if cfg.semantic_enabled:
        if embedder is None:
            embedder = HttpEmbedder(
                base_url=cfg.embedding_url,
                model=cfg.embedding_model,
                dimension=cfg.embedding_dimension,
                transport=JsonHttpTransport(timeout_s=cfg.adapter_timeout_s),
            )
        semantic = SemanticAdapter(
            embedder=embedder,
            index=index or InMemoryVectorIndex(dimension=cfg.embedding_dimension),
            store=store,
            cache=TTLCache(
                max_entries=cfg.embedding_cache_max_entries,
                default_ttl_s=cfg.embedding_cache_ttl_s,
                clock=clock,
            ),
        )

    if experiments is None and cfg.ranking_experiment_id:
        experiments = ExperimentService(ExperimentRepository(), clock=clock)
    if telemetry is None:
        telemetry = build_telemetry_emitter()

    return HybridSearchOrchestrator(
        structured=StructuredAdapter(store),
        semantic=semantic,
        keyword=KeywordAdapter(store),
        ranking=RankingEngine(),
        experiments=experiments,
        scoring=scoring,
        telemetry=telemetry,
        latency=LatencyTracker(window=cfg.latency_window, budget_ms=cfg.latency_budget_ms),
        settings=OrchestratorSettings(
            adapter_timeout_s=cfg.adapter_timeout_s,
            request_timeout_s=cfg.request_timeout_s,
            candidate_limit=cfg.candidate_limit,
            fallback_on_empty=cfg.fallback_on_empty,
            ranking_experiment_id=cfg.ranking_experiment_id,
            max_workers=cfg.max_workers,
        ),
        clock=clock,
    )
