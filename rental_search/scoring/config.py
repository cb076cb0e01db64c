from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from rental_search.cache.lru import TTLCache
from rental_search.common.clock import Clock
from rental_search.common.http import JsonHttpTransport
from rental_search.scoring.breaker import CircuitBreaker
from rental_search.scoring.scorer import AIScorer, HttpAIScorer
from rental_search.scoring.service import BatchScoringService, BatchSettings


@dataclass(frozen=True)
class ScoringConfig:
    batch_size: int = 10
    max_concurrent_batches: int = 2
    item_timeout_s: float = 8.0
    cache_ttl_s: float = 3600.0
    cache_max_entries: int = 1000
    failure_threshold: int = 5
    cooldown_s: float = 60.0
    scorer_url: str = "http://127.0.0.1:8500"


def load_scoring_config() -> ScoringConfig:
    return ScoringConfig(
        batch_size=int(os.getenv("AI_SCORING_BATCH_SIZE", "10")),
        max_concurrent_batches=int(os.getenv("AI_SCORING_MAX_CONCURRENT_BATCHES", "2")),
        item_timeout_s=float(os.getenv("AI_SCORING_ITEM_TIMEOUT_S", "8")),
        cache_ttl_s=float(os.getenv("AI_SCORING_CACHE_TTL_S", "3600")),
        cache_max_entries=int(os.getenv("AI_SCORING_CACHE_MAX_ENTRIES", "1000")),
        failure_threshold=int(os.getenv("AI_SCORING_FAILURE_THRESHOLD", "5")),
        cooldown_s=float(os.getenv("AI_SCORING_COOLDOWN_S", "60")),
        scorer_url=os.getenv("AI_SCORER_URL", ScoringConfig.scorer_url),
    )


def build_scoring_service(
    *,
    config: Optional[ScoringConfig] = None,
    scorer: Optional[AIScorer] = None,
    clock: Optional[Clock] = None,
) -> BatchScoringService:
    cfg = config or load_scoring_config()
    clock = clock or Clock()
    if scorer is None:
        scorer = HttpAIScorer(base_url=cfg.scorer_url, transport=JsonHttpTransport(timeout_s=cfg.item_timeout_s))
    return BatchScoringService(
        scorer=scorer,
        settings=BatchSettings(
            batch_size=cfg.batch_size,
            max_concurrent_batches=cfg.max_concurrent_batches,
            item_timeout_s=cfg.item_timeout_s,
            cache_ttl_s=cfg.cache_ttl_s,
        ),
        cache=TTLCache(max_entries=cfg.cache_max_entries, default_ttl_s=cfg.cache_ttl_s, clock=clock),
        breaker=CircuitBreaker(failure_threshold=cfg.failure_threshold, cooldown_s=cfg.cooldown_s, clock=clock),
        clock=clock,
    )
