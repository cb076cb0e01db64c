from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from rental_search.cache.keys import stable_key
from rental_search.cache.lru import CacheStats, TTLCache
from rental_search.common.clock import Clock, Deadline
from rental_search.common.enums import ScoringStatus
from rental_search.common.observability import ObservabilityRecorder
from rental_search.retrieval.models import ListingCandidate
from rental_search.scoring.breaker import CircuitBreaker
from rental_search.scoring.models import (
    AIScore,
    BatchScoringResult,
    CircuitBreakerState,
    ScorerError,
    ScoringJob,
    UserProfile,
)
from rental_search.scoring.scorer import AIScorer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchSettings:
    batch_size: int = 10
    max_concurrent_batches: int = 2
    item_timeout_s: float = 8.0
    cache_ttl_s: float = 3600.0


class BatchScoringService:
    def __init__(
        self,
        *,
        scorer: AIScorer,
        settings: Optional[BatchSettings] = None,
        cache: Optional[TTLCache] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Optional[Clock] = None,
        observability: Optional[ObservabilityRecorder] = None,
    ) -> None:
        self._scorer = scorer
        self._settings = settings or BatchSettings()
        if self._settings.batch_size < 1 or self._settings.max_concurrent_batches < 1:
            raise ValueError("batch_size and max_concurrent_batches must be positive")
        self._clock = clock or Clock()
        self._cache = cache or TTLCache(max_entries=1000, default_ttl_s=self._settings.cache_ttl_s, clock=self._clock)
        self._breaker = breaker or CircuitBreaker(clock=self._clock)
        self._observability = observability or ObservabilityRecorder()
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.batch_size * self._settings.max_concurrent_batches,
            thread_name_prefix="ai-scoring",
        )

    @property
    def observability(self) -> ObservabilityRecorder:
        return self._observability

    def score_batch(
        self,
        candidates: Sequence[ListingCandidate],
        profile: UserProfile,
        deadline: Optional[Deadline] = None,
    ) -> BatchScoringResult:
        started = time.perf_counter()
        deadline = deadline or Deadline.none()
        jobs: List[Optional[ScoringJob]] = [None] * len(candidates)
        size = self._settings.batch_size
        batches = [list(range(start, min(start + size, len(candidates)))) for start in range(0, len(candidates), size)]
        wave_width = self._settings.max_concurrent_batches
        for wave_start in range(0, len(batches), wave_width):
            indices = [index for batch in batches[wave_start : wave_start + wave_width] for index in batch]
            if deadline.expired():
                for index in indices:
                    jobs[index] = self._failed(candidates[index], "DEADLINE_EXCEEDED")
                continue
            self._run_wave(indices, candidates, profile, deadline, jobs)

        results = [job for job in jobs if job is not None]
        successful = sum(1 for job in results if job.success)
        total_ms = round((time.perf_counter() - started) * 1000, 2)
        breaker_open = self._breaker.is_open
        self._observability.record(
            "batch_scored",
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            cached=sum(1 for job in results if job.status == ScoringStatus.cached),
            skipped=sum(1 for job in results if job.status == ScoringStatus.skipped),
            total_ms=total_ms,
            circuit_breaker_open=breaker_open,
        )
        return BatchScoringResult(
            results=results,
            successful=successful,
            failed=len(results) - successful,
            total_ms=total_ms,
            circuit_breaker_open=breaker_open,
        )

    def circuit_breaker_status(self) -> CircuitBreakerState:
        return self._breaker.snapshot()

    def reset_circuit_breaker(self) -> None:
        self._breaker.reset()
        self._observability.record("circuit_breaker_reset")

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run_wave(
        self,
        indices: List[int],
        candidates: Sequence[ListingCandidate],
        profile: UserProfile,
        deadline: Deadline,
        jobs: List[Optional[ScoringJob]],
    ) -> None:
        # Calls in flight never exceed the breaker's remaining failure headroom, so
        # once it opens the rest of the wave short-circuits instead of reaching the scorer.
        timeout_s = self._settings.item_timeout_s
        queue: Deque[Tuple[int, str]] = deque()
        for index in indices:
            candidate = candidates[index]
            key = stable_key("ai_score", candidate, profile)
            cached = self._cache_get(key)
            if cached is not None:
                jobs[index] = self._job(candidate, cached, ScoringStatus.cached)
                continue
            queue.append((index, key))

        pending: Dict[Future, Tuple[int, str, float]] = {}
        while queue or pending:
            while queue and len(pending) < self._breaker.headroom():
                index, key = queue.popleft()
                candidate = candidates[index]
                if deadline.expired():
                    jobs[index] = self._failed(candidate, "DEADLINE_EXCEEDED")
                    continue
                if not self._breaker.allow_request():
                    jobs[index] = self._skipped(candidate)
                    continue
                future = self._executor.submit(
                    self._scorer.score,
                    candidate,
                    profile,
                    timeout_s=deadline.remaining(timeout_s),
                )
                pending[future] = (index, key, time.perf_counter())
            if not pending:
                break

            now = time.perf_counter()
            budget = max(0.0, min(started + timeout_s for _, _, started in pending.values()) - now)
            done, _ = wait(list(pending), timeout=deadline.remaining(budget), return_when=FIRST_COMPLETED)
            for future in done:
                index, key, _ = pending.pop(future)
                jobs[index] = self._settle(future, candidates[index], key)

            now = time.perf_counter()
            for future, (index, _, started) in list(pending.items()):
                if now - started < timeout_s and not deadline.expired():
                    continue
                del pending[future]
                future.cancel()
                self._breaker.record_failure()
                jobs[index] = self._failed(candidates[index], "SCORER_TIMEOUT")

    def _settle(self, future: Future, candidate: ListingCandidate, key: str) -> ScoringJob:
        try:
            score = future.result()
        except ScorerError as exc:
            self._breaker.record_failure()
            return self._failed(candidate, exc.code)
        except Exception:
            logger.warning("AI scorer raised for listing %s", candidate.listing_id, exc_info=True)
            self._breaker.record_failure()
            return self._failed(candidate, "SCORER_ERROR")
        self._breaker.record_success()
        self._cache_set(key, score)
        return self._job(candidate, score, ScoringStatus.scored)

    def _skipped(self, candidate: ListingCandidate) -> ScoringJob:
        return ScoringJob(
            listing_id=candidate.listing_id,
            ai_score=None,
            success=False,
            status=ScoringStatus.skipped,
            error="CIRCUIT_OPEN",
        )

    def _job(self, candidate: ListingCandidate, score: AIScore, status: ScoringStatus) -> ScoringJob:
        return ScoringJob(
            listing_id=candidate.listing_id,
            ai_score=score.score,
            success=True,
            status=status,
            reasons=list(score.reasons),
            scored_at=self._clock.now(),
        )

    def _failed(self, candidate: ListingCandidate, error: str) -> ScoringJob:
        return ScoringJob(
            listing_id=candidate.listing_id,
            ai_score=None,
            success=False,
            status=ScoringStatus.failed,
            error=error,
            scored_at=self._clock.now(),
        )

    def _cache_get(self, key: str) -> Optional[AIScore]:
        try:
            return self._cache.get(key)
        except Exception:
            logger.warning("AI score cache read failed; treating as miss", exc_info=True)
            return None

    def _cache_set(self, key: str, score: AIScore) -> None:
        try:
            self._cache.set(key, score, ttl_s=self._settings.cache_ttl_s)
        except Exception:
            logger.warning("AI score cache write failed", exc_info=True)
