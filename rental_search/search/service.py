from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rental_search.common.clock import Clock, Deadline
from rental_search.common.enums import ORIGIN_PRIORITY, Origin, SearchMethod, SortOption
from rental_search.common.observability import ObservabilityRecorder
from rental_search.experiments.models import ExperimentError
from rental_search.experiments.service import ExperimentService
from rental_search.ranking.models import (
    InvalidWeightsError,
    Personalization,
    RankedResult,
    WeightConfig,
)
from rental_search.ranking.service import RankingEngine, blend_personalization
from rental_search.retrieval.adapters import KeywordAdapter, SemanticAdapter, StructuredAdapter
from rental_search.retrieval.models import (
    AdapterTimeoutError,
    EmbeddingError,
    ListingStoreError,
    MergedCandidate,
    RetrievalError,
    RetrievalResult,
)
from rental_search.retrieval.utils import min_max_scale
from rental_search.scoring.models import UserProfile
from rental_search.scoring.service import BatchScoringService
from rental_search.search.metrics import LatencyTracker
from rental_search.search.models import (
    OrchestratorSettings,
    SearchDiagnostics,
    SearchRequest,
    SearchResponse,
    SearchUnavailableError,
    preferences_from_filters,
)
from rental_search.telemetry.models import SearchPerformanceEvent
from rental_search.telemetry.sink import TelemetryEmitter


logger = logging.getLogger(__name__)

EXPOSURE_EVENT = "ranking_exposure"


@dataclass(frozen=True)
class RankingVariant:
    weights: WeightConfig
    variant_id: Optional[str] = None
    experiment_id: Optional[str] = None
    personalization_weight: float = 0.0
    flags: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class _RetrievalOutcome:
    results: List[RetrievalResult]
    statuses: Dict[str, str]
    errors: Dict[str, str]
    failures: List[Exception]
    attempted: int
    fallback: bool
    embedding_ms: Optional[float] = None


class HybridSearchOrchestrator:
    def __init__(
        self,
        *,
        structured: StructuredAdapter,
        keyword: KeywordAdapter,
        ranking: RankingEngine,
        semantic: Optional[SemanticAdapter] = None,
        experiments: Optional[ExperimentService] = None,
        scoring: Optional[BatchScoringService] = None,
        telemetry: Optional[TelemetryEmitter] = None,
        latency: Optional[LatencyTracker] = None,
        settings: Optional[OrchestratorSettings] = None,
        observability: Optional[ObservabilityRecorder] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._structured = structured
        self._semantic = semantic
        self._keyword = keyword
        self._ranking = ranking
        self._experiments = experiments
        self._scoring = scoring
        self._telemetry = telemetry
        self._latency = latency or LatencyTracker()
        self._settings = settings or OrchestratorSettings()
        self._observability = observability or ObservabilityRecorder()
        self._clock = clock or Clock()
        self._executor = ThreadPoolExecutor(max_workers=self._settings.max_workers, thread_name_prefix="retrieval")

    @property
    def observability(self) -> ObservabilityRecorder:
        return self._observability

    @property
    def latency(self) -> LatencyTracker:
        return self._latency

    def search(self, request: SearchRequest, deadline: Optional[Deadline] = None) -> SearchResponse:
        started = time.perf_counter()
        deadline = deadline or Deadline(self._settings.request_timeout_s)
        filters = request.filters

        outcome = self._retrieve(request, deadline)
        if not outcome.results and outcome.failures and len(outcome.failures) >= outcome.attempted:
            if _store_unavailable(outcome.failures):
                self._observability.record("search_unavailable", errors=outcome.errors)
                raise SearchUnavailableError("Listing store unavailable", details={"adapters": outcome.errors})
            logger.warning("all retrieval adapters failed: %s", outcome.errors)

        merged = merge_results(outcome.results)
        variant = self._resolve_variant(request)
        preferences = request.preferences or preferences_from_filters(filters)
        ranked = self._ranking.rank(merged, preferences, variant.weights, variant_id=variant.variant_id)
        ordered = apply_sort(ranked, filters.sort)
        page = ordered[filters.offset : filters.offset + filters.limit]

        ai_ms: Optional[float] = None
        breaker_open = False
        flags = dict(variant.flags or {})
        if (
            request.include_ai_score
            and request.user_id
            and self._scoring is not None
            and page
            and flags.get("ai_scoring", True)
        ):
            page, ai_ms, breaker_open = self._overlay(page, request, preferences, variant, deadline)
        elif self._scoring is not None:
            breaker_open = self._scoring.circuit_breaker_status().is_open

        total_ms = round((time.perf_counter() - started) * 1000, 2)
        p95 = self._latency.record(total_ms - (ai_ms or 0.0))
        cache_hit_rate = self._cache_hit_rate()
        method = resolve_method(merged, outcome.fallback)
        code = _diagnostic_code(outcome, merged)
        diagnostics = SearchDiagnostics(
            code=code,
            total_ms=total_ms,
            embedding_ms=outcome.embedding_ms,
            ai_scoring_ms=ai_ms,
            cache_hit_rate=cache_hit_rate,
            circuit_breaker_open=breaker_open,
            adapters=outcome.statuses,
            errors=outcome.errors,
            latency_p95_ms=p95,
        )
        self._observability.record(
            "search",
            search_id=request.search_id,
            method=method.value,
            code=code,
            adapters=dict(outcome.statuses),
            total_candidates=len(merged),
            total_ms=total_ms,
        )
        response = SearchResponse(
            search_id=request.search_id,
            results=page,
            count=len(page),
            total_candidates=len(merged),
            method=method,
            fallback=outcome.fallback or code == "ALL_ADAPTERS_FAILED",
            diagnostics=diagnostics,
            variant_id=variant.variant_id,
            experiment_id=variant.experiment_id,
            flags=flags,
        )
        self._emit_performance(response, p95)
        return response

    def metrics_snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {"latency": self._latency.snapshot()}
        if self._semantic is not None and self._semantic.cache is not None:
            snapshot["embedding_cache"] = self._semantic.cache.stats().as_dict()
        if self._scoring is not None:
            snapshot["ai_score_cache"] = self._scoring.cache_stats().as_dict()
            snapshot["circuit_breaker"] = self._scoring.circuit_breaker_status().state.value
        if self._telemetry is not None:
            snapshot["telemetry"] = self._telemetry.stats()
        return snapshot

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _retrieve(self, request: SearchRequest, deadline: Deadline) -> _RetrievalOutcome:
        text_adapter = self._semantic if self._semantic is not None else self._keyword
        primary = [self._structured, text_adapter]
        outcome = _RetrievalOutcome(results=[], statuses={}, errors={}, failures=[], attempted=0, fallback=False)
        submitted: List[Tuple[str, Future]] = []
        for adapter in primary:
            name = adapter.origin.value
            submitted.append((name, self._executor.submit(self._timed, adapter, request, deadline)))
            outcome.attempted += 1

        wait_started = time.perf_counter()
        for name, future in submitted:
            budget = max(0.0, self._settings.adapter_timeout_s - (time.perf_counter() - wait_started))
            try:
                results, elapsed_ms = future.result(timeout=deadline.remaining(budget))
            except FutureTimeoutError:
                future.cancel()
                self._fail(outcome, name, AdapterTimeoutError(f"{name} adapter timed out"), status="timeout")
                continue
            except Exception as exc:
                self._fail(outcome, name, exc)
                continue
            if name == Origin.semantic.value:
                outcome.embedding_ms = elapsed_ms
            outcome.statuses[name] = "ok" if results else "empty"
            outcome.results.extend(results)

        needs_fallback = bool(outcome.failures) or (self._settings.fallback_on_empty and not outcome.results)
        if self._semantic is None or not needs_fallback:
            return outcome
        outcome.fallback = True
        outcome.attempted += 1
        if deadline.expired():
            self._fail(
                outcome,
                Origin.fallback.value,
                AdapterTimeoutError("deadline exceeded before fallback"),
                status="timeout",
            )
            return outcome
        try:
            results = self._keyword.retrieve(
                request.query,
                request.filters,
                limit=self._settings.candidate_limit,
                timeout_s=deadline.remaining(self._settings.adapter_timeout_s),
                as_fallback=True,
            )
        except Exception as exc:
            self._fail(outcome, Origin.fallback.value, exc)
            return outcome
        outcome.statuses[Origin.fallback.value] = "ok" if results else "empty"
        outcome.results.extend(results)
        return outcome

    def _timed(self, adapter, request: SearchRequest, deadline: Deadline) -> Tuple[List[RetrievalResult], float]:
        started = time.perf_counter()
        results = adapter.retrieve(
            request.query,
            request.filters,
            limit=self._settings.candidate_limit,
            timeout_s=deadline.remaining(self._settings.adapter_timeout_s),
        )
        return results, round((time.perf_counter() - started) * 1000, 2)

    def _fail(self, outcome: _RetrievalOutcome, name: str, exc: Exception, *, status: str = "failed") -> None:
        if not isinstance(exc, RetrievalError):
            logger.warning("%s adapter raised an unexpected error", name, exc_info=exc)
        code = getattr(exc, "code", exc.__class__.__name__)
        outcome.statuses[name] = status
        outcome.errors[name] = code
        outcome.failures.append(exc)
        self._observability.record("adapter_failed", adapter=name, code=code)

    def _resolve_variant(self, request: SearchRequest) -> RankingVariant:
        experiment_id = self._settings.ranking_experiment_id
        if not experiment_id or not request.user_id or self._experiments is None:
            return RankingVariant(weights=WeightConfig())
        try:
            assignment = self._experiments.assign(request.user_id, experiment_id)
            config = self._experiments.get_variant_config(request.user_id, experiment_id)
            weights = WeightConfig.from_mapping(config.get("weights"))
            personalization_weight = float(config.get("personalization_weight", 0.0))
        except (ExperimentError, InvalidWeightsError, TypeError, ValueError) as exc:
            logger.warning("ranking variant unavailable for %s: %s", experiment_id, exc)
            self._observability.record("variant_fallback", experiment_id=experiment_id, error=str(exc))
            return RankingVariant(weights=WeightConfig())
        if assignment.in_experiment:
            self._experiments.track_event(
                request.user_id,
                experiment_id,
                EXPOSURE_EVENT,
                {"search_id": request.search_id},
            )
        return RankingVariant(
            weights=weights,
            variant_id=assignment.variant_id,
            experiment_id=experiment_id,
            personalization_weight=personalization_weight,
            flags=dict(config.get("flags") or {}),
        )

    def _overlay(
        self,
        page: List[RankedResult],
        request: SearchRequest,
        preferences,
        variant: RankingVariant,
        deadline: Deadline,
    ) -> Tuple[List[RankedResult], float, bool]:
        started = time.perf_counter()
        batch = self._scoring.score_batch(
            [item.candidate for item in page],
            UserProfile(user_id=request.user_id, preferences=preferences),
            deadline=deadline,
        )
        overlays = {
            job.listing_id: Personalization(
                ai_score=job.ai_score,
                reasons=list(job.reasons),
                success=job.success,
                status=job.status.value,
            )
            for job in batch.results
        }
        blended = blend_personalization(page, overlays, weight=variant.personalization_weight)
        return blended, round((time.perf_counter() - started) * 1000, 2), batch.circuit_breaker_open

    def _cache_hit_rate(self) -> Optional[float]:
        if self._semantic is None or self._semantic.cache is None:
            return None
        return round(self._semantic.cache.stats().hit_rate, 4)

    def _emit_performance(self, response: SearchResponse, p95: Optional[float]) -> None:
        if self._telemetry is None:
            return
        event = SearchPerformanceEvent(
            event_id=response.search_id,
            method=response.method.value,
            total_ms=response.diagnostics.total_ms,
            p95_ms=p95,
            result_count=response.count,
            total_candidates=response.total_candidates,
            fallback=response.fallback,
            created_at=self._clock.now(),
            over_budget=self._latency.over_budget(),
            cache_hit_rate=response.diagnostics.cache_hit_rate,
            variant_id=response.variant_id,
            adapters=dict(response.diagnostics.adapters),
        )
        self._telemetry.emit_event(event)


def merge_results(results: List[RetrievalResult]) -> List[MergedCandidate]:
    """Normalize relevance per origin onto [0, 100] and collapse duplicates.

    A listing found by several adapters keeps the highest-priority origin
    (structured, then semantic, keyword, fallback) and that origin's relevance;
    every contributing origin is listed in ``origins``.
    """
    by_origin: Dict[Origin, List[RetrievalResult]] = {}
    for result in results:
        by_origin.setdefault(result.origin, []).append(result)

    normalized: List[Tuple[RetrievalResult, float]] = []
    for origin in sorted(by_origin, key=lambda item: ORIGIN_PRIORITY[item]):
        group = by_origin[origin]
        scaled = min_max_scale([item.raw_relevance for item in group])
        normalized.extend(zip(group, scaled))

    merged: Dict[str, MergedCandidate] = {}
    for result, relevance in normalized:
        listing_id = result.candidate.listing_id
        existing = merged.get(listing_id)
        if existing is None:
            merged[listing_id] = MergedCandidate(
                candidate=result.candidate,
                origin=result.origin,
                origins=(result.origin,),
                relevance=round(relevance, 2),
                distance_m=result.distance_m,
            )
            continue
        origins = existing.origins
        if result.origin not in origins:
            origins = tuple(sorted(origins + (result.origin,), key=lambda item: ORIGIN_PRIORITY[item]))
        distance = existing.distance_m if existing.distance_m is not None else result.distance_m
        merged[listing_id] = replace(existing, origins=origins, distance_m=distance)
    return list(merged.values())


def resolve_method(merged: List[MergedCandidate], fallback: bool) -> SearchMethod:
    if not merged:
        return SearchMethod.empty
    if fallback:
        return SearchMethod.fallback
    origins = {origin for item in merged for origin in item.origins}
    if Origin.structured in origins and (Origin.semantic in origins or Origin.keyword in origins):
        return SearchMethod.hybrid
    if origins == {Origin.structured}:
        return SearchMethod.structured
    if origins == {Origin.semantic}:
        return SearchMethod.semantic
    if Origin.semantic in origins:
        return SearchMethod.hybrid
    return SearchMethod.keyword


def apply_sort(results: List[RankedResult], sort: SortOption) -> List[RankedResult]:
    if sort == SortOption.relevance:
        ordered = list(results)
    elif sort == SortOption.price_asc:
        ordered = sorted(results, key=lambda item: (item.candidate.price, -item.score, item.listing_id))
    elif sort == SortOption.price_desc:
        ordered = sorted(results, key=lambda item: (-item.candidate.price, -item.score, item.listing_id))
    elif sort == SortOption.distance:
        ordered = sorted(
            results,
            key=lambda item: (item.distance_m is None, item.distance_m or 0.0, -item.score, item.listing_id),
        )
    else:
        ordered = sorted(
            results,
            key=lambda item: (
                item.candidate.created_at is None,
                -item.candidate.created_at.timestamp() if item.candidate.created_at else 0.0,
                -item.score,
                item.listing_id,
            ),
        )
    return [replace(item, rank=index) for index, item in enumerate(ordered, start=1)]


def _store_unavailable(failures: List[Exception]) -> bool:
    # An embedding failure alongside a store failure still leaves nothing to read from.
    store_down = any(isinstance(exc, ListingStoreError) for exc in failures)
    return store_down and all(isinstance(exc, (ListingStoreError, EmbeddingError)) for exc in failures)


def _diagnostic_code(outcome: _RetrievalOutcome, merged: List[MergedCandidate]) -> str:
    if not merged and outcome.failures and len(outcome.failures) >= outcome.attempted:
        return "ALL_ADAPTERS_FAILED"
    if not merged:
        return "NO_RESULTS"
    if outcome.failures:
        return "DEGRADED"
    return "OK"