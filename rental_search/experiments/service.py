from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from rental_search.common.clock import Clock
from rental_search.common.enums import ExperimentStatus, UserType
from rental_search.common.observability import ObservabilityRecorder
from rental_search.experiments.models import (
    MIN_PARTICIPANTS_FOR_SIGNIFICANCE,
    SIGNIFICANCE_LEVEL,
    WEIGHT_TOLERANCE,
    WEIGHT_TOTAL,
    Assignment,
    Experiment,
    ExperimentEvent,
    ExperimentNotFoundError,
    ExperimentStateError,
    ExperimentValidationError,
    MetricDefinition,
    TargetAudience,
    Variant,
    VariantResult,
)
from rental_search.experiments.repository import ExperimentRepository, UserDirectory
from rental_search.experiments.stats import two_proportion_z_test


logger = logging.getLogger(__name__)

HASH_SPACE = 0xFFFFFFFF


def assignment_bucket(user_id: str, experiment_id: str) -> float:
    digest = hashlib.sha256(f"{experiment_id}:{user_id}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) / HASH_SPACE * 100


def pick_variant(variants: Sequence[Variant], bucket: float) -> Variant:
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if bucket < cumulative:
            return variant
    return variants[-1]


def validate_experiment(experiment: Experiment) -> None:
    if not experiment.name or not experiment.name.strip():
        raise ExperimentValidationError("Experiment name is required")
    if len(experiment.variants) < 2:
        raise ExperimentValidationError(
            "Experiment needs at least two variants",
            details={"variants": len(experiment.variants)},
        )
    ids = [variant.variant_id for variant in experiment.variants]
    if any(not variant_id for variant_id in ids):
        raise ExperimentValidationError("Variant ids must be non-empty")
    duplicates = sorted({variant_id for variant_id in ids if ids.count(variant_id) > 1})
    if duplicates:
        raise ExperimentValidationError("Variant ids must be unique", details={"duplicates": duplicates})
    non_finite = [variant.variant_id for variant in experiment.variants if not math.isfinite(variant.weight)]
    if non_finite:
        raise ExperimentValidationError("Variant weights must be finite numbers", details={"variants": non_finite})
    negative = [variant.variant_id for variant in experiment.variants if variant.weight < 0]
    if negative:
        raise ExperimentValidationError("Variant weights must be non-negative", details={"variants": negative})
    total = sum(variant.weight for variant in experiment.variants)
    if abs(total - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        raise ExperimentValidationError("Variant weights must sum to 100", details={"total": total})
    if experiment.baseline_variant_id not in ids:
        raise ExperimentValidationError(
            "Baseline variant must be one of the variants",
            details={"baseline_variant_id": experiment.baseline_variant_id},
        )
    if not experiment.metrics:
        raise ExperimentValidationError("Experiment needs at least one metric")


class ExperimentService:
    def __init__(
        self,
        repository: ExperimentRepository,
        *,
        users: Optional[UserDirectory] = None,
        clock: Optional[Clock] = None,
        observability: Optional[ObservabilityRecorder] = None,
    ) -> None:
        self._repository = repository
        self._users = users
        self._clock = clock or Clock()
        self._observability = observability or ObservabilityRecorder()

    @property
    def observability(self) -> ObservabilityRecorder:
        return self._observability

    def create_experiment(
        self,
        *,
        name: str,
        variants: Iterable[Variant],
        metrics: Iterable[MetricDefinition],
        description: str = "",
        baseline_variant_id: Optional[str] = None,
        audience: Optional[TargetAudience] = None,
        experiment_id: Optional[str] = None,
    ) -> Experiment:
        variant_list = tuple(variants)
        if baseline_variant_id is None and variant_list:
            baseline_variant_id = variant_list[0].variant_id
        experiment = Experiment(
            experiment_id=experiment_id or str(uuid4()),
            name=name,
            description=description,
            variants=variant_list,
            metrics=tuple(metrics),
            baseline_variant_id=baseline_variant_id or "",
            audience=audience or TargetAudience(),
            created_at=self._clock.now(),
        )
        validate_experiment(experiment)
        if self._repository.get(experiment.experiment_id) is not None:
            raise ExperimentValidationError(
                "Experiment id already exists",
                details={"experiment_id": experiment.experiment_id},
            )
        self._repository.save(experiment)
        self._observability.record("experiment_created", experiment_id=experiment.experiment_id)
        return experiment

    def get_experiment(self, experiment_id: str) -> Experiment:
        experiment = self._repository.get(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    def start_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.get_experiment(experiment_id)
        if experiment.status != ExperimentStatus.draft:
            raise ExperimentStateError(
                "Only draft experiments can be started",
                details={"experiment_id": experiment_id, "status": experiment.status.value},
            )
        validate_experiment(experiment)
        started = replace(experiment, status=ExperimentStatus.active, started_at=self._clock.now())
        self._repository.save(started)
        self._observability.record("experiment_started", experiment_id=experiment_id)
        logger.info("experiment %s started", experiment_id)
        return started

    def stop_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.get_experiment(experiment_id)
        if experiment.status != ExperimentStatus.active:
            raise ExperimentStateError(
                "Only active experiments can be stopped",
                details={"experiment_id": experiment_id, "status": experiment.status.value},
            )
        stopped = replace(experiment, status=ExperimentStatus.stopped, stopped_at=self._clock.now())
        self._repository.save(stopped)
        self._observability.record("experiment_stopped", experiment_id=experiment_id)
        logger.info("experiment %s stopped", experiment_id)
        return stopped

    def active_experiments(self) -> List[Experiment]:
        return [item for item in self._repository.list() if item.status == ExperimentStatus.active]

    def assign(self, user_id: str, experiment_id: str) -> Assignment:
        experiment = self.get_experiment(experiment_id)
        baseline = experiment.baseline_variant_id
        if experiment.status != ExperimentStatus.active:
            return Assignment(user_id, experiment_id, baseline, in_experiment=False, reason="not_active")
        if not self._in_audience(user_id, experiment.audience):
            return Assignment(user_id, experiment_id, baseline, in_experiment=False, reason="outside_audience")
        variant = pick_variant(experiment.variants, assignment_bucket(user_id, experiment_id))
        return Assignment(user_id, experiment_id, variant.variant_id, in_experiment=True, reason="hashed")

    def get_variant(self, user_id: str, experiment_id: str) -> str:
        return self.assign(user_id, experiment_id).variant_id

    def get_variant_config(self, user_id: str, experiment_id: str) -> Mapping[str, Any]:
        assignment = self.assign(user_id, experiment_id)
        variant = self.get_experiment(experiment_id).variant(assignment.variant_id)
        return dict(variant.config) if variant is not None else {}

    def track_event(
        self,
        user_id: str,
        experiment_id: str,
        event_name: str,
        properties: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ExperimentEvent]:
        assignment = self.assign(user_id, experiment_id)
        if not assignment.in_experiment:
            self._observability.record(
                "event_ignored",
                experiment_id=experiment_id,
                event_name=event_name,
                reason=assignment.reason,
            )
            return None
        event = ExperimentEvent(
            user_id=user_id,
            experiment_id=experiment_id,
            variant_id=assignment.variant_id,
            event_name=event_name,
            timestamp=self._clock.now(),
            properties=dict(properties or {}),
        )
        self._repository.add_event(event)
        return event

    def get_results(self, experiment_id: str) -> List[VariantResult]:
        experiment = self.get_experiment(experiment_id)
        events = self._repository.events(experiment_id)
        conversion_events = experiment.conversion_events
        raw: Dict[str, Dict[str, Any]] = {}
        for variant in experiment.variants:
            variant_events = [event for event in events if event.variant_id == variant.variant_id]
            participants = {event.user_id for event in variant_events}
            converted = {event.user_id for event in variant_events if event.event_name in conversion_events}
            counts = {
                metric.name: sum(1 for event in variant_events if event.event_name == metric.event_name)
                for metric in experiment.metrics
            }
            raw[variant.variant_id] = {
                "participants": len(participants),
                "conversions": len(converted),
                "metric_counts": counts,
            }

        baseline = raw[experiment.baseline_variant_id]
        results: List[VariantResult] = []
        for variant in experiment.variants:
            data = raw[variant.variant_id]
            participants = data["participants"]
            conversions = data["conversions"]
            rate = conversions / participants if participants else 0.0
            is_baseline = variant.variant_id == experiment.baseline_variant_id
            p_value: Optional[float] = None
            if (
                not is_baseline
                and participants >= MIN_PARTICIPANTS_FOR_SIGNIFICANCE
                and baseline["participants"] >= MIN_PARTICIPANTS_FOR_SIGNIFICANCE
            ):
                _, p_value = two_proportion_z_test(
                    baseline["conversions"],
                    baseline["participants"],
                    conversions,
                    participants,
                )
            results.append(
                VariantResult(
                    variant_id=variant.variant_id,
                    participants=participants,
                    conversions=conversions,
                    conversion_rate=round(rate, 4),
                    metric_counts=data["metric_counts"],
                    is_baseline=is_baseline,
                    confidence=round((1 - p_value) * 100, 2) if p_value is not None else 0.0,
                    is_significant=p_value is not None and p_value < SIGNIFICANCE_LEVEL,
                    p_value=round(p_value, 6) if p_value is not None else None,
                )
            )
        return results

    def _in_audience(self, user_id: str, audience: TargetAudience) -> bool:
        if audience.unrestricted:
            return True
        if audience.user_ids and user_id not in audience.user_ids:
            return False
        if audience.user_type == UserType.all and not audience.countries:
            return True
        record = self._users.get(user_id) if self._users is not None else None
        if record is None:
            return False
        if audience.user_type != UserType.all and record.user_type != audience.user_type:
            return False
        if audience.countries and (record.country or "").upper() not in {c.upper() for c in audience.countries}:
            return False
        return True
