from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from rental_search.common.enums import ExperimentStatus, MetricType, UserType
from rental_search.common.errors import ServiceError


WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 0.1
MIN_PARTICIPANTS_FOR_SIGNIFICANCE = 30
SIGNIFICANCE_LEVEL = 0.05


class ExperimentError(ServiceError):
    def __init__(self, message: str, *, code: str = "EXPERIMENT_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class ExperimentNotFoundError(ExperimentError):
    def __init__(self, experiment_id: str) -> None:
        super().__init__("Experiment not found", code="NOT_FOUND", details={"experiment_id": experiment_id})


class ExperimentValidationError(ExperimentError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="EXPERIMENT_VALIDATION_ERROR", details=details)


class ExperimentStateError(ExperimentError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="EXPERIMENT_STATE_ERROR", details=details)


@dataclass(frozen=True)
class Variant:
    variant_id: str
    weight: float
    config: Mapping[str, Any] = field(default_factory=dict)
    name: str = ""


@dataclass(frozen=True)
class TargetAudience:
    user_type: UserType = UserType.all
    countries: FrozenSet[str] = frozenset()
    user_ids: FrozenSet[str] = frozenset()

    @property
    def unrestricted(self) -> bool:
        return self.user_type == UserType.all and not self.countries and not self.user_ids


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    type: MetricType
    event_name: str


@dataclass(frozen=True)
class Experiment:
    experiment_id: str
    name: str
    variants: Tuple[Variant, ...]
    metrics: Tuple[MetricDefinition, ...]
    baseline_variant_id: str
    status: ExperimentStatus = ExperimentStatus.draft
    description: str = ""
    audience: TargetAudience = field(default_factory=TargetAudience)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    def variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None

    @property
    def conversion_events(self) -> FrozenSet[str]:
        return frozenset(metric.event_name for metric in self.metrics if metric.type == MetricType.conversion)


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    user_type: UserType
    country: Optional[str] = None


@dataclass(frozen=True)
class Assignment:
    user_id: str
    experiment_id: str
    variant_id: str
    in_experiment: bool
    reason: str


@dataclass(frozen=True)
class ExperimentEvent:
    user_id: str
    experiment_id: str
    variant_id: str
    event_name: str
    timestamp: datetime
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VariantResult:
    variant_id: str
    participants: int
    conversions: int
    conversion_rate: float
    metric_counts: Dict[str, int]
    is_baseline: bool
    confidence: float = 0.0
    is_significant: bool = False
    p_value: Optional[float] = None
