from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from rental_search.common.enums import MetricType, UserType
from rental_search.experiments.models import MetricDefinition, TargetAudience, Variant


class VariantModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    variant_id: str
    weight: float = Field(allow_inf_nan=False)
    name: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)

    def to_variant(self) -> Variant:
        return Variant(variant_id=self.variant_id, weight=self.weight, config=dict(self.config), name=self.name)


class MetricModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    type: MetricType
    event_name: str

    def to_metric(self) -> MetricDefinition:
        return MetricDefinition(name=self.name, type=self.type, event_name=self.event_name)


class AudienceModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    user_type: UserType = UserType.all
    countries: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)

    def to_audience(self) -> TargetAudience:
        return TargetAudience(
            user_type=self.user_type,
            countries=frozenset(self.countries),
            user_ids=frozenset(self.user_ids),
        )


class CreateExperimentAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["create_experiment"]
    experiment_id: Optional[str] = None
    name: str
    description: str = ""
    variants: List[VariantModel]
    metrics: List[MetricModel]
    baseline_variant_id: Optional[str] = None
    audience: Optional[AudienceModel] = None


class StartExperimentAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["start_experiment"]
    experiment_id: str


class StopExperimentAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["stop_experiment"]
    experiment_id: str


class TrackEventAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["track_event"]
    experiment_id: str
    user_id: str = Field(min_length=1)
    event_name: str = Field(min_length=1)
    properties: Dict[str, Any] = Field(default_factory=dict)


ExperimentAction = Annotated[
    Union[CreateExperimentAction, StartExperimentAction, StopExperimentAction, TrackEventAction],
    Field(discriminator="action"),
]


class ExperimentRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str
    operation: ExperimentAction
