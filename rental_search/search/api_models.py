from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_search.common.enums import SortOption
from rental_search.ranking.api_models import PreferencesModel
from rental_search.retrieval.models import GeoPoint, SearchFilters


class SearchFiltersModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    budget_min: Optional[float] = Field(default=None, ge=0)
    budget_max: Optional[float] = Field(default=None, ge=0)
    rooms: Optional[int] = Field(default=None, ge=0)
    amenities: List[str] = Field(default_factory=list)
    district: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    radius_m: Optional[float] = Field(default=None, gt=0)
    university: Optional[str] = None
    max_commute_minutes: Optional[float] = Field(default=None, gt=0)
    sort: SortOption = SortOption.relevance


class SearchRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str
    query: str = Field(default="", max_length=500)
    filters: SearchFiltersModel = Field(default_factory=SearchFiltersModel)
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    user_id: Optional[str] = None
    include_ai_score: bool = False
    preferences: Optional[PreferencesModel] = None

    def to_filters(self) -> SearchFilters:
        filters = self.filters
        center = None
        if filters.latitude is not None and filters.longitude is not None:
            center = GeoPoint(latitude=filters.latitude, longitude=filters.longitude)
        return SearchFilters(
            budget_min=filters.budget_min,
            budget_max=filters.budget_max,
            rooms=filters.rooms,
            amenities=frozenset(filters.amenities),
            district=filters.district,
            center=center,
            radius_m=filters.radius_m,
            university=filters.university,
            max_commute_minutes=filters.max_commute_minutes,
            sort=filters.sort,
            limit=self.limit,
            offset=self.offset,
        )
