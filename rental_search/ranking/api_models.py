from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_search.common.enums import FeedbackType
from rental_search.ranking.models import UserPreferences
from rental_search.retrieval.models import ListingCandidate


class ListingModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    listing_id: str = Field(min_length=1)
    price: float = Field(ge=0)
    rooms: int = Field(ge=0)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str = ""
    district: str = ""
    amenities: List[str] = Field(default_factory=list)
    media_quality: Optional[float] = Field(default=None, ge=0, le=1)
    completeness: Optional[float] = Field(default=None, ge=0, le=1)
    favorites: int = Field(default=0, ge=0)
    messages: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)
    owner_verified: bool = False
    title: str = ""
    description: str = ""
    suggested_price: Optional[float] = Field(default=None, gt=0)
    district_average_price: Optional[float] = Field(default=None, gt=0)
    commute_minutes: Dict[str, float] = Field(default_factory=dict)
    registration_possible: Optional[bool] = None
    created_at: Optional[datetime] = None

    def to_candidate(self) -> ListingCandidate:
        return ListingCandidate(
            listing_id=self.listing_id,
            price=self.price,
            rooms=self.rooms,
            latitude=self.latitude,
            longitude=self.longitude,
            address=self.address,
            district=self.district,
            amenities=frozenset(self.amenities),
            media_quality=self.media_quality,
            completeness=self.completeness,
            favorites=self.favorites,
            messages=self.messages,
            views=self.views,
            owner_verified=self.owner_verified,
            title=self.title,
            description=self.description,
            suggested_price=self.suggested_price,
            district_average_price=self.district_average_price,
            commute_minutes=dict(self.commute_minutes),
            registration_possible=self.registration_possible,
            created_at=self.created_at,
        )


class PreferencesModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    budget_min: Optional[float] = Field(default=None, ge=0)
    budget_max: Optional[float] = Field(default=None, ge=0)
    preferred_districts: List[str] = Field(default_factory=list)
    commute_destination: Optional[str] = None
    max_commute_minutes: Optional[float] = Field(default=None, gt=0)
    essential_amenities: List[str] = Field(default_factory=list)
    important_amenities: List[str] = Field(default_factory=list)
    nice_to_have_amenities: List[str] = Field(default_factory=list)
    needs_wheelchair: bool = False
    needs_elevator: bool = False
    needs_step_free: bool = False
    needs_registration: bool = False

    def to_preferences(self) -> UserPreferences:
        return UserPreferences(
            budget_min=self.budget_min,
            budget_max=self.budget_max,
            preferred_districts=tuple(self.preferred_districts),
            commute_destination=self.commute_destination,
            max_commute_minutes=self.max_commute_minutes,
            essential_amenities=tuple(self.essential_amenities),
            important_amenities=tuple(self.important_amenities),
            nice_to_have_amenities=tuple(self.nice_to_have_amenities),
            needs_wheelchair=self.needs_wheelchair,
            needs_elevator=self.needs_elevator,
            needs_step_free=self.needs_step_free,
            needs_registration=self.needs_registration,
        )


class RankRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str
    candidates: List[ListingModel] = Field(min_length=1, max_length=500)
    preferences: Optional[PreferencesModel] = None
    weights: Optional[Dict[str, Annotated[float, Field(allow_inf_nan=False)]]] = None


class FeedbackRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str
    user_id: str = Field(min_length=1)
    search_id: Optional[str] = None
    listing: ListingModel
    preferences: Optional[PreferencesModel] = None
    feedback: FeedbackType
    displayed_rank: int = Field(ge=1)
    displayed_score: Optional[float] = Field(default=None, ge=0, le=100)
    experiment_id: Optional[str] = None
    variant_id: Optional[str] = None
