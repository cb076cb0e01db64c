from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_search.ranking.api_models import ListingModel, PreferencesModel
from rental_search.scoring.models import MAX_CANDIDATES_PER_REQUEST, UserProfile


class BatchScoreRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: str
    user_id: str = Field(min_length=1)
    candidates: List[ListingModel] = Field(min_length=1, max_length=MAX_CANDIDATES_PER_REQUEST)
    preferences: Optional[PreferencesModel] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_profile(self) -> UserProfile:
        if self.preferences is None:
            return UserProfile(user_id=self.user_id, attributes=dict(self.attributes))
        return UserProfile(
            user_id=self.user_id,
            preferences=self.preferences.to_preferences(),
            attributes=dict(self.attributes),
        )
