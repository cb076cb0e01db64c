from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Union

from rental_search.common.observability import ObservabilityRecorder
from rental_search.ranking.models import (
    COMPONENTS,
    CON_THRESHOLD,
    MAX_CONS,
    MAX_PROS,
    PRO_THRESHOLD,
    Personalization,
    RankedResult,
    ScoreComponents,
    UserPreferences,
    WeightConfig,
)
from rental_search.retrieval.models import ListingCandidate, MergedCandidate


DEFAULT_COMMUTE_LIMIT_MIN = 30.0
UNDER_BUDGET_SCORE = 80.0


@dataclass(frozen=True)
class ComponentScore:
    score: float
    reason: str
    applicable: bool = True


class RankingEngine:
    def __init__(self, *, observability: Optional[ObservabilityRecorder] = None) -> None:
        self._observability = observability or ObservabilityRecorder()

    @property
    def observability(self) -> ObservabilityRecorder:
        return self._observability

    def rank(
        self,
        candidates: Sequence[Union[ListingCandidate, MergedCandidate]],
        preferences: Optional[UserPreferences] = None,
        weights: Optional[WeightConfig] = None,
        *,
        variant_id: Optional[str] = None,
    ) -> List[RankedResult]:
        prefs = preferences or UserPreferences()
        config = weights or WeightConfig()
        scored = [self._score(_as_merged(item), prefs, config, variant_id) for item in candidates]
        scored.sort(key=sort_key)
        ranked = [replace(item, rank=index) for index, item in enumerate(scored, start=1)]
        self._observability.record("ranked", count=len(ranked), variant_id=variant_id)
        return ranked

    def score_components(self, candidate: MergedCandidate, preferences: UserPreferences) -> Dict[str, ComponentScore]:
        listing = candidate.candidate
        return {
            "price": price_score(listing, preferences),
            "location": location_score(listing, preferences),
            "amenities": amenities_score(listing, preferences),
            "market_value": market_value_score(listing),
            "engagement": engagement_score(listing),
            "accessibility": accessibility_score(listing, preferences),
            "commute": commute_score(listing, preferences),
            "legal": legal_score(listing, preferences),
            "trust": trust_score(listing),
            "relevance": relevance_score(candidate.relevance),
        }

    def _score(
        self,
        merged: MergedCandidate,
        preferences: UserPreferences,
        weights: WeightConfig,
        variant_id: Optional[str],
    ) -> RankedResult:
        parts = self.score_components(merged, preferences)
        components = ScoreComponents(**{name: round(_clamp(parts[name].score), 2) for name in COMPONENTS})
        return RankedResult(
            listing_id=merged.listing_id,
            rank=0,
            score=composite_score(components, weights),
            components=components,
            candidate=merged.candidate,
            pros=_pros(parts),
            cons=_cons(parts),
            origin=merged.origin,
            origins=merged.origins,
            distance_m=merged.distance_m,
            variant_id=variant_id,
        )


def sort_key(result: RankedResult):
    return (-result.score, -result.candidate.engagement_count, result.listing_id)


def composite_score(components: ScoreComponents, weights: WeightConfig) -> float:
    values = components.as_dict()
    total = weights.total
    weighted = sum(values[name] * getattr(weights, name) for name in COMPONENTS)
    return round(_clamp(weighted / total), 2)


def blend_personalization(
    results: Sequence[RankedResult],
    overlays: Mapping[str, Personalization],
    *,
    weight: float,
) -> List[RankedResult]:
    """Attach AI personalization to a page of ranked results.

    With a positive ``weight`` the composite becomes
    ``(1 - weight) * composite + weight * ai_score * 100`` for items that were
    scored successfully and the page is re-sorted. Items without a usable AI score
    keep their composite.
    """
    weight = min(max(weight, 0.0), 1.0)
    blended: List[RankedResult] = []
    for result in results:
        overlay = overlays.get(result.listing_id)
        if overlay is None:
            blended.append(result)
            continue
        score = result.score
        if weight > 0 and overlay.success and overlay.ai_score is not None:
            score = round(_clamp((1 - weight) * score + weight * overlay.ai_score * 100), 2)
        blended.append(replace(result, score=score, personalization=overlay))
    if weight > 0:
        first_rank = min((item.rank for item in results), default=1)
        blended.sort(key=sort_key)
        blended = [replace(item, rank=index) for index, item in enumerate(blended, start=first_rank)]
    return blended


def price_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    budget_max = preferences.budget_max
    budget_min = preferences.budget_min
    if budget_max is None and not (budget_min and budget_min > 0):
        return ComponentScore(100.0, "No budget constraint", applicable=False)
    if budget_max is not None and listing.price > budget_max:
        overage = (listing.price - budget_max) / budget_max * 100 if budget_max > 0 else 100.0
        return ComponentScore(max(0.0, 100.0 - overage), f"Over budget by {overage:.0f}%")
    if budget_min is not None and budget_min > 0 and listing.price < budget_min:
        return ComponentScore(UNDER_BUDGET_SCORE, "Below the minimum budget")
    return ComponentScore(100.0, "Within budget")


def location_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    preferred = {district.strip().lower() for district in preferences.preferred_districts}
    if not preferred:
        score, reason, applicable = 70.0, "No district preference", False
    elif listing.district.strip().lower() in preferred:
        score, reason, applicable = 100.0, f"In preferred district {listing.district}", True
    else:
        score, reason, applicable = 50.0, f"Outside preferred districts ({listing.district})", True
    if preferences.commute_destination:
        score = min(100.0, score + 10.0)
    return ComponentScore(score, reason, applicable)


def amenities_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    weighted = 0.0
    total_weight = 0.0
    missing_essential: List[str] = []
    for name in preferences.essential_amenities:
        hit = listing.has_amenity(name)
        weighted += (100.0 if hit else 0.0) * 3
        total_weight += 3
        if not hit:
            missing_essential.append(name)
    for name in preferences.important_amenities:
        weighted += (100.0 if listing.has_amenity(name) else 50.0) * 2
        total_weight += 2
    for name in preferences.nice_to_have_amenities:
        if listing.has_amenity(name):
            weighted += 100.0
            total_weight += 1
    if total_weight == 0:
        return ComponentScore(100.0, "No amenity requirements", applicable=False)
    score = weighted / total_weight
    if missing_essential:
        return ComponentScore(score, "Missing essential amenities: " + ", ".join(missing_essential))
    return ComponentScore(score, "Has the requested amenities")


def market_value_score(listing: ListingCandidate) -> ComponentScore:
    if listing.suggested_price and listing.suggested_price > 0:
        return _market_ratio(listing.price, listing.suggested_price, "suggested price")
    if listing.district_average_price and listing.district_average_price > 0:
        return _market_ratio(listing.price, listing.district_average_price, "district average")
    return ComponentScore(50.0, "No market reference price", applicable=False)


def _market_ratio(price: float, reference: float, label: str) -> ComponentScore:
    deviation = abs(price - reference) / reference
    score = max(0.0, 100.0 * (1 - deviation))
    if price <= reference:
        return ComponentScore(score, f"Priced at or below the {label}")
    return ComponentScore(score, f"Priced {deviation * 100:.0f}% above the {label}")


def engagement_score(listing: ListingCandidate) -> ComponentScore:
    score = (
        40.0
        + min(30.0, 15.0 * math.log10(max(listing.views, 0) + 1))
        + min(20.0, 2.0 * listing.favorites)
        + min(20.0, 4.0 * listing.messages)
    )
    return ComponentScore(min(100.0, score), f"{listing.favorites} favorites, {listing.messages} messages")


def accessibility_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    if not preferences.has_accessibility_needs:
        return ComponentScore(100.0, "No accessibility needs", applicable=False)
    score = 100.0
    unmet: List[str] = []
    if preferences.needs_wheelchair and not listing.has_amenity("wheelchair accessible"):
        score = 0.0
        unmet.append("wheelchair access")
    if preferences.needs_elevator and not listing.has_amenity("elevator"):
        score = min(score, 20.0)
        unmet.append("elevator")
    if preferences.needs_step_free and not listing.has_amenity("step free"):
        score = min(score, 50.0)
        unmet.append("step-free entrance")
    if unmet:
        return ComponentScore(score, "Missing " + ", ".join(unmet))
    return ComponentScore(score, "Meets accessibility needs")


def commute_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    destination = preferences.commute_destination
    if not destination:
        return ComponentScore(100.0, "No commute destination", applicable=False)
    minutes = listing.commute_to(destination)
    if minutes is None:
        return ComponentScore(70.0, f"Commute to {destination} unknown")
    limit = preferences.max_commute_minutes or DEFAULT_COMMUTE_LIMIT_MIN
    ratio = minutes / limit
    if ratio <= 1:
        score = 100.0 * (1 - 0.25 * ratio)
    else:
        score = max(0.0, 50.0 - 40.0 * (ratio - 1))
    return ComponentScore(score, f"{minutes:.0f} min to {destination}")


def legal_score(listing: ListingCandidate, preferences: UserPreferences) -> ComponentScore:
    if not preferences.needs_registration:
        return ComponentScore(100.0, "No registration requirement", applicable=False)
    if listing.registration_possible is False:
        return ComponentScore(0.0, "Registration not possible")
    return ComponentScore(100.0, "Registration possible")


def trust_score(listing: ListingCandidate) -> ComponentScore:
    completeness = listing.completeness if listing.completeness is not None else 0.5
    media = listing.media_quality if listing.media_quality is not None else 0.5
    score = 40.0 + (30.0 if listing.owner_verified else 0.0) + 30.0 * (completeness - 0.5) + 20.0 * (media - 0.5)
    if listing.owner_verified:
        return ComponentScore(_clamp(score), "Verified owner")
    return ComponentScore(_clamp(score), "Owner not verified")


def relevance_score(relevance: Optional[float]) -> ComponentScore:
    if relevance is None:
        return ComponentScore(50.0, "No retrieval relevance", applicable=False)
    return ComponentScore(_clamp(relevance), "Matches the search")


def _pros(parts: Dict[str, ComponentScore]) -> List[str]:
    pros = [parts[name].reason for name in COMPONENTS if parts[name].applicable and parts[name].score >= PRO_THRESHOLD]
    return pros[:MAX_PROS]


def _cons(parts: Dict[str, ComponentScore]) -> List[str]:
    cons = [parts[name].reason for name in COMPONENTS if parts[name].score <= CON_THRESHOLD]
    return cons[:MAX_CONS]


def _as_merged(item: Union[ListingCandidate, MergedCandidate]) -> MergedCandidate:
    if isinstance(item, MergedCandidate):
        return item
    return MergedCandidate(candidate=item)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))
