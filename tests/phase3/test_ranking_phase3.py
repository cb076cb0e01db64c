from __future__ import annotations

import random

import pytest

from rental_search.common.enums import Origin
from rental_search.ranking.models import (
    COMPONENTS,
    MAX_CONS,
    MAX_PROS,
    InvalidWeightsError,
    Personalization,
    ScoreComponents,
    UserPreferences,
    WeightConfig,
)
from rental_search.ranking.serialization import serialize_ranked_result
from rental_search.ranking.service import (
    RankingEngine,
    accessibility_score,
    amenities_score,
    blend_personalization,
    commute_score,
    composite_score,
    engagement_score,
    legal_score,
    location_score,
    market_value_score,
    price_score,
    relevance_score,
    trust_score,
)
from rental_search.retrieval.models import ListingCandidate, MergedCandidate


def _listing(listing_id="l1", **overrides):
    values = {
        "listing_id": listing_id,
        "price": 900.0,
        "rooms": 1,
        "latitude": 52.52,
        "longitude": 13.405,
        "address": "Torstrasse 1",
        "district": "Mitte",
    }
    values.update(overrides)
    return ListingCandidate(**values)


def _pool(size=12):
    rng = random.Random(7)
    return [
        _listing(
            f"l{index:02d}",
            price=rng.randint(400, 2500),
            district=rng.choice(["Mitte", "Kreuzberg", "Neukoelln"]),
            amenities=frozenset(rng.sample(["wifi", "elevator", "balcony", "washer"], 2)),
            favorites=rng.randint(0, 10),
            messages=rng.randint(0, 4),
            views=rng.randint(0, 500),
            completeness=rng.random(),
            media_quality=rng.random(),
            owner_verified=rng.random() > 0.5,
            suggested_price=rng.choice([None, 1000.0]),
            commute_minutes={"TU Berlin": float(rng.randint(5, 60))},
        )
        for index in range(size)
    ]


def test_price_component_penalizes_overage_linearly():
    over = price_score(_listing(price=130_000), UserPreferences(budget_max=100_000))
    assert over.score == pytest.approx(70.0)
    assert over.reason == "Over budget by 30%"

    assert price_score(_listing(price=500), UserPreferences(budget_min=800, budget_max=1000)).score == 80.0
    assert price_score(_listing(price=900), UserPreferences(budget_max=1000)).score == 100.0
    assert price_score(_listing(price=5000), UserPreferences(budget_max=1000)).score == 0.0

    unconstrained = price_score(_listing(), UserPreferences())
    assert unconstrained.score == 100.0
    assert unconstrained.applicable is False


def test_location_and_commute_components():
    prefs = UserPreferences(preferred_districts=("mitte",))
    assert location_score(_listing(district="Mitte"), prefs).score == 100.0
    assert location_score(_listing(district="Kreuzberg"), prefs).score == 50.0
    neutral = location_score(_listing(), UserPreferences())
    assert (neutral.score, neutral.applicable) == (70.0, False)
    with_commute = UserPreferences(preferred_districts=("Kreuzberg",), commute_destination="TU Berlin")
    assert location_score(_listing(district="Mitte"), with_commute).score == 60.0

    commute_prefs = UserPreferences(commute_destination="TU Berlin", max_commute_minutes=30)
    assert commute_score(_listing(commute_minutes={"TU Berlin": 15.0}), commute_prefs).score == pytest.approx(87.5)
    assert commute_score(_listing(commute_minutes={"TU Berlin": 45.0}), commute_prefs).score == pytest.approx(30.0)
    assert commute_score(_listing(commute_minutes={"TU Berlin": 120.0}), commute_prefs).score == 0.0
    assert commute_score(_listing(), commute_prefs).score == 70.0
    assert commute_score(_listing(), UserPreferences()).applicable is False


def test_amenities_component_weights_tiers():
    listing = _listing(amenities=frozenset({"wifi", "Balcony"}))
    missing = amenities_score(listing, UserPreferences(essential_amenities=("wifi", "elevator")))
    assert missing.score == pytest.approx(50.0)
    assert missing.reason == "Missing essential amenities: elevator"

    mixed = amenities_score(
        listing,
        UserPreferences(
            essential_amenities=("wifi",),
            important_amenities=("washer",),
            nice_to_have_amenities=("balcony", "sauna"),
        ),
    )
    assert mixed.score == pytest.approx((300 + 100 + 100) / 6)

    assert amenities_score(listing, UserPreferences()).applicable is False
    assert amenities_score(listing, UserPreferences(nice_to_have_amenities=("sauna",))).score == 100.0


def test_market_engagement_and_trust_components():
    assert market_value_score(_listing(price=900, suggested_price=1000)).score == pytest.approx(90.0)
    above = market_value_score(_listing(price=1200, district_average_price=1000))
    assert above.score == pytest.approx(80.0)
    assert above.reason == "Priced 20% above the district average"
    unknown = market_value_score(_listing())
    assert (unknown.score, unknown.applicable) == (50.0, False)

    assert engagement_score(_listing()).score == 40.0
    assert engagement_score(_listing(views=999, favorites=10, messages=5)).score == 100.0

    assert trust_score(_listing(owner_verified=True, completeness=1.0, media_quality=1.0)).score == pytest.approx(95.0)
    assert trust_score(_listing()).score == 40.0
    assert trust_score(_listing(completeness=0.0, media_quality=0.0)).score == pytest.approx(15.0)


def test_accessibility_legal_and_relevance_components():
    bare = _listing()
    assert accessibility_score(bare, UserPreferences(needs_wheelchair=True)).score == 0.0
    assert accessibility_score(bare, UserPreferences(needs_elevator=True)).score == 20.0
    assert accessibility_score(bare, UserPreferences(needs_step_free=True)).score == 50.0
    equipped = _listing(amenities=frozenset({"wheelchair_accessible", "elevator", "step-free"}))
    full_needs = UserPreferences(needs_wheelchair=True, needs_elevator=True, needs_step_free=True)
    assert accessibility_score(equipped, full_needs).score == 100.0
    assert accessibility_score(bare, UserPreferences()).applicable is False

    needs = UserPreferences(needs_registration=True)
    assert legal_score(_listing(registration_possible=False), needs).score == 0.0
    assert legal_score(_listing(registration_possible=None), needs).score == 100.0

    assert relevance_score(None).score == 50.0
    assert relevance_score(140.0).score == 100.0


def test_composite_is_weighted_average_of_components():
    components = ScoreComponents(**{name: 50.0 for name in COMPONENTS})
    assert composite_score(components, WeightConfig()) == 50.0

    price_only = {name: 0.0 for name in COMPONENTS}
    price_only["price"] = 1.0
    skewed = ScoreComponents(**dict({name: 0.0 for name in COMPONENTS}, price=73.25))
    assert composite_score(skewed, WeightConfig(**price_only)) == 73.25


def test_rank_is_bounded_deterministic_and_dense():
    engine = RankingEngine()
    prefs = UserPreferences(budget_max=1500, preferred_districts=("Mitte",), commute_destination="TU Berlin")
    pool = _pool()
    first = engine.rank(pool, prefs)
    shuffled = list(pool)
    random.Random(3).shuffle(shuffled)
    second = engine.rank(shuffled, prefs)

    assert [item.listing_id for item in first] == [item.listing_id for item in second]
    assert [item.score for item in first] == [item.score for item in second]
    assert [item.rank for item in first] == list(range(1, len(pool) + 1))
    for item in first:
        assert 0.0 <= item.score <= 100.0
        assert all(0.0 <= value <= 100.0 for value in item.components.as_dict().values())
        assert len(item.pros) <= MAX_PROS
        assert len(item.cons) <= MAX_CONS
    assert [item.score for item in first] == sorted((item.score for item in first), reverse=True)


def test_ties_break_on_engagement_then_listing_id():
    engine = RankingEngine()
    weights = WeightConfig(engagement=0.0)
    ranked = engine.rank(
        [_listing("c", favorites=0), _listing("b", favorites=5), _listing("a", favorites=0)],
        weights=weights,
    )
    assert [item.listing_id for item in ranked] == ["b", "a", "c"]
    assert len({item.score for item in ranked}) == 1


def test_pros_and_cons_are_capped_and_ordered():
    prefs = UserPreferences(
        budget_max=1000,
        preferred_districts=("Mitte",),
        commute_destination="TU Berlin",
        essential_amenities=("wifi",),
        needs_elevator=True,
        needs_registration=True,
    )
    ideal = _listing(
        price=1000,
        suggested_price=1000,
        amenities=frozenset({"wifi", "elevator"}),
        views=999,
        favorites=10,
        messages=5,
        commute_minutes={"TU Berlin": 0.0},
        registration_possible=True,
        owner_verified=True,
        completeness=1.0,
        media_quality=1.0,
    )
    poor = _listing(
        "l2",
        price=4000,
        district="Spandau",
        suggested_price=1000,
        commute_minutes={"TU Berlin": 200.0},
        registration_possible=False,
        completeness=0.0,
        media_quality=0.0,
    )
    by_id = {item.listing_id: item for item in RankingEngine().rank([ideal, poor], prefs)}

    assert by_id["l1"].pros == [
        "Within budget",
        "In preferred district Mitte",
        "Has the requested amenities",
        "Priced at or below the suggested price",
        "10 favorites, 5 messages",
    ]
    assert by_id["l1"].cons == []
    assert len(by_id["l2"].cons) == MAX_CONS
    assert by_id["l2"].cons[0] == "Over budget by 300%"
    assert by_id["l2"].pros == []


def test_merged_candidates_carry_origin_and_relevance():
    merged = MergedCandidate(
        candidate=_listing(),
        origin=Origin.semantic,
        origins=(Origin.semantic, Origin.keyword),
        relevance=80.0,
        distance_m=350.0,
    )
    result = RankingEngine().rank([merged], variant_id="treatment")[0]
    assert result.components.relevance == 80.0
    assert result.origin == Origin.semantic
    assert result.distance_m == 350.0

    payload = serialize_ranked_result(result)
    assert payload["origins"] == ["semantic", "keyword"]
    assert payload["variant_id"] == "treatment"
    assert payload["personalization"] is None
    assert payload["listing"]["district"] == "Mitte"
    assert set(payload["components"]) == set(COMPONENTS)


def test_weight_config_validation():
    with pytest.raises(InvalidWeightsError):
        WeightConfig(price=-1)
    with pytest.raises(InvalidWeightsError):
        WeightConfig(**{name: 0.0 for name in COMPONENTS})
    with pytest.raises(InvalidWeightsError) as exc_info:
        WeightConfig.from_mapping({"charm": 5})
    assert exc_info.value.details == {"components": ["charm"]}
    with pytest.raises(InvalidWeightsError):
        WeightConfig.from_mapping({"price": "heavy"})
    with pytest.raises(InvalidWeightsError) as exc_info:
        WeightConfig.from_mapping({"price": "nan"})
    assert exc_info.value.details == {"components": ["price"]}
    with pytest.raises(InvalidWeightsError):
        WeightConfig(relevance=float("inf"))

    custom = WeightConfig.from_mapping({"price": 40})
    assert custom.price == 40.0
    assert custom.location == 15.0
    assert WeightConfig().total == 100.0
    assert WeightConfig.from_mapping(None) == WeightConfig()


def test_blend_personalization_reorders_only_with_positive_weight():
    engine = RankingEngine()
    ranked = engine.rank(
        [
            _listing("l1", owner_verified=True, completeness=1.0, media_quality=1.0),
            _listing("l2"),
        ]
    )
    assert [item.listing_id for item in ranked] == ["l1", "l2"]
    overlays = {
        "l1": Personalization(ai_score=0.1, reasons=["far"], success=True, status="scored"),
        "l2": Personalization(ai_score=1.0, reasons=["ideal"], success=True, status="scored"),
    }

    attached = blend_personalization(ranked, overlays, weight=0.0)
    assert [item.score for item in attached] == [item.score for item in ranked]
    assert attached[1].personalization.reasons == ["ideal"]

    blended = blend_personalization(ranked, overlays, weight=1.0)
    assert [item.listing_id for item in blended] == ["l2", "l1"]
    assert [item.rank for item in blended] == [1, 2]
    assert blended[0].score == 100.0

    failed = {"l2": Personalization(ai_score=None, success=False, status="failed")}
    untouched = blend_personalization(ranked, failed, weight=1.0)
    assert untouched[1].score == ranked[1].score
    assert untouched[1].personalization.status == "failed"
