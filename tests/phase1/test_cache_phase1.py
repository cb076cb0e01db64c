from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from rental_search.cache.keys import normalize_text_key, stable_hash, stable_key
from rental_search.cache.lru import TTLCache
from rental_search.common.clock import FrozenClock


FIXED_TIME = datetime(2026, 1, 28, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    listing_id: str
    amenities: frozenset
    price: float


def test_cache_round_trip_within_ttl_and_miss_after_expiry():
    clock = FrozenClock(FIXED_TIME)
    cache = TTLCache(max_entries=10, default_ttl_s=60, clock=clock)
    cache.set("a", {"score": 0.8})
    assert cache.get("a") == {"score": 0.8}

    clock.advance(59)
    assert cache.get("a") == {"score": 0.8}

    clock.advance(1)
    assert cache.get("a") is None
    assert len(cache) == 0
    stats = cache.stats()
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)


def test_cache_per_entry_ttl_overrides_default():
    clock = FrozenClock(FIXED_TIME)
    cache = TTLCache(max_entries=10, default_ttl_s=60, clock=clock)
    cache.set("short", 1, ttl_s=5)
    cache.set("long", 2)
    clock.advance(10)
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_cache_evicts_least_recently_used():
    cache = TTLCache(max_entries=2, default_ttl_s=60, clock=FrozenClock(FIXED_TIME))
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats().evictions == 1


def test_cache_overwrite_refreshes_ttl_and_recency():
    clock = FrozenClock(FIXED_TIME)
    cache = TTLCache(max_entries=2, default_ttl_s=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    clock.advance(50)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("b") is None
    clock.advance(30)
    assert cache.get("a") == 10
    assert cache.stats().as_dict()["size"] == 2


def test_cache_rejects_invalid_bounds():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)
    with pytest.raises(ValueError):
        TTLCache(default_ttl_s=0)


def test_stable_key_is_order_insensitive_for_sets_and_mappings():
    first = Snapshot(listing_id="l1", amenities=frozenset({"wifi", "balcony", "elevator"}), price=1200.0)
    second = Snapshot(listing_id="l1", amenities=frozenset({"elevator", "wifi", "balcony"}), price=1200.0)
    assert stable_key("ai", first, {"b": 1, "a": 2}) == stable_key("ai", second, {"a": 2, "b": 1})
    assert stable_hash(first) != stable_hash(Snapshot(listing_id="l1", amenities=frozenset(), price=1200.0))
    assert stable_key("ai", first).startswith("ai:")


def test_normalize_text_key_collapses_case_and_whitespace():
    assert normalize_text_key("  Cozy   Studio NEAR campus ") == "cozy studio near campus"
    assert normalize_text_key("") == ""
