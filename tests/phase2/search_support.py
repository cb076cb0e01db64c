from datetime import datetime, timezone
from typing import Dict, List, Optional

from rental_search.retrieval.models import ListingCandidate
from rental_search.retrieval.repository import InMemoryListingStore


FIXED_TIME = datetime(2026, 1, 28, tzinfo=timezone.utc)

VECTORS = {
    "l1": [1.0, 0.0, 0.0, 0.0],
    "l2": [0.0, 1.0, 0.0, 0.0],
    "l3": [0.7, 0.7, 0.0, 0.0],
    "l4": [0.0, 0.0, 1.0, 0.0],
}


class StubEmbedder:
    dimension = 4

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, *, error: Optional[Exception] = None) -> None:
        self._vectors = vectors or {}
        self._error = error
        self.calls = 0

    def embed(self, text: str, *, timeout_s=None):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._vectors.get(text, [1.0, 0.0, 0.0, 0.0])


class FailingStore(InMemoryListingStore):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self._error = error

    def query(self, filters):
        raise self._error

    def get_many(self, listing_ids):
        raise self._error

    def text_search(self, tokens, *, limit):
        raise self._error


def make_listings() -> List[ListingCandidate]:
    return [
        ListingCandidate(
            listing_id="l1",
            title="Sunny studio near campus",
            description="Bright studio with fast wifi",
            price=900,
            rooms=1,
            latitude=52.5200,
            longitude=13.4050,
            address="Torstrasse 1",
            district="Mitte",
            amenities=frozenset({"wifi", "balcony"}),
            completeness=0.9,
            media_quality=0.8,
            favorites=4,
            messages=1,
            views=120,
            owner_verified=True,
            created_at=datetime(2026, 1, 20, tzinfo=timezone.utc),
        ),
        ListingCandidate(
            listing_id="l2",
            title="Two room flat with balcony",
            description="Quiet flat, elevator in building",
            price=1400,
            rooms=2,
            latitude=52.4990,
            longitude=13.4030,
            address="Oranienstrasse 20",
            district="Kreuzberg",
            amenities=frozenset({"balcony", "elevator"}),
            completeness=0.7,
            media_quality=0.6,
            favorites=2,
            messages=0,
            views=40,
            created_at=datetime(2026, 1, 25, tzinfo=timezone.utc),
        ),
        ListingCandidate(
            listing_id="l3",
            title="Shared room for students",
            description="Room in a student flat share near campus",
            price=500,
            rooms=1,
            latitude=52.4810,
            longitude=13.4350,
            address="Weserstrasse 5",
            district="Neukoelln",
            amenities=frozenset({"wifi"}),
            completeness=0.5,
            media_quality=0.5,
            favorites=0,
            messages=0,
            views=10,
            created_at=datetime(2026, 1, 10, tzinfo=timezone.utc),
        ),
        ListingCandidate(
            listing_id="l4",
            title="Luxury loft",
            description="Penthouse loft with elevator and wifi",
            price=3000,
            rooms=3,
            latitude=52.5250,
            longitude=13.4000,
            address="Linienstrasse 40",
            district="Mitte",
            amenities=frozenset({"elevator", "wifi"}),
            completeness=1.0,
            media_quality=1.0,
            favorites=10,
            messages=5,
            views=900,
            owner_verified=True,
        ),
    ]

