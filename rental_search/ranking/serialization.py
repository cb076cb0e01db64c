from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

from rental_search.ranking.models import RankedResult


def serialize_ranked_result(result: RankedResult) -> Dict[str, Any]:
    listing = result.candidate
    return {
        "listing_id": result.listing_id,
        "rank": result.rank,
        "score": result.score,
        "components": result.components.as_dict(),
        "pros": list(result.pros),
        "cons": list(result.cons),
        "origin": result.origin.value if result.origin else None,
        "origins": [origin.value for origin in result.origins],
        "distance_m": result.distance_m,
        "variant_id": result.variant_id,
        "personalization": asdict(result.personalization) if result.personalization else None,
        "listing": {
            "title": listing.title,
            "price": listing.price,
            "rooms": listing.rooms,
            "district": listing.district,
            "address": listing.address,
        },
    }
