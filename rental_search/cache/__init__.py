from rental_search.cache.keys import canonicalize, normalize_text_key, stable_hash, stable_key
from rental_search.cache.lru import CacheStats, TTLCache

__all__ = [
    "CacheStats",
    "canonicalize",
    "TTLCache",
    "normalize_text_key",
    "stable_hash",
    "stable_key",
]
