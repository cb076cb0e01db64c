from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from rental_search.common.clock import Clock


T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int
    max_entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_entries": self.max_entries,
            "hit_rate": round(self.hit_rate, 4),
        }


class TTLCache(Generic[T]):
    """Bounded least-recently-used cache with a time-to-live on every entry.

    Expired entries count as misses and are dropped when touched. When the cache
    is full, inserting a new key evicts the least recently read or written entry.
    One lock guards the entry map and the counters, so an instance can be shared
    across request threads.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        default_ttl_s: float = 300.0,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if default_ttl_s <= 0:
            raise ValueError("default_ttl_s must be positive")
        self._max_entries = max_entries
        self._default_ttl_s = default_ttl_s
        self._clock = clock or Clock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[T]:
        value = self._lookup(key)
        if value is _MISSING:
            return None
        return value

    def set(self, key: str, value: T, *, ttl_s: Optional[float] = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else ttl_s
        if ttl <= 0:
            return
        with self._lock:
            entry = CacheEntry(value=value, expires_at=self._clock.monotonic() + ttl)
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = entry
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                max_entries=self._max_entries,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return _MISSING
            if entry.expires_at <= self._clock.monotonic():
                del self._entries[key]
                self._misses += 1
                return _MISSING
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value
