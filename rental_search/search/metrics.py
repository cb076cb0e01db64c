from __future__ import annotations

import logging
import math
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional


logger = logging.getLogger(__name__)


def percentile(values, pct: float) -> Optional[float]:
    ordered = sorted(values)
    if not ordered:
        return None
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


class LatencyTracker:
    """Rolling window of request latencies with a p95 budget check."""

    def __init__(self, *, window: int = 1000, budget_ms: float = 250.0, min_samples: int = 10) -> None:
        self._samples: Deque[float] = deque(maxlen=window)
        self._budget_ms = budget_ms
        self._min_samples = min_samples
        self._lock = threading.Lock()
        self._breaches = 0

    def record(self, elapsed_ms: float) -> Optional[float]:
        with self._lock:
            self._samples.append(elapsed_ms)
            samples = list(self._samples)
        p95 = percentile(samples, 95)
        if len(samples) >= self._min_samples and p95 is not None and p95 > self._budget_ms:
            with self._lock:
                self._breaches += 1
            logger.warning("search p95 latency %.1fms exceeds budget %.0fms", p95, self._budget_ms)
        return p95

    def p95(self) -> Optional[float]:
        with self._lock:
            samples = list(self._samples)
        return percentile(samples, 95)

    def over_budget(self) -> bool:
        with self._lock:
            samples = list(self._samples)
        p95 = percentile(samples, 95)
        return len(samples) >= self._min_samples and p95 is not None and p95 > self._budget_ms

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            samples = list(self._samples)
            breaches = self._breaches
        p95 = percentile(samples, 95)
        return {
            "count": len(samples),
            "p50_ms": percentile(samples, 50),
            "p95_ms": p95,
            "budget_ms": self._budget_ms,
            "over_budget": len(samples) >= self._min_samples and p95 is not None and p95 > self._budget_ms,
            "budget_breaches": breaches,
        }
