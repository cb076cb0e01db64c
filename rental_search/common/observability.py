from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List


DEFAULT_MAX_EVENTS = 1000


@dataclass(frozen=True)
class ObservabilityEvent:
    event_type: str
    details: Dict[str, object]


class ObservabilityRecorder:
    """In-process event log for one service; keeps only the newest ``max_events``."""

    def __init__(self, *, max_events: int = DEFAULT_MAX_EVENTS) -> None:
        if max_events < 1:
            raise ValueError("max_events must be positive")
        self._events: Deque[ObservabilityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record(self, event_type: str, **details: object) -> None:
        with self._lock:
            self._events.append(ObservabilityEvent(event_type=event_type, details=details))

    def events(self) -> List[ObservabilityEvent]:
        with self._lock:
            return list(self._events)
