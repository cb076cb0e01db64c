from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from rental_search.common.clock import Clock
from rental_search.common.enums import BreakerState
from rental_search.scoring.models import CircuitBreakerState


logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Consecutive-failure breaker around the external AI scorer.

    After ``failure_threshold`` failures in a row the breaker opens and every call
    is refused until ``cooldown_s`` has passed. The first caller after the cooldown
    gets a single trial call (half-open). A successful trial closes the breaker; a
    failed one opens it again for another cooldown.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        cooldown_s: float = 60.0,
        clock: Optional[Clock] = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self._failure_threshold = failure_threshold
        self._cooldown_s = cooldown_s
        self._clock = clock or Clock()
        self._lock = threading.Lock()
        self._state = BreakerState.closed
        self._failures = 0
        self._opened_monotonic: Optional[float] = None
        self._opened_at: Optional[datetime] = None
        self._last_transition_at: Optional[datetime] = None
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == BreakerState.closed:
                return True
            if self._state == BreakerState.open:
                elapsed = self._clock.monotonic() - (self._opened_monotonic or 0.0)
                if elapsed < self._cooldown_s:
                    return False
                self._transition(BreakerState.half_open)
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def headroom(self) -> int:
        """How many calls may be in flight at once without overshooting the threshold."""
        with self._lock:
            if self._state == BreakerState.closed:
                return max(1, self._failure_threshold - self._failures)
            return 1

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            if self._state != BreakerState.closed:
                self._transition(BreakerState.closed)
                self._opened_monotonic = None
                self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == BreakerState.half_open:
                self._trial_in_flight = False
                self._open()
            elif self._state == BreakerState.closed and self._failures >= self._failure_threshold:
                self._open()

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            self._opened_monotonic = None
            self._opened_at = None
            if self._state != BreakerState.closed:
                self._transition(BreakerState.closed)
        logger.info("circuit breaker reset")

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._state == BreakerState.open

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                consecutive_failures=self._failures,
                failure_threshold=self._failure_threshold,
                cooldown_s=self._cooldown_s,
                last_transition_at=self._last_transition_at,
                opened_at=self._opened_at,
            )

    def _open(self) -> None:
        self._opened_monotonic = self._clock.monotonic()
        self._opened_at = self._clock.now()
        self._transition(BreakerState.open)
        logger.warning(
            "circuit breaker opened after %s consecutive failures; cooling down for %.0fs",
            self._failures,
            self._cooldown_s,
        )

    def _transition(self, state: BreakerState) -> None:
        if state != self._state:
            logger.info("circuit breaker %s -> %s", self._state.value, state.value)
        self._state = state
        self._last_transition_at = self._clock.now()
