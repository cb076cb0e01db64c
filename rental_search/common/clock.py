from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class FrozenClock(Clock):
    def __init__(self, now: Optional[datetime] = None) -> None:
        self._now = now or datetime.now(tz=timezone.utc)
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)
        self._monotonic += seconds


class Deadline:
    """Absolute time budget for one request, shared by every outbound call it makes.

    ``remaining()`` never goes below zero, so it can be passed straight into
    ``Future.result(timeout=...)`` or an HTTP client timeout.
    """

    def __init__(self, timeout_s: Optional[float], *, clock: Optional[Clock] = None) -> None:
        self._clock = clock or Clock()
        self._expires_at = None if timeout_s is None else self._clock.monotonic() + timeout_s
        self._cancelled = threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    def remaining(self, cap: Optional[float] = None) -> Optional[float]:
        if self._cancelled.is_set():
            return 0.0
        if self._expires_at is None:
            return cap
        left = max(0.0, self._expires_at - self._clock.monotonic())
        if cap is None:
            return left
        return min(left, cap)

    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        if self._expires_at is None:
            return False
        return self._clock.monotonic() >= self._expires_at

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()
