from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetryRecord:
    event_type: str
    payload: Dict[str, Any]


class TelemetrySink(Protocol):
    def emit(self, event_type: str, payload: Dict[str, Any]) -> None: ...


class InMemoryTelemetrySink:
    def __init__(self) -> None:
        self._records: List[TelemetryRecord] = []
        self._lock = threading.Lock()

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._records.append(TelemetryRecord(event_type=event_type, payload=dict(payload)))

    def records(self, event_type: Optional[str] = None) -> List[TelemetryRecord]:
        with self._lock:
            records = list(self._records)
        if event_type is None:
            return records
        return [record for record in records if record.event_type == event_type]


def store_telemetry_event(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Worker-side job body for queued telemetry; logs the event for the log pipeline."""
    logger.info("telemetry %s", event_type, extra={"telemetry": payload})
    return {"event_type": event_type, "stored": True}


class RQTelemetrySink:
    def __init__(self, *, queue_name: str = "telemetry", connection, job_handler=store_telemetry_event) -> None:
        from rq import Queue

        self._queue = Queue(name=queue_name, connection=connection)
        self._job_handler = job_handler

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        self._queue.enqueue(self._job_handler, event_type, payload)


class TelemetryEmitter:
    """Fire-and-forget front for a telemetry sink.

    Sink failures are logged and counted, never raised to the caller. With
    ``asynchronous=True`` events are handed to a single background worker so a
    slow sink does not add latency to the request path; ``flush()`` waits for
    everything submitted so far.
    """

    def __init__(self, sink: TelemetrySink, *, asynchronous: bool = False) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self._dropped = 0
        self._emitted = 0
        self._pending: List[Future] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry") if asynchronous else None

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self._executor is None:
            self._deliver(event_type, payload)
            return
        try:
            future = self._executor.submit(self._deliver, event_type, payload)
        except RuntimeError:
            logger.warning("telemetry emitter closed; dropping %s event", event_type)
            with self._lock:
                self._dropped += 1
            return
        with self._lock:
            self._pending = [item for item in self._pending if not item.done()]
            self._pending.append(future)

    def emit_event(self, event: Any) -> None:
        self.emit(event.event_type, event.as_payload())

    def flush(self, timeout_s: Optional[float] = None) -> None:
        with self._lock:
            pending = list(self._pending)
            self._pending = []
        for future in pending:
            future.result(timeout=timeout_s)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"emitted": self._emitted, "dropped": self._dropped}

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _deliver(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self._sink.emit(event_type, payload)
        except Exception:
            logger.warning("telemetry sink rejected %s event", event_type, exc_info=True)
            with self._lock:
                self._dropped += 1
            return
        with self._lock:
            self._emitted += 1
