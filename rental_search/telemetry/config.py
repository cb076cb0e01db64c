from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from rental_search.telemetry.sink import InMemoryTelemetrySink, RQTelemetrySink, TelemetryEmitter, TelemetrySink


@dataclass(frozen=True)
class TelemetryConfig:
    asynchronous: bool = True
    queue_name: str = "telemetry"
    redis_url: Optional[str] = None


def load_telemetry_config() -> TelemetryConfig:
    return TelemetryConfig(
        asynchronous=os.getenv("TELEMETRY_ASYNC", "true").lower() == "true",
        queue_name=os.getenv("TELEMETRY_QUEUE", TelemetryConfig.queue_name),
        redis_url=os.getenv("REDIS_URL") or None,
    )


def build_telemetry_sink(cfg: TelemetryConfig) -> TelemetrySink:
    if not cfg.redis_url:
        return InMemoryTelemetrySink()
    from redis import Redis

    return RQTelemetrySink(queue_name=cfg.queue_name, connection=Redis.from_url(cfg.redis_url))


def build_telemetry_emitter(*, config: Optional[TelemetryConfig] = None) -> TelemetryEmitter:
    cfg = config or load_telemetry_config()
    return TelemetryEmitter(build_telemetry_sink(cfg), asynchronous=cfg.asynchronous)
