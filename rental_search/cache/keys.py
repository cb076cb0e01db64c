from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


def canonicalize(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return canonicalize(asdict(value))
    if hasattr(value, "model_dump"):
        return canonicalize(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): canonicalize(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((canonicalize(item) for item in value), key=lambda item: json.dumps(item, sort_keys=True, default=str))
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def stable_hash(*parts: Any) -> str:
    payload = json.dumps([canonicalize(part) for part in parts], sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def stable_key(namespace: str, *parts: Any) -> str:
    return f"{namespace}:{stable_hash(*parts)}"


def normalize_text_key(text: str) -> str:
    return " ".join((text or "").strip().lower().split())
