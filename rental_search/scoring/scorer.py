from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Protocol

from rental_search.cache.keys import canonicalize
from rental_search.common.errors import TransportError, TransportTimeoutError, TransportUnavailableError
from rental_search.common.http import JsonHttpTransport
from rental_search.retrieval.models import ListingCandidate
from rental_search.scoring.models import (
    AIScore,
    InvalidScoreError,
    ScorerError,
    ScorerTimeoutError,
    ScorerUnavailableError,
    UserProfile,
)


class AIScorer(Protocol):
    def score(self, candidate: ListingCandidate, profile: UserProfile, *, timeout_s: Optional[float] = None) -> AIScore: ...


def parse_score_payload(payload: Dict[str, Any]) -> AIScore:
    raw = payload.get("score")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise InvalidScoreError("Scorer response missing numeric score", details={"score": raw})
    score = float(raw)
    if math.isnan(score) or score < 0.0 or score > 1.0:
        raise InvalidScoreError("Scorer returned a score outside [0, 1]", details={"score": score})
    reasons_raw = payload.get("reasons") or []
    if not isinstance(reasons_raw, list):
        raise InvalidScoreError("Scorer reasons must be a list")
    reasons: List[str] = [str(reason) for reason in reasons_raw if reason]
    return AIScore(score=score, reasons=reasons)


class HttpAIScorer:
    def __init__(self, *, base_url: str, transport: Optional[JsonHttpTransport] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport or JsonHttpTransport()

    def score(self, candidate: ListingCandidate, profile: UserProfile, *, timeout_s: Optional[float] = None) -> AIScore:
        body = {"listing": canonicalize(candidate), "profile": canonicalize(profile)}
        try:
            payload = self._transport.request(
                method="POST",
                url=f"{self._base_url}/score",
                json_body=body,
                timeout_s=timeout_s,
            )
        except TransportTimeoutError as exc:
            raise ScorerTimeoutError("AI scorer timed out", details=exc.details) from exc
        except TransportUnavailableError as exc:
            raise ScorerUnavailableError("AI scorer unreachable", details=exc.details) from exc
        except TransportError as exc:
            raise ScorerError("AI scorer request failed", details=exc.details) from exc
        return parse_score_payload(payload)
