from fastapi import FastAPI
from fastapi.responses import JSONResponse

from rental_search.cache.keys import canonicalize
from rental_search.common.api import error_response, ok_response
from rental_search.scoring.api_models import BatchScoreRequestModel
from rental_search.scoring.config import build_scoring_service
from rental_search.scoring.models import BatchScoringResult

app = FastAPI(title="AI Scoring", docs_url=None, redoc_url=None)

_service = build_scoring_service()


def _serialize_batch(result: BatchScoringResult) -> dict:
    return {
        "results": [canonicalize(job) for job in result.results],
        "successful": result.successful,
        "failed": result.failed,
        "total_ms": result.total_ms,
        "circuit_breaker_open": result.circuit_breaker_open,
    }


@app.post("/ai/score/batch")
def score_batch(request: BatchScoreRequestModel):
    if request.schema_version != "v1":
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "schema_version must be v1"),
        )
    result = _service.score_batch(
        [item.to_candidate() for item in request.candidates],
        request.to_profile(),
    )
    return ok_response(_serialize_batch(result))


@app.get("/ai/score/status")
def scoring_status():
    return ok_response(
        {
            "circuit_breaker": canonicalize(_service.circuit_breaker_status()),
            "cache": _service.cache_stats().as_dict(),
        }
    )


@app.post("/ai/score/reset")
def reset_circuit_breaker():
    _service.reset_circuit_breaker()
    return ok_response({"circuit_breaker": canonicalize(_service.circuit_breaker_status())})
