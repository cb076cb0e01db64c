import logging
from dataclasses import asdict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from rental_search.common.api import error_response, ok_response
from rental_search.ranking.serialization import serialize_ranked_result
from rental_search.scoring.config import build_scoring_service
from rental_search.search.api_models import SearchRequestModel
from rental_search.search.config import build_search_service
from rental_search.search.models import SearchRequest, SearchResponse, SearchUnavailableError

logger = logging.getLogger(__name__)

app = FastAPI(title="Search", docs_url=None, redoc_url=None)

_scoring = build_scoring_service()
_service = build_search_service(scoring=_scoring)


def _serialize_response(response: SearchResponse) -> dict:
    return {
        "search_id": response.search_id,
        "results": [serialize_ranked_result(item) for item in response.results],
        "count": response.count,
        "total_candidates": response.total_candidates,
        "method": response.method.value,
        "fallback": response.fallback,
        "variant_id": response.variant_id,
        "experiment_id": response.experiment_id,
        "diagnostics": asdict(response.diagnostics),
    }


@app.post("/search")
def search(request: SearchRequestModel):
    if request.schema_version != "v1":
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "schema_version must be v1"),
        )
    try:
        filters = request.to_filters()
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", str(exc)),
        )
    search_request = SearchRequest(
        query=request.query,
        filters=filters,
        user_id=request.user_id,
        include_ai_score=request.include_ai_score,
        preferences=request.preferences.to_preferences() if request.preferences else None,
    )
    try:
        response = _service.search(search_request)
    except SearchUnavailableError as exc:
        logger.error("search unavailable: %s", exc.details)
        return JSONResponse(
            status_code=503,
            content=error_response(exc.code, str(exc), exc.details),
        )
    return ok_response(_serialize_response(response))


@app.get("/search/metrics")
def search_metrics():
    return ok_response(_service.metrics_snapshot())
