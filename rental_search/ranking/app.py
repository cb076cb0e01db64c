from fastapi import FastAPI
from fastapi.responses import JSONResponse

from rental_search.common.api import error_response, ok_response
from rental_search.ranking.api_models import FeedbackRequestModel, RankRequestModel
from rental_search.ranking.models import RankingError, WeightConfig
from rental_search.ranking.serialization import serialize_ranked_result
from rental_search.ranking.service import RankingEngine
from rental_search.telemetry.config import build_telemetry_emitter
from rental_search.telemetry.models import build_feedback_event

app = FastAPI(title="Ranking", docs_url=None, redoc_url=None)

_engine = RankingEngine()
_telemetry = build_telemetry_emitter()


@app.post("/rank")
def rank_listings(request: RankRequestModel):
    if request.schema_version != "v1":
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "schema_version must be v1"),
        )
    try:
        weights = WeightConfig.from_mapping(request.weights)
    except RankingError as exc:
        return JSONResponse(
            status_code=400,
            content=error_response(exc.code, str(exc), exc.details),
        )
    preferences = request.preferences.to_preferences() if request.preferences else None
    results = _engine.rank([item.to_candidate() for item in request.candidates], preferences, weights)
    return ok_response(
        {
            "results": [serialize_ranked_result(item) for item in results],
            "weights": weights.as_dict(),
        }
    )


@app.post("/ranking/feedback")
def ranking_feedback(request: FeedbackRequestModel):
    if request.schema_version != "v1":
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "schema_version must be v1"),
        )
    preferences = request.preferences.to_preferences() if request.preferences else None
    ranked = _engine.rank([request.listing.to_candidate()], preferences, variant_id=request.variant_id)[0]
    event = build_feedback_event(
        ranked,
        user_id=request.user_id,
        feedback=request.feedback,
        displayed_rank=request.displayed_rank,
        displayed_score=request.displayed_score,
        experiment_id=request.experiment_id,
        search_id=request.search_id,
    )
    _telemetry.emit_event(event)
    return ok_response(
        {
            "event_id": event.event_id,
            "listing_id": event.listing_id,
            "feedback": event.feedback.value,
            "displayed_score": event.displayed_score,
            "components": event.components,
        }
    )
