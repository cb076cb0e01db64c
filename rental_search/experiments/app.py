from dataclasses import asdict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from rental_search.cache.keys import canonicalize
from rental_search.common.api import error_response, ok_response
from rental_search.experiments.api_models import (
    CreateExperimentAction,
    ExperimentRequestModel,
    StartExperimentAction,
    StopExperimentAction,
    TrackEventAction,
)
from rental_search.experiments.models import Experiment, ExperimentError
from rental_search.experiments.repository import ExperimentRepository, InMemoryUserDirectory
from rental_search.experiments.service import ExperimentService

app = FastAPI(title="Experiments", docs_url=None, redoc_url=None)

_repository = ExperimentRepository()
_users = InMemoryUserDirectory()
_service = ExperimentService(_repository, users=_users)

_STATUS_BY_CODE = {"NOT_FOUND": 404, "EXPERIMENT_STATE_ERROR": 409}


def _serialize_experiment(experiment: Experiment) -> dict:
    return canonicalize(experiment)


def _error(exc: ExperimentError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 400),
        content=error_response(exc.code, str(exc), exc.details),
    )


@app.post("/experiments")
def experiment_operation(request: ExperimentRequestModel):
    if request.schema_version != "v1":
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "schema_version must be v1"),
        )
    operation = request.operation
    try:
        if isinstance(operation, CreateExperimentAction):
            experiment = _service.create_experiment(
                experiment_id=operation.experiment_id,
                name=operation.name,
                description=operation.description,
                variants=[variant.to_variant() for variant in operation.variants],
                metrics=[metric.to_metric() for metric in operation.metrics],
                baseline_variant_id=operation.baseline_variant_id,
                audience=operation.audience.to_audience() if operation.audience else None,
            )
            return ok_response({"experiment": _serialize_experiment(experiment)})
        if isinstance(operation, StartExperimentAction):
            experiment = _service.start_experiment(operation.experiment_id)
            return ok_response({"experiment": _serialize_experiment(experiment)})
        if isinstance(operation, StopExperimentAction):
            experiment = _service.stop_experiment(operation.experiment_id)
            return ok_response({"experiment": _serialize_experiment(experiment)})
        if isinstance(operation, TrackEventAction):
            event = _service.track_event(
                operation.user_id,
                operation.experiment_id,
                operation.event_name,
                operation.properties,
            )
            return ok_response(
                {
                    "tracked": event is not None,
                    "variant_id": event.variant_id if event is not None else None,
                }
            )
    except ExperimentError as exc:
        return _error(exc)
    return JSONResponse(
        status_code=400,
        content=error_response("VALIDATION_ERROR", "unsupported action"),
    )


@app.get("/experiments/{experiment_id}/variant")
def experiment_variant(experiment_id: str, user_id: str):
    try:
        assignment = _service.assign(user_id, experiment_id)
        config = _service.get_variant_config(user_id, experiment_id)
    except ExperimentError as exc:
        return _error(exc)
    payload = asdict(assignment)
    payload["config"] = canonicalize(config)
    return ok_response(payload)


@app.get("/experiments/{experiment_id}/results")
def experiment_results(experiment_id: str):
    try:
        experiment = _service.get_experiment(experiment_id)
        results = _service.get_results(experiment_id)
    except ExperimentError as exc:
        return _error(exc)
    return ok_response(
        {
            "experiment_id": experiment_id,
            "status": experiment.status.value,
            "baseline_variant_id": experiment.baseline_variant_id,
            "variants": [asdict(result) for result in results],
        }
    )
