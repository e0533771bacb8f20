from fastapi import APIRouter, Query, Response, status
from pydantic import TypeAdapter
from sqlalchemy.orm import Session
from typing import Literal

from models.experiments import ExperimentAction, ExperimentCreate, ExperimentDetails, ExperimentResponse, ExperimentStatus
from models.results import ExperimentResults, TimelinePoint, Variant
from services import lifecycle, results, timeline, variants
from services.cache import CacheClient
from api.depends import CLIENT_AUTH, DB_DEPENDENCY, CACHE_CLIENT

import logging

logger = logging.getLogger(__name__)

experiment_router = APIRouter(
    prefix="/experiments",
    tags=["experiments"],
    dependencies=[CLIENT_AUTH], # CLIENT_AUTH is applied to all routes in this router
)

VARIANT_LIST = TypeAdapter(list[Variant])


def _json_response(payload: str | bytes) -> Response:
    # pydantic writes NaN/inf as null, which json.dumps(allow_nan=False) would reject
    return Response(content=payload, media_type="application/json")


# POST /experiments
@experiment_router.post(
    "",
    response_model=ExperimentResponse,
    status_code=status.HTTP_201_CREATED
)
def create_experiment_route(
    experiment_data: ExperimentCreate,
    db: Session = DB_DEPENDENCY
):
    """Create a new experiment with its variants."""
    return variants.create_new_experiment(db, experiment_data)


# GET /experiments?status=active
@experiment_router.get("", response_model=list[ExperimentResponse])
def list_experiments_route(
    status_filter: ExperimentStatus | Literal["all"] | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = DB_DEPENDENCY
):
    """Experiments newest first, optionally filtered by status."""
    return variants.list_experiments(db, status=status_filter, page=page, limit=limit)


# GET /experiments/{experiment_id}
@experiment_router.get(
    "/{experiment_id}",
    response_model=ExperimentDetails,
    responses={200: {"description": "The experiment and its results; results are null without a control variant."}},
)
def get_experiment_details_route(
    experiment_id: int,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """Experiment configuration and status together with its current results."""
    experiment = variants.get_experiment(db, experiment_id)
    details = ExperimentDetails(
        experiment=ExperimentResponse.model_validate(experiment),
        results=results.get_experiment_results(db, cache, experiment_id),
    )
    return _json_response(details.model_dump_json())


# GET /experiments/{experiment_id}/variants
@experiment_router.get("/{experiment_id}/variants", response_model=list[Variant])
def get_variants_route(
    experiment_id: int,
    db: Session = DB_DEPENDENCY
):
    """
    Current counters and day buckets of every variant.
    conversion_rate is null for a variant without visitors, as in the results.
    """
    variants.get_experiment(db, experiment_id)
    records = variants.load_variant_records(db, experiment_id)
    return _json_response(VARIANT_LIST.dump_json(records))


# GET /experiments/{experiment_id}/results
@experiment_router.get(
    "/{experiment_id}/results",
    response_model=ExperimentResults | None,
    responses={200: {"description": "Results, or null when the experiment has no control variant."}},
)
def get_experiment_results_route(
    experiment_id: int,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """Uplift, significance and winner for every variant against the control."""
    experiment_results = results.get_experiment_results(db, cache, experiment_id)
    if experiment_results is None:
        logger.info("experiment %d has no control variant, returning null results", experiment_id)
        return _json_response("null")

    return _json_response(experiment_results.model_dump_json())


# GET /experiments/{experiment_id}/timeline?window=7d
@experiment_router.get("/{experiment_id}/timeline", response_model=list[TimelinePoint])
def get_experiment_timeline_route(
    experiment_id: int,
    window: Literal["7d", "14d", "30d", "all"] = Query("7d"),
    db: Session = DB_DEPENDENCY
):
    """Daily visitors and conversions summed across variants for the chosen window."""
    return timeline.get_experiment_timeline(db, experiment_id, window)


# POST /experiments/{experiment_id}/status
@experiment_router.post("/{experiment_id}/status", response_model=ExperimentResponse)
def update_experiment_status_route(
    experiment_id: int,
    action: ExperimentAction,
    db: Session = DB_DEPENDENCY
):
    """Start, pause, complete or archive an experiment. Completing may name the winner."""
    if action.reason:
        logger.info("experiment %d %s requested: %s", experiment_id, action.action, action.reason)

    return lifecycle.update_status(db, experiment_id, action.action, winner_variant_id=action.winner_variant_id)
