from sqlalchemy.orm import Session
from datetime import datetime, timezone
from fastapi import HTTPException
from data.database import Experiment
from services import results as results_service
from services import variants as variant_service
import logging

logger = logging.getLogger(__name__)

# action -> (statuses it may be applied from, resulting status)
TRANSITIONS = {
    "start": (("draft", "paused"), "active"),
    "pause": (("active",), "paused"),
    "complete": (("active", "paused"), "completed"),
    "archive": (("draft", "paused", "completed"), "archived"),
}


def _pick_winner(db: Session, experiment: Experiment, winner_variant_id: int | None) -> int | None:
    """ The requested winner when one is given, otherwise the significant winner of the results """
    if winner_variant_id is not None:
        if winner_variant_id not in {v.id for v in experiment.variants}:
            raise HTTPException(
                status_code=400,
                detail=f"Variant {winner_variant_id} does not belong to experiment {experiment.id}.",
            )
        return winner_variant_id

    records = variant_service.load_variant_records(db, experiment.id)
    results = results_service.calculate_experiment_results(records)
    if results is not None and results.winner is not None:
        return int(results.winner)
    return None


def update_status(db: Session, experiment_id: int, action: str, winner_variant_id: int | None = None) -> Experiment:
    """
    Moves an experiment through draft -> active <-> paused -> completed -> archived.
    Completing an experiment freezes its winner: the one requested, or else
    the one the results name, if any. Draft and paused experiments can be
    archived without completing them.
    """
    if action not in TRANSITIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {action}")

    if winner_variant_id is not None and action != "complete":
        raise HTTPException(status_code=400, detail="A winner can only be chosen when completing an experiment.")

    experiment = variant_service.get_experiment(db, experiment_id)
    allowed_from, new_status = TRANSITIONS[action]

    if experiment.status not in allowed_from:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot {action} an experiment that is {experiment.status}.",
        )

    now = datetime.now(timezone.utc)
    if action == "start" and experiment.started_at is None:
        experiment.started_at = now

    if action == "complete":
        experiment.winner_variant_id = _pick_winner(db, experiment, winner_variant_id)
        experiment.ended_at = now
        logger.info("experiment %d completed with winner %s", experiment_id, experiment.winner_variant_id)

    if action == "archive" and experiment.ended_at is None:
        experiment.ended_at = now

    experiment.status = new_status
    db.commit()
    db.refresh(experiment)
    logger.info("experiment %d moved to %s: %s", experiment_id, new_status, experiment.to_json(include_relationships=False))
    return experiment
