from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from data.database import Experiment, RecordedEvent, Variant, VariantDailyStat
from models.experiments import ExperimentCreate
from models.results import DailyConversions, Variant as VariantRecord, VariantAnalytics
from datetime import datetime, timezone
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)

# Define the maximum number of times to retry the bucket insert
MAX_RETRIES = 3

EVENT_TYPES = ("visit", "view", "conversion")

# Only running experiments count traffic
COUNTING_STATUS = "active"

# --- Experiment Creation ---
def create_new_experiment(db: Session, experiment_data: ExperimentCreate) -> Experiment:
    """Creates a new experiment and its associated variants."""
    db_experiment = Experiment(
        name=experiment_data.name,
        description=experiment_data.description,
        hypothesis=experiment_data.hypothesis,
    )
    db.add(db_experiment)
    db.flush() # Flush to get the experiment ID before committing

    for v in experiment_data.variants:
        db_variant = Variant(
            experiment_id=db_experiment.id,
            name=v.name,
            description=v.description,
            is_control=v.is_control,
            traffic_percentage=v.traffic_percentage,
        )
        db.add(db_variant)

    db.commit()
    db.refresh(db_experiment)
    logger.info("create new experiment %s success with experiment id: %d", experiment_data.name, db_experiment.id)
    return db_experiment

def get_experiment(db: Session, experiment_id: int) -> Experiment:
    """ Get experiment from database, 404 when missing """
    experiment = db.query(Experiment).filter(Experiment.id == experiment_id).one_or_none()
    if not experiment:
        raise HTTPException(status_code=404, detail="Experiment not found.")
    return experiment

def list_experiments(db: Session, status: str | None = None, page: int = 1, limit: int = 20) -> list[Experiment]:
    """ Experiments newest first, optionally narrowed to one status """
    query = db.query(Experiment)
    if status and status != "all":
        query = query.filter(Experiment.status == status)

    experiments = query.order_by(Experiment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    logger.debug("list_experiments status=%s page=%d: %d experiments", status, page, len(experiments))
    return experiments

# --- Engine Records ---
def to_variant_record(variant: Variant) -> VariantRecord:
    """Maps a stored variant and its day buckets onto the record the analysis engine reads."""
    visitors = variant.visitors or 0
    conversions = variant.conversions or 0
    return VariantRecord(
        id=str(variant.id),
        name=variant.name,
        description=variant.description,
        is_control=variant.is_control,
        traffic_percentage=variant.traffic_percentage or 0.0,
        visitors=visitors,
        conversions=conversions,
        # NaN without visitors, the same rule the results use
        conversion_rate=(conversions / visitors) * 100 if visitors > 0 else float("nan"),
        analytics=VariantAnalytics(
            total_views=variant.total_views or 0,
            conversions_by_day=[
                DailyConversions(date=stat.day.isoformat(), visitors=stat.visitors, conversions=stat.conversions)
                for stat in variant.daily_stats
            ],
        ),
    )

def load_variant_records(db: Session, experiment_id: int) -> list[VariantRecord]:
    """ Current variant set of an experiment, in creation order """
    variants = db.query(Variant).filter(
        Variant.experiment_id == experiment_id
    ).order_by(Variant.id).all()

    logger.debug("load_variant_records %d: %d variants", experiment_id, len(variants))
    return [to_variant_record(v) for v in variants]

# --- Event Recording ---
def _get_or_create_bucket(db: Session, variant_id: int, day) -> VariantDailyStat:
    """ Fetches the day bucket of a variant, creating it on first use.
    Must run before anything else is pending in the session: a concurrent
    insert of the same bucket rolls the session back and retries as a lookup. """
    for attempt in range(MAX_RETRIES):
        bucket = db.query(VariantDailyStat).filter(
            VariantDailyStat.variant_id == variant_id,
            VariantDailyStat.day == day,
        ).one_or_none()
        if bucket:
            return bucket

        bucket = VariantDailyStat(variant_id=variant_id, day=day, visitors=0, conversions=0)
        db.add(bucket)
        try:
            db.flush()
            return bucket
        except IntegrityError:
            db.rollback()
            logger.warning("bucket %s for variant %d created concurrently (attempt %d)", day, variant_id, attempt + 1)

    raise RuntimeError(f"Could not create bucket {day} for variant {variant_id} after {MAX_RETRIES} attempts.")

def _already_recorded(db: Session, event_id: str) -> bool:
    return db.query(RecordedEvent.id).filter(RecordedEvent.event_id == event_id).first() is not None

def record_event(
    db: Session,
    variant_id: int,
    event_type: str,
    occurred_at: datetime | None = None,
    event_id: str | None = None,
) -> Variant:
    """
    Applies one tracking event to the variant's counters and to its day bucket.
    'visit' counts a unique exposure, 'view' only bumps the view counter,
    'conversion' counts a successful outcome.

    Events are only counted while the experiment is active. When an event_id
    is given it is stored with the increments, and a second delivery of the
    same id leaves the counters untouched.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")

    variant = db.query(Variant).filter(Variant.id == variant_id).one_or_none()
    if not variant:
        raise LookupError(f"Variant {variant_id} not found.")

    experiment_status = variant.experiment.status
    if experiment_status != COUNTING_STATUS:
        raise LookupError(f"Experiment {variant.experiment_id} is {experiment_status}, not counting events.")

    if event_id and _already_recorded(db, event_id):
        logger.info("event %s for variant %d already recorded, skipping", event_id, variant.id)
        return variant

    occurred_at = occurred_at or datetime.now(timezone.utc)
    if occurred_at.tzinfo is not None:
        occurred_at = occurred_at.astimezone(timezone.utc)
    day = occurred_at.date()

    if event_type == "view":
        variant.total_views = (variant.total_views or 0) + 1
    else:
        bucket = _get_or_create_bucket(db, variant.id, day)
        if event_type == "visit":
            variant.visitors = (variant.visitors or 0) + 1
            variant.total_views = (variant.total_views or 0) + 1
            bucket.visitors += 1
        else:
            variant.conversions = (variant.conversions or 0) + 1
            bucket.conversions += 1

    if event_id:
        db.add(RecordedEvent(event_id=event_id, variant_id=variant.id, type=event_type))

    try:
        db.commit()
    except IntegrityError:
        if not event_id:
            raise
        # The same event was committed concurrently by another delivery
        db.rollback()
        logger.warning("event %s for variant %d recorded concurrently, skipping", event_id, variant.id)
        return variant

    db.refresh(variant)
    logger.debug("recorded %s for variant %d on %s", event_type, variant.id, day)
    return variant
