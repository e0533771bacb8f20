from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta, timezone
from models.results import TimelinePoint, Variant
from services import variants as variant_service
import logging

logger = logging.getLogger(__name__)

# Days covered by each chart window, "today" comes on top
WINDOW_DAYS = {
    "7d": 7,
    "14d": 14,
    "30d": 30,
    "all": 365,
}


def generate_timeline(variants: list[Variant], window: str, today: date | None = None) -> list[TimelinePoint]:
    """
    Day-by-day visitors and conversions summed across all variants.

    Covers `today - days` through `today` inclusive, oldest first. Days
    without any bucket are reported as zeros. `today` defaults to the
    current UTC calendar day, read once per call.
    """
    if window not in WINDOW_DAYS:
        raise ValueError(f"Unknown timeline window: {window}")

    days = WINDOW_DAYS[window]
    if today is None:
        today = datetime.now(timezone.utc).date()

    start = today - timedelta(days=days)
    timeline = [TimelinePoint(date=start + timedelta(days=offset)) for offset in range(days + 1)]
    by_day = {point.date.isoformat(): point for point in timeline}

    for variant in variants:
        for bucket in variant.analytics.conversions_by_day:
            # Day granularity: any time part of the bucket date is ignored
            point = by_day.get(bucket.date[:10])
            if point is None:
                continue
            point.visitors += bucket.visitors
            point.conversions += bucket.conversions

    return timeline


def get_experiment_timeline(db: Session, experiment_id: int, window: str, today: date | None = None) -> list[TimelinePoint]:
    """Timeline of a stored experiment."""

    # Raises 404 for unknown experiments
    variant_service.get_experiment(db, experiment_id)

    records = variant_service.load_variant_records(db, experiment_id)
    logger.debug("get_experiment_timeline %d window %s over %d variants", experiment_id, window, len(records))
    return generate_timeline(records, window, today=today)
