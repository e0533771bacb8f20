from celery_config import celery_app
from data.database import SessionLocal
from services import variants
from services.cache import get_cache_client
from sqlalchemy.exc import OperationalError
from typing import Any
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


def get_db_session():
    """Provides a fresh database session for asynchronous task execution."""
    try:
        return SessionLocal()
    except OperationalError as e:
        logger.error("Failed to create database session in Celery task: %s", e)
        return None

# the result is never read, ignore it to reduce backend storage bloat
@celery_app.task(bind=True, max_retries=3, default_retry_delay=30, ignore_result=True)
def record_variant_event(self, event_data_dict: dict[str, Any]):
    """
    Applies one tracking event to the variant counters and day buckets,
    then drops the experiment's cached results so the next read recomputes them.

    The event id is stored with the increments, so a retry or a redelivery
    after the commit only repeats the cache invalidation.
    """
    # Retries and redeliveries keep the task id
    event_id = event_data_dict.get('event_id') or self.request.id

    db = None
    try:
        db = get_db_session()
        if not db:
            # Raise an exception to trigger Celery retry
            raise ConnectionError("Could not establish database session.")

        variant = variants.record_event(
            db,
            variant_id=event_data_dict['variant_id'],
            event_type=event_data_dict['type'],
            occurred_at=datetime.fromisoformat(event_data_dict['timestamp']),
            event_id=event_id,
        )
        get_cache_client().invalidate_results(variant.experiment_id)

        logger.info("Task %s[%s]. Recorded %s %s for variant %d.", self.name, self.request.id, event_data_dict['type'], event_id, variant.id)
    except LookupError as exc:
        # Unknown variant or an experiment that is not running, retrying will not help
        logger.warning("Dropping event %s: %s", event_data_dict, exc)
    except (ConnectionError, OperationalError) as exc:
        logger.error("Database connection failed in Celery task. Retrying...")
        raise self.retry(exc=exc)
    except Exception as exc:
        logger.error("Failed to record event %s: %s", event_data_dict, exc)
        raise  # re-raise so Celery marks FAILURE

    finally:
        if db:
            db.close()
