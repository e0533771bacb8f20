from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from typing import Any
from models.events import EventCreate
from api.depends import CLIENT_AUTH

# Import the Celery task
from celery_tasks.event_tasks import record_variant_event
import logging

logger = logging.getLogger(__name__)

events_router = APIRouter(
    prefix="/events",
    tags=["events"],
    dependencies=[CLIENT_AUTH]
)

# POST /events
@events_router.post("", status_code=status.HTTP_202_ACCEPTED)
def record_event_route(event_data: EventCreate):
    """
    Track a visit, view or conversion for a variant.
    The event is handed to a celery worker which updates the variant counters
    and its day bucket, so this returns as soon as the task is queued.
    """

    # Celery requires simple serializable types (like string for datetime)
    task_payload: dict[str, Any] = {
        'event_id': event_data.event_id,
        'variant_id': event_data.variant_id,
        'type': event_data.type,
        'timestamp': event_data.timestamp.isoformat(),
    }

    task = record_variant_event.delay(task_payload)
    logger.debug("record_variant_event queued as task %s", task.id)

    return JSONResponse(content={"status": "success", "task_id": task.id}, status_code=status.HTTP_202_ACCEPTED)
