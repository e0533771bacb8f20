from pydantic import BaseModel, Field
from typing import Literal
from datetime import datetime, timezone
import uuid

class EventCreate(BaseModel):
    """Schema for tracking a visit, view or conversion via POST /events."""
    event_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        min_length=1,
        max_length=64,
        description="Client id of the event. Resending the same id does not count it twice.",
    )
    variant_id: int
    type: Literal["visit", "view", "conversion"] = Field(..., description="Kind of exposure or outcome.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
