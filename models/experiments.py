from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from typing import Literal
from models.results import ExperimentResults

# --- Pydantic Models for Requests/Responses ---

class VariantCreate(BaseModel):
    """Defines a variant and its designed traffic share."""
    name: str = Field(..., description="Display name of the variant (e.g., 'Green Button').")
    description: str | None = None
    is_control: bool = False
    traffic_percentage: float = Field(..., ge=0, le=100, description="Traffic percentage (e.g., 50.0).")

class ExperimentCreate(BaseModel):
    """Schema for creating a new experiment via POST /experiments."""
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    hypothesis: str | None = Field(None, max_length=1000)
    variants: list[VariantCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_single_control(self):
        controls = [v for v in self.variants if v.is_control]
        if len(controls) > 1:
            raise ValueError("An experiment can have at most one control variant.")
        return self

class VariantResponse(BaseModel):
    id: int
    name: str
    is_control: bool
    traffic_percentage: float

    model_config = ConfigDict(from_attributes=True)

class ExperimentResponse(BaseModel):
    """Schema for the response after creating or updating an experiment."""
    id: int
    name: str
    description: str | None = None
    hypothesis: str | None = None
    status: str
    winner_variant_id: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    variants: list[VariantResponse] = []

    model_config = ConfigDict(from_attributes=True)

ExperimentStatus = Literal["draft", "active", "paused", "completed", "archived"]

class ExperimentDetails(BaseModel):
    """Schema returned by GET /experiments/{id}: the experiment with its current results."""
    experiment: ExperimentResponse
    results: ExperimentResults | None = None

class ExperimentAction(BaseModel):
    """Schema for POST /experiments/{id}/status."""
    action: Literal["start", "pause", "complete", "archive"]
    # Overrides the computed winner when completing
    winner_variant_id: int | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def check_winner_only_on_complete(self):
        if self.winner_variant_id is not None and self.action != "complete":
            raise ValueError("winner_variant_id can only be given when completing an experiment.")
        return self
