from pydantic import BaseModel, Field
import datetime


class DailyConversions(BaseModel):
    """One calendar-day bucket of traffic for a variant."""
    date: str = Field(..., description="Calendar day, ISO formatted (YYYY-MM-DD).")
    visitors: int = 0
    conversions: int = 0


class VariantAnalytics(BaseModel):
    total_views: int = 0
    # Not guaranteed to be sorted by date
    conversions_by_day: list[DailyConversions] = Field(default_factory=list)


class Variant(BaseModel):
    """One arm of an experiment, as handed to the analysis engine."""
    id: str
    name: str
    description: str | None = None
    is_control: bool = False
    traffic_percentage: float = Field(0.0, description="Designed allocation, display only.")
    visitors: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0  # (conversions / visitors) * 100, recomputed by the aggregator
    analytics: VariantAnalytics = Field(default_factory=VariantAnalytics)


class VariantResult(BaseModel):
    """Detailed statistics for a single variant."""
    variant_id: str
    conversion_rate: float
    uplift: float
    p_value: float
    confidence_interval: tuple[float, float]


class ExperimentResults(BaseModel):
    """Schema returned by GET /experiments/{id}/results."""
    variant_results: list[VariantResult]
    total_visitors: int
    total_conversions: int
    winner: str | None = None
    statistical_significance: bool = False
    confidence: float = 0.0
    improvement_percentage: float | None = None


class TimelinePoint(BaseModel):
    date: datetime.date
    visitors: int = 0
    conversions: int = 0
