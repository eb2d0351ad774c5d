"""Experiment schemas (multi-variant model)."""
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, List, Literal, Optional

from flagkit.schemas.targeting import TargetingRules

EXPERIMENT_KEY_PATTERN = r"^[a-z][a-z0-9_-]*$"
VARIATION_KEY_PATTERN = r"^[a-z][a-z0-9_]*$"


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


StatusAction = Literal["start", "pause", "resume", "complete", "archive"]


class Variation(BaseModel):
    key: str = Field(..., min_length=1, max_length=100, pattern=VARIATION_KEY_PATTERN)
    name: str = Field(..., min_length=1)
    value: Any = None
    is_control: bool = False


class TrafficSplit(BaseModel):
    """Share of traffic (integer percent) routed to one variation."""

    variation_key: str
    percentage: int = Field(..., ge=0, le=100)


class MetricConfig(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    event_name: str = Field(..., min_length=1)
    metric_type: Literal["conversion", "count", "sum", "average"] = "conversion"
    success_direction: Literal["increase", "decrease"] = "increase"
    value_property: Optional[str] = None


class Experiment(BaseModel):
    """One version of an experiment."""

    platform: str
    environment: str
    experiment_key: str
    version: int
    revision: int = 1
    is_active: bool

    name: str
    description: Optional[str] = None
    hypothesis: str = ""
    status: ExperimentStatus

    # Allocation order is significant: it fixes the bucket partition
    variations: List[Variation]
    traffic_allocation: List[TrafficSplit]
    targeting: TargetingRules = Field(default_factory=TargetingRules)

    primary_metric: Optional[MetricConfig] = None
    secondary_metrics: List[MetricConfig] = Field(default_factory=list)
    confidence_level: float = 0.95

    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    winner: Optional[str] = None

    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @property
    def control(self) -> Optional[Variation]:
        return next((v for v in self.variations if v.is_control), None)


class ExperimentCreate(BaseModel):
    """Request to create an experiment. Experiments start in draft."""

    experiment_key: str = Field(..., min_length=1, max_length=100, pattern=EXPERIMENT_KEY_PATTERN)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    hypothesis: str = ""
    variations: List[Variation] = Field(..., min_length=2)
    traffic_allocation: List[TrafficSplit] = Field(..., min_length=2)
    targeting: TargetingRules = Field(default_factory=TargetingRules)
    primary_metric: Optional[MetricConfig] = None
    secondary_metrics: List[MetricConfig] = Field(default_factory=list)
    confidence_level: float = Field(0.95, ge=0.8, le=0.99)
    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "experiment_key": "checkout-test",
                "name": "Checkout flow",
                "variations": [
                    {"key": "control", "name": "Classic", "value": {"layout": "multi"}, "is_control": True},
                    {"key": "single_page", "name": "Single page", "value": {"layout": "single"}}
                ],
                "traffic_allocation": [
                    {"variation_key": "control", "percentage": 50},
                    {"variation_key": "single_page", "percentage": 50}
                ]
            }
        }


class ExperimentUpdate(BaseModel):
    """Full edit, only allowed in draft. Creates a new version."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    hypothesis: Optional[str] = None
    variations: Optional[List[Variation]] = Field(None, min_length=2)
    traffic_allocation: Optional[List[TrafficSplit]] = Field(None, min_length=2)
    targeting: Optional[TargetingRules] = None
    primary_metric: Optional[MetricConfig] = None
    secondary_metrics: Optional[List[MetricConfig]] = None
    confidence_level: Optional[float] = Field(None, ge=0.8, le=0.99)
    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    created_by: Optional[str] = None
    expected_version: Optional[int] = None
    expected_revision: Optional[int] = None


class TrafficAllocationUpdate(BaseModel):
    traffic_allocation: List[TrafficSplit] = Field(..., min_length=2)
    expected_version: Optional[int] = None
    expected_revision: Optional[int] = None


class ExperimentTransition(BaseModel):
    """Body of a status change. `winner` is only read by `complete`."""

    winner: Optional[str] = None
    expected_version: Optional[int] = None
    expected_revision: Optional[int] = None
