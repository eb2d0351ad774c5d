"""Decision results and the exposure events derived from them."""
from pydantic import BaseModel, Field
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from flagkit.schemas.flag import FlagValue
from flagkit.schemas.targeting import ServeValue

DecisionSource = Literal["disabled", "forced", "rule", "rollout"]

T = TypeVar("T")


class FlagDecision(BaseModel):
    """Which value a context receives for a flag, and why."""

    flag_key: str
    value: FlagValue
    served_value: ServeValue
    source: DecisionSource
    reason: str
    bucket: Optional[int] = Field(None, description="Rollout bucket when one was computed")

    class Config:
        json_schema_extra = {
            "example": {
                "flag_key": "dark-mode",
                "value": True,
                "served_value": "A",
                "source": "rollout",
                "reason": "Assigned via percentage rollout",
                "bucket": 25
            }
        }


class ExperimentDecision(BaseModel):
    """Which variation a context receives for an experiment, if any."""

    experiment_key: str
    eligible: bool
    variation_key: Optional[str] = None
    value: Any = None
    is_control: bool = False
    record_exposure: bool = False
    reason: str
    bucket: Optional[int] = None


class ExposureEvent(BaseModel):
    """Fire-and-forget record of a decision, consumed by the stats pipeline."""

    type: Literal["flag_evaluation", "experiment_exposure"]
    platform: str
    environment: str
    key: str
    variation_or_value: str
    user_id: str
    country: Optional[str] = None


class BatchEvaluation(BaseModel):
    """Every active flag and running experiment decided for one context."""

    flags: Dict[str, FlagDecision] = Field(default_factory=dict)
    experiments: Dict[str, ExperimentDecision] = Field(default_factory=dict)


class Page(BaseModel, Generic[T]):
    """One page of a listing. `next_cursor` is opaque to clients."""

    items: List[T]
    next_cursor: Optional[str] = None
    has_more: bool = False
