"""Pydantic schemas for request/response validation."""
from flagkit.schemas.targeting import CountryRule, TargetingRules, UserContext
from flagkit.schemas.flag import Flag, FlagCreate, FlagToggle, FlagUpdate, RolloutUpdate
from flagkit.schemas.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentStatus,
    ExperimentTransition,
    ExperimentUpdate,
    TrafficAllocationUpdate,
    TrafficSplit,
    Variation,
)
from flagkit.schemas.evaluation import BatchEvaluation, ExperimentDecision, ExposureEvent, FlagDecision, Page

__all__ = [
    "CountryRule",
    "TargetingRules",
    "UserContext",
    "Flag",
    "FlagCreate",
    "FlagToggle",
    "FlagUpdate",
    "RolloutUpdate",
    "Experiment",
    "ExperimentCreate",
    "ExperimentStatus",
    "ExperimentTransition",
    "ExperimentUpdate",
    "TrafficAllocationUpdate",
    "TrafficSplit",
    "Variation",
    "BatchEvaluation",
    "ExperimentDecision",
    "ExposureEvent",
    "FlagDecision",
    "Page",
]
