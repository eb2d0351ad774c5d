"""Database models."""
from flagkit.models.api_key import ApiKey
from flagkit.models.flag import FlagVersion
from flagkit.models.experiment import ExperimentVersion

__all__ = ["ApiKey", "FlagVersion", "ExperimentVersion"]
