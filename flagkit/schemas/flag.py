"""Feature flag schemas (2-value model)."""
from datetime import datetime
from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr
from typing import Literal, Optional, Union

from flagkit.schemas.targeting import TargetingRules

FlagType = Literal["boolean", "string", "number"]

# Which member is legal is decided by flag_type (see core.validation)
FlagValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]

FLAG_KEY_PATTERN = r"^[a-z][a-z0-9_-]*$"


class Flag(BaseModel):
    """One version of a feature flag."""

    platform: str
    environment: str
    flag_key: str
    version: int
    revision: int = 1
    is_active: bool

    name: str
    description: Optional[str] = None

    enabled: bool
    flag_type: FlagType
    value_a: FlagValue
    value_b: FlagValue

    targeting: TargetingRules = Field(default_factory=TargetingRules)

    rollout_enabled: bool = False
    rollout_percentage_a: int = 100
    rollout_percentage_b: int = 0

    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FlagCreate(BaseModel):
    """Request to create a flag (version 1)."""

    flag_key: str = Field(..., min_length=1, max_length=100, pattern=FLAG_KEY_PATTERN)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    enabled: bool = False
    flag_type: FlagType = "boolean"
    value_a: Optional[FlagValue] = Field(None, description="Defaults to true for boolean flags")
    value_b: Optional[FlagValue] = Field(None, description="Defaults to false for boolean flags")
    targeting: TargetingRules = Field(default_factory=TargetingRules)
    rollout_enabled: Optional[bool] = None
    rollout_percentage_a: Optional[int] = Field(None, ge=0, le=100)
    rollout_percentage_b: Optional[int] = Field(None, ge=0, le=100)
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "flag_key": "dark-mode",
                "name": "Dark mode",
                "enabled": True,
                "flag_type": "boolean",
                "targeting": {"countries": [{"country": "DE", "serve_value": "B"}]},
                "rollout_enabled": True,
                "rollout_percentage_a": 30,
                "rollout_percentage_b": 70
            }
        }


class FlagUpdate(BaseModel):
    """Request to edit a flag. Creates a new version unless only `enabled` or rollout fields are set."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    enabled: Optional[bool] = None
    value_a: Optional[FlagValue] = None
    value_b: Optional[FlagValue] = None
    targeting: Optional[TargetingRules] = None
    rollout_enabled: Optional[bool] = None
    rollout_percentage_a: Optional[int] = Field(None, ge=0, le=100)
    rollout_percentage_b: Optional[int] = Field(None, ge=0, le=100)
    created_by: Optional[str] = None
    expected_version: Optional[int] = Field(
        None,
        description="Reject with 409 unless this is still the active version"
    )
    expected_revision: Optional[int] = Field(
        None,
        description="Reject with 409 if any write, in place or not, happened since this revision"
    )


class RolloutUpdate(BaseModel):
    """In-place rollout change. A missing percentage is derived from the other."""

    rollout_enabled: Optional[bool] = None
    rollout_percentage_a: Optional[int] = Field(None, ge=0, le=100)
    rollout_percentage_b: Optional[int] = Field(None, ge=0, le=100)
    expected_version: Optional[int] = None
    expected_revision: Optional[int] = None


class FlagToggle(BaseModel):
    """In-place enabled switch."""

    enabled: bool
    expected_version: Optional[int] = None
    expected_revision: Optional[int] = None
