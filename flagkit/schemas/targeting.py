"""Targeting rules and the user context they are evaluated against."""
import re
from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional

ServeValue = Literal["A", "B"]

_TWO_LETTERS = re.compile(r"^[A-Za-z]{2}$")


def normalize_country(value: Optional[str]) -> Optional[str]:
    """Validate an ISO-3166 alpha-2 code and return it upper-cased."""
    if value is None:
        return None
    if not _TWO_LETTERS.match(value):
        raise ValueError("country must be a 2-letter ISO-3166 code")
    return value.upper()


def normalize_language(value: Optional[str]) -> Optional[str]:
    """Validate an ISO-639-1 code and return it lower-cased."""
    if value is None:
        return None
    if not _TWO_LETTERS.match(value):
        raise ValueError("language must be a 2-letter ISO-639 code")
    return value.lower()


class CountryRule(BaseModel):
    """Country rule with an optional language narrowing and serve override."""

    country: str = Field(..., description="ISO-3166 alpha-2 country code")
    languages: Optional[List[str]] = Field(
        None,
        description="ISO-639 codes; omitted or empty matches every language"
    )
    serve_value: Optional[ServeValue] = Field(
        None,
        description="Flags only: value forced when the rule matches"
    )

    @field_validator("country")
    @classmethod
    def validate_country(cls, v):
        return normalize_country(v)

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v):
        if v is None:
            return v
        return [normalize_language(language) for language in v]


class TargetingRules(BaseModel):
    """Targeting attached to a flag or an experiment."""

    countries: List[CountryRule] = Field(default_factory=list)
    force_include_users: List[str] = Field(default_factory=list)
    force_exclude_users: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "countries": [
                    {"country": "AE", "languages": ["ar"], "serve_value": "B"},
                    {"country": "US"}
                ],
                "force_include_users": ["beta-tester-1"],
                "force_exclude_users": ["qa-bot"]
            }
        }


class UserContext(BaseModel):
    """Who a flag or experiment is being decided for. Never persisted."""

    user_id: str = Field(
        "",
        max_length=256,
        description="Stable user, session or device id; empty for anonymous"
    )
    country: Optional[str] = Field(None, description="ISO-3166 alpha-2 code")
    language: Optional[str] = Field(None, description="ISO-639 code")

    @field_validator("country")
    @classmethod
    def validate_country(cls, v):
        return normalize_country(v)

    @field_validator("language")
    @classmethod
    def validate_language(cls, v):
        return normalize_language(v)

    class Config:
        json_schema_extra = {
            "example": {"user_id": "user_123", "country": "AE", "language": "ar"}
        }
