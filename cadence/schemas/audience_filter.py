"""
Audience filter - the shared predicate shape for Audience.filter_config and Broadcast.filters.
Every key is optional; None means "no constraint on that dimension".
score_min=0 is a real floor. has_phone/has_email only narrow when true;
False is kept but imposes no constraint.
"""
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from cadence.utils.timezone import as_utc


class AudienceFilter(BaseModel):
    status: Optional[str] = None
    has_phone: Optional[bool] = None
    has_email: Optional[bool] = None
    source: Optional[str] = None
    score_min: Optional[int] = Field(default=None, ge=0, le=100)
    score_max: Optional[int] = Field(default=None, ge=0, le=100)
    tags: Optional[list[str]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    last_contact_after: Optional[datetime] = None
    last_contact_before: Optional[datetime] = None
    assigned_to: Optional[uuid.UUID] = None

    @field_validator("status", "source", "assigned_to", mode="before")
    @classmethod
    def _blank_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = [v]
        cleaned = [t.strip() for t in v if isinstance(t, str) and t.strip()]
        return cleaned or None

    @field_validator(
        "created_after", "created_before", "last_contact_after", "last_contact_before",
        mode="before",
    )
    @classmethod
    def _blank_date_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator(
        "created_after", "created_before", "last_contact_after", "last_contact_before",
    )
    @classmethod
    def _normalize_utc(cls, v):
        # Naive inputs are taken as UTC
        return as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _check_score_range(self):
        if self.score_min is not None and self.score_max is not None and self.score_min > self.score_max:
            raise ValueError("score_min cannot be greater than score_max")
        return self

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "AudienceFilter":
        """Build a filter from a stored JSON config. Unknown keys are ignored."""
        return cls.model_validate(config or {})

    def to_config(self) -> dict:
        """JSON-safe dict holding only the present keys."""
        return self.model_dump(mode="json", exclude_none=True)

    @property
    def is_empty(self) -> bool:
        return not self.to_config()
