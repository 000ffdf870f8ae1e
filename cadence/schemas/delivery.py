"""
Campaign delivery configuration stored as JSONB on Campaign.delivery_config.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

DeliveryMode = Literal["stealth", "growth", "turbo"]


class ScheduleWindow(BaseModel):
    """Local-time send window [start, end) in whole hours."""
    start: int = Field(default=9, ge=0, le=23)
    end: int = Field(default=18, ge=1, le=24)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError("schedule_window start must be before end")
        return self


class DeliveryConfig(BaseModel):
    mode: DeliveryMode = "growth"
    humanize: bool = False
    schedule_window: ScheduleWindow = Field(default_factory=ScheduleWindow)
    timezone: Optional[str] = None  # IANA name; falls back to settings.default_send_timezone
    weekdays_only: bool = False

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "DeliveryConfig":
        # A null window in stored config still gets the default: the window cannot be disabled
        data = dict(config or {})
        if data.get("schedule_window") is None:
            data.pop("schedule_window", None)
        return cls.model_validate(data)
