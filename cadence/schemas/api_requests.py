"""
Request bodies for the marketing API.
"""
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CampaignCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    goal: Optional[str] = None
    delivery_config: Optional[dict] = None
    scheduled_for: Optional[datetime] = None


class CampaignUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    goal: Optional[str] = None
    delivery_config: Optional[dict] = None
    scheduled_for: Optional[datetime] = None
    engagement_score: Optional[float] = None


class QuickCampaignRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    channel: str = "whatsapp"
    filters: dict = Field(default_factory=dict)


class LinkAudienceRequest(BaseModel):
    audience_id: Optional[uuid.UUID] = None


class AudienceCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    filter_config: dict = Field(default_factory=dict)
    type: str = "dynamic"


class AudienceUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    filter_config: Optional[dict] = None


class FilterPreviewRequest(BaseModel):
    filters: dict = Field(default_factory=dict)


class SequenceCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    trigger_type: str = "manual"
    is_active: bool = True


class StepCreateRequest(BaseModel):
    type: str
    channel: Optional[str] = None
    name: Optional[str] = None
    content: Optional[dict] = None
    delay_config: Optional[dict] = None
    condition_config: Optional[dict] = None


class StepUpdateRequest(BaseModel):
    name: Optional[str] = None
    channel: Optional[str] = None
    content: Optional[dict] = None
    delay_config: Optional[dict] = None
    condition_config: Optional[dict] = None


class BroadcastCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    channel: str = "whatsapp"
    subject: Optional[str] = None
    filters: dict = Field(default_factory=dict)
    scheduled_at: Optional[datetime] = None


class InboundMessageRequest(BaseModel):
    channel: str = "whatsapp"
    body: str = ""
