"""
Model -> JSON dict helpers shared by the API routes.
"""
from datetime import datetime
from typing import Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_campaign(campaign) -> dict:
    return {
        "id": str(campaign.id),
        "name": campaign.name,
        "description": campaign.description,
        "goal": campaign.goal,
        "status": campaign.status,
        "audience_id": str(campaign.audience_id) if campaign.audience_id else None,
        "scheduled_for": _iso(campaign.scheduled_for),
        "delivery_config": campaign.delivery_config or {},
        "total_enrolled": campaign.total_enrolled or 0,
        "total_completed": campaign.total_completed or 0,
        "engagement_score": campaign.engagement_score or 0.0,
        "created_at": _iso(campaign.created_at),
    }


def serialize_audience(audience) -> dict:
    return {
        "id": str(audience.id),
        "name": audience.name,
        "description": audience.description,
        "type": audience.type,
        "filter_config": audience.filter_config or {},
        "cached_count": audience.cached_count or 0,
        "last_count_at": _iso(audience.last_count_at),
    }


def serialize_step(step) -> dict:
    return {
        "id": str(step.id),
        "type": step.type,
        "channel": step.channel,
        "name": step.name,
        "order_index": step.order_index,
        "content": step.content,
        "delay_config": step.delay_config,
        "condition_config": step.condition_config,
    }


def serialize_sequence(sequence, steps: Optional[list] = None) -> dict:
    data = {
        "id": str(sequence.id),
        "campaign_id": str(sequence.campaign_id),
        "name": sequence.name,
        "trigger_type": sequence.trigger_type,
        "is_active": sequence.is_active,
    }
    if steps is not None:
        data["steps"] = [serialize_step(s) for s in steps]
    return data


def serialize_broadcast(broadcast) -> dict:
    return {
        "id": str(broadcast.id),
        "campaign_id": str(broadcast.campaign_id) if broadcast.campaign_id else None,
        "name": broadcast.name,
        "message": broadcast.message,
        "channel": broadcast.channel,
        "filters": broadcast.filters or {},
        "status": broadcast.status,
        "total_recipients": broadcast.total_recipients or 0,
        "sent_count": broadcast.sent_count or 0,
        "delivered_count": broadcast.delivered_count or 0,
        "read_count": broadcast.read_count or 0,
        "failed_count": broadcast.failed_count or 0,
        "error": broadcast.error,
        "scheduled_at": _iso(broadcast.scheduled_at),
        "sent_at": _iso(broadcast.sent_at),
        "completed_at": _iso(broadcast.completed_at),
    }
