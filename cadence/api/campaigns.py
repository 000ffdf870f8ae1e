"""
Campaign API - curation, lifecycle, enrollment and stats.
Sequences and steps live in sequences.py.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid, to_http_error
from cadence.api.serializers import (
    serialize_audience,
    serialize_broadcast,
    serialize_campaign,
    serialize_sequence,
)
from cadence.database import get_db
from cadence.schemas.api_requests import (
    CampaignCreateRequest,
    CampaignUpdateRequest,
    LinkAudienceRequest,
    QuickCampaignRequest,
)
from cadence.services import campaigns as campaign_service
from cadence.services.enrollment import enroll_campaign
from cadence.services.stats import get_campaign_stats, get_marketing_overview

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orgs/{organization_id}", tags=["campaigns"])


# === CAMPAIGNS ===


@router.get("/campaigns")
async def list_campaigns(organization_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    campaigns = await campaign_service.list_campaigns(db, org_id)
    return {"success": True, "campaigns": [serialize_campaign(c) for c in campaigns]}


@router.post("/campaigns")
async def create_campaign(
    organization_id: str,
    payload: CampaignCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        campaign = await campaign_service.create_campaign(
            db, org_id,
            name=payload.name,
            description=payload.description,
            goal=payload.goal,
            delivery_config=payload.delivery_config,
            scheduled_for=payload.scheduled_for,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "campaign": serialize_campaign(campaign)}


@router.post("/campaigns/quick")
async def create_quick_campaign(
    organization_id: str,
    payload: QuickCampaignRequest,
    db: AsyncSession = Depends(get_db),
):
    """Audience + draft campaign + one-message sequence + draft broadcast in one call."""
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        created = await campaign_service.create_quick_campaign(
            db, org_id,
            name=payload.name,
            message=payload.message,
            channel=payload.channel,
            filters=payload.filters,
        )
    except Exception as e:
        raise to_http_error(e)
    return {
        "success": True,
        "campaign": serialize_campaign(created["campaign"]),
        "audience": serialize_audience(created["audience"]),
        "sequence": serialize_sequence(created["sequence"]),
        "broadcast": serialize_broadcast(created["broadcast"]),
    }


@router.get("/campaigns/{campaign_id}")
async def get_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        campaign = await campaign_service.get_campaign(db, org_id, cid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "campaign": serialize_campaign(campaign)}


@router.patch("/campaigns/{campaign_id}")
async def update_campaign(
    organization_id: str,
    campaign_id: str,
    payload: CampaignUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        campaign = await campaign_service.update_campaign(
            db, org_id, cid, payload.model_dump(exclude_unset=True),
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "campaign": serialize_campaign(campaign)}


@router.delete("/campaigns/{campaign_id}")
async def delete_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        await campaign_service.delete_campaign(db, org_id, cid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True}


@router.put("/campaigns/{campaign_id}/audience")
async def link_audience(
    organization_id: str,
    campaign_id: str,
    payload: LinkAudienceRequest,
    db: AsyncSession = Depends(get_db),
):
    """Link an audience to the campaign. A null audience_id unlinks it."""
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        campaign = await campaign_service.link_audience(db, org_id, cid, payload.audience_id)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "campaign": serialize_campaign(campaign)}


# === LIFECYCLE ===


async def _transition(handler, organization_id: str, campaign_id: str, db: AsyncSession) -> dict:
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        campaign = await handler(db, org_id, cid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "campaign": serialize_campaign(campaign)}


@router.post("/campaigns/{campaign_id}/activate")
async def activate_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    """Draft -> active. Requires a linked audience and an elapsed schedule."""
    return await _transition(campaign_service.activate_campaign, organization_id, campaign_id, db)


@router.post("/campaigns/{campaign_id}/pause")
async def pause_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    return await _transition(campaign_service.pause_campaign, organization_id, campaign_id, db)


@router.post("/campaigns/{campaign_id}/resume")
async def resume_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    return await _transition(campaign_service.resume_campaign, organization_id, campaign_id, db)


@router.post("/campaigns/{campaign_id}/complete")
async def complete_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    return await _transition(campaign_service.complete_campaign, organization_id, campaign_id, db)


@router.post("/campaigns/{campaign_id}/archive")
async def archive_campaign(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    return await _transition(campaign_service.archive_campaign, organization_id, campaign_id, db)


# === ENROLLMENT & STATS ===


@router.post("/campaigns/{campaign_id}/enroll")
async def enroll(organization_id: str, campaign_id: str, db: AsyncSession = Depends(get_db)):
    """Enroll every matching lead of the linked audience that is not enrolled yet."""
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        result = await enroll_campaign(db, org_id, cid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, **result.to_dict()}


@router.get("/campaigns/{campaign_id}/stats")
async def campaign_stats(
    organization_id: str,
    campaign_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        stats = await get_campaign_stats(db, org_id, cid, limit=limit)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, **stats}


@router.get("/marketing/overview")
async def marketing_overview(organization_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    return {"success": True, **await get_marketing_overview(db, org_id)}
