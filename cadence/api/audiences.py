"""
Audience API - saved lead filters with a cached size.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid, to_http_error
from cadence.api.serializers import serialize_audience
from cadence.database import get_db
from cadence.schemas.api_requests import (
    AudienceCreateRequest,
    AudienceUpdateRequest,
    FilterPreviewRequest,
)
from cadence.services import campaigns as campaign_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orgs/{organization_id}", tags=["audiences"])


@router.get("/audiences")
async def list_audiences(organization_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    audiences = await campaign_service.list_audiences(db, org_id)
    return {"success": True, "audiences": [serialize_audience(a) for a in audiences]}


@router.post("/audiences")
async def create_audience(
    organization_id: str,
    payload: AudienceCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        audience = await campaign_service.create_audience(
            db, org_id,
            name=payload.name,
            filter_config=payload.filter_config,
            description=payload.description,
            audience_type=payload.type,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "audience": serialize_audience(audience)}


@router.post("/audiences/preview")
async def preview_audience(
    organization_id: str,
    payload: FilterPreviewRequest,
    db: AsyncSession = Depends(get_db),
):
    """Count the leads a filter would match right now, without saving anything."""
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        count = await campaign_service.preview_audience_count(db, org_id, payload.filters)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "count": count}


@router.get("/audiences/{audience_id}")
async def get_audience(organization_id: str, audience_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    aid = parse_uuid(audience_id, "audience ID")
    try:
        audience = await campaign_service.get_audience(db, org_id, aid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "audience": serialize_audience(audience)}


@router.patch("/audiences/{audience_id}")
async def update_audience(
    organization_id: str,
    audience_id: str,
    payload: AudienceUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    aid = parse_uuid(audience_id, "audience ID")
    try:
        audience = await campaign_service.update_audience(
            db, org_id, aid,
            name=payload.name,
            description=payload.description,
            filter_config=payload.filter_config,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "audience": serialize_audience(audience)}


@router.post("/audiences/{audience_id}/refresh")
async def refresh_audience(organization_id: str, audience_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    aid = parse_uuid(audience_id, "audience ID")
    try:
        audience = await campaign_service.refresh_audience_count(db, org_id, aid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "audience": serialize_audience(audience)}


@router.delete("/audiences/{audience_id}")
async def delete_audience(organization_id: str, audience_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    aid = parse_uuid(audience_id, "audience ID")
    try:
        await campaign_service.delete_audience(db, org_id, aid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True}
