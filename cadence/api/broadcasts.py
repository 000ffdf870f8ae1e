"""
Broadcast API - one-shot sends to a filtered set of leads.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid, to_http_error
from cadence.api.serializers import serialize_broadcast
from cadence.database import get_db
from cadence.schemas.api_requests import BroadcastCreateRequest, FilterPreviewRequest
from cadence.services import broadcasts as broadcast_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orgs/{organization_id}", tags=["broadcasts"])


@router.get("/broadcasts")
async def list_broadcasts(organization_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    broadcasts = await broadcast_service.list_broadcasts(db, org_id)
    return {"success": True, "broadcasts": [serialize_broadcast(b) for b in broadcasts]}


@router.post("/broadcasts")
async def create_broadcast(
    organization_id: str,
    payload: BroadcastCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        broadcast = await broadcast_service.create_broadcast(
            db, org_id,
            name=payload.name,
            message=payload.message,
            channel=payload.channel,
            filters=payload.filters,
            scheduled_at=payload.scheduled_at,
            subject=payload.subject,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "broadcast": serialize_broadcast(broadcast)}


@router.post("/broadcasts/preview")
async def preview_broadcast(
    organization_id: str,
    payload: FilterPreviewRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    try:
        count = await broadcast_service.preview_recipient_count(db, org_id, payload.filters)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "count": count}


@router.get("/broadcasts/{broadcast_id}")
async def get_broadcast(organization_id: str, broadcast_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    bid = parse_uuid(broadcast_id, "broadcast ID")
    try:
        broadcast = await broadcast_service.get_broadcast(db, org_id, bid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "broadcast": serialize_broadcast(broadcast)}


@router.delete("/broadcasts/{broadcast_id}")
async def delete_broadcast(organization_id: str, broadcast_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    bid = parse_uuid(broadcast_id, "broadcast ID")
    try:
        await broadcast_service.delete_broadcast(db, org_id, bid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True}


@router.post("/broadcasts/{broadcast_id}/send")
async def send_broadcast(organization_id: str, broadcast_id: str, db: AsyncSession = Depends(get_db)):
    """Send now. Only draft or scheduled broadcasts can be sent."""
    org_id = parse_uuid(organization_id, "organization ID")
    bid = parse_uuid(broadcast_id, "broadcast ID")
    try:
        broadcast = await broadcast_service.send_broadcast(db, org_id, bid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": broadcast.status == "completed", "broadcast": serialize_broadcast(broadcast)}
