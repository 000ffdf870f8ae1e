"""
Lead-facing marketing actions: scoring, opt-out and inbound replies.
Lead CRUD belongs to the CRM; this module only reads and flags leads.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid, to_http_error
from cadence.database import get_db
from cadence.schemas.api_requests import InboundMessageRequest
from cadence.services.opt_out import handle_inbound_message, opt_out_lead
from cadence.services.scoring import score_lead, score_organization

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orgs/{organization_id}", tags=["leads"])


@router.post("/leads/{lead_id}/score")
async def score_single_lead(organization_id: str, lead_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    lid = parse_uuid(lead_id, "lead ID")
    try:
        score, breakdown = await score_lead(db, org_id, lid)
        await db.commit()
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "lead_id": lead_id, "score": score, "breakdown": breakdown}


@router.post("/leads/rescore")
async def rescore_organization(organization_id: str, db: AsyncSession = Depends(get_db)):
    """Rescore every lead. Partial success is reported, not raised."""
    org_id = parse_uuid(organization_id, "organization ID")
    updated = await score_organization(db, org_id)
    return {"success": True, "updated": updated}


@router.post("/leads/{lead_id}/opt-out")
async def opt_out(organization_id: str, lead_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    lid = parse_uuid(lead_id, "lead ID")
    try:
        result = await opt_out_lead(db, org_id, lid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, **result.to_dict()}


@router.post("/leads/{lead_id}/inbound")
async def inbound_message(
    organization_id: str,
    lead_id: str,
    payload: InboundMessageRequest,
    db: AsyncSession = Depends(get_db),
):
    """Record a reply from the lead. STOP-style replies opt the lead out."""
    org_id = parse_uuid(organization_id, "organization ID")
    lid = parse_uuid(lead_id, "lead ID")
    try:
        result = await handle_inbound_message(db, org_id, lid, payload.channel, payload.body)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, **result}
