"""
Sequence and step API.
Steps are appended in order; order_index is assigned server-side.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid, to_http_error
from cadence.api.serializers import serialize_sequence, serialize_step
from cadence.database import get_db
from cadence.schemas.api_requests import (
    SequenceCreateRequest,
    StepCreateRequest,
    StepUpdateRequest,
)
from cadence.services import campaigns as campaign_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orgs/{organization_id}", tags=["sequences"])


@router.get("/sequences")
async def list_sequences(
    organization_id: str,
    campaign_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Sequences with their ordered steps, optionally for one campaign."""
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID") if campaign_id else None
    sequences = await campaign_service.list_sequences(db, org_id, campaign_id=cid)
    return {
        "success": True,
        "sequences": [serialize_sequence(seq, steps) for seq, steps in sequences],
    }


@router.post("/campaigns/{campaign_id}/sequences")
async def create_sequence(
    organization_id: str,
    campaign_id: str,
    payload: SequenceCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    cid = parse_uuid(campaign_id, "campaign ID")
    try:
        sequence = await campaign_service.create_sequence(
            db, org_id, cid,
            name=payload.name,
            trigger_type=payload.trigger_type,
            is_active=payload.is_active,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "sequence": serialize_sequence(sequence, [])}


@router.delete("/sequences/{sequence_id}")
async def delete_sequence(organization_id: str, sequence_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    sid = parse_uuid(sequence_id, "sequence ID")
    try:
        await campaign_service.delete_sequence(db, org_id, sid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True}


@router.post("/sequences/{sequence_id}/steps")
async def add_step(
    organization_id: str,
    sequence_id: str,
    payload: StepCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    sid = parse_uuid(sequence_id, "sequence ID")
    try:
        step = await campaign_service.add_step(
            db, org_id, sid,
            step_type=payload.type,
            channel=payload.channel,
            name=payload.name,
            content=payload.content,
            delay_config=payload.delay_config,
            condition_config=payload.condition_config,
        )
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "step": serialize_step(step)}


@router.patch("/steps/{step_id}")
async def update_step(
    organization_id: str,
    step_id: str,
    payload: StepUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    org_id = parse_uuid(organization_id, "organization ID")
    sid = parse_uuid(step_id, "step ID")
    try:
        step = await campaign_service.update_step(db, org_id, sid, payload.model_dump(exclude_unset=True))
    except Exception as e:
        raise to_http_error(e)
    return {"success": True, "step": serialize_step(step)}


@router.delete("/steps/{step_id}")
async def delete_step(organization_id: str, step_id: str, db: AsyncSession = Depends(get_db)):
    org_id = parse_uuid(organization_id, "organization ID")
    sid = parse_uuid(step_id, "step ID")
    try:
        await campaign_service.delete_step(db, org_id, sid)
    except Exception as e:
        raise to_http_error(e)
    return {"success": True}
