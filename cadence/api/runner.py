"""
Runner trigger - lets an external scheduler (cron, Vercel/Railway cron, k8s CronJob)
run one sequence-runner cycle on demand.

When CRON_SECRET is set the caller must send "Authorization: Bearer <secret>".
Without a secret the trigger is refused in production and open elsewhere.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.api.helpers import parse_uuid
from cadence.config import get_settings
from cadence.database import get_db
from cadence.workers.sequence_runner import run_cycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/marketing", tags=["runner"])


def _verify_cron_secret(request: Request) -> bool:
    settings = get_settings()
    secret = settings.cron_secret
    if not secret:
        if settings.app_env == "production":
            logger.error("CRON_SECRET not set in production - rejecting run-cycle trigger.")
            return False
        return True
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return False
    return hmac.compare_digest(header[len("Bearer "):], secret)


@router.post("/run-cycle")
async def trigger_run_cycle(
    request: Request,
    organization_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Run one cycle, optionally limited to a single organization."""
    if not _verify_cron_secret(request):
        logger.warning("Rejected run-cycle trigger with missing or bad cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")

    org_id = parse_uuid(organization_id, "organization ID") if organization_id else None
    summary = await run_cycle(db, organization_id=org_id)
    return {"success": True, **summary.to_dict()}
