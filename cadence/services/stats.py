"""
Campaign and marketing reporting.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.broadcast import Broadcast
from cadence.models.campaign import Campaign
from cadence.models.enrollment import ENROLLMENT_STATUSES, Enrollment
from cadence.models.lead import Lead
from cadence.schemas.execution_log import last_log_entry
from cadence.services.campaigns import get_campaign

logger = logging.getLogger(__name__)


async def get_campaign_stats(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    limit: Optional[int] = None,
) -> dict:
    """Enrollment counts by status plus the most recently run enrollments."""
    if limit is None:
        from cadence.config import get_settings
        limit = get_settings().recent_activity_limit

    campaign = await get_campaign(db, organization_id, campaign_id)

    result = await db.execute(
        select(Enrollment.status, func.count(Enrollment.id))
        .where(
            Enrollment.campaign_id == campaign.id,
            Enrollment.organization_id == organization_id,
        )
        .group_by(Enrollment.status)
    )
    counts = {status: 0 for status in ENROLLMENT_STATUSES}
    for status, count in result.all():
        counts[status] = count
    stats = {"total": sum(counts.values()), **counts}

    recent = await db.execute(
        select(Enrollment, Lead.name, Lead.phone)
        .join(Lead, Lead.id == Enrollment.contact_id)
        .where(
            Enrollment.campaign_id == campaign.id,
            Enrollment.organization_id == organization_id,
        )
        .order_by(Enrollment.last_run_at.is_(None), Enrollment.last_run_at.desc(), Enrollment.id)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    recent_activity = [
        {
            "id": str(enrollment.id),
            "lead": {"id": str(enrollment.contact_id), "name": name, "phone": phone},
            "status": enrollment.status,
            "last_run_at": enrollment.last_run_at.isoformat() if enrollment.last_run_at else None,
            "last_log": last_log_entry(enrollment.execution_logs),
        }
        for enrollment, name, phone in recent.all()
    ]

    return {
        "campaign": {
            "id": str(campaign.id),
            "name": campaign.name,
            "status": campaign.status,
            "total_enrolled": campaign.total_enrolled,
            "total_completed": campaign.total_completed,
            "engagement_score": campaign.engagement_score,
        },
        "stats": stats,
        "recent_activity": recent_activity,
    }


async def get_marketing_overview(db: AsyncSession, organization_id: uuid.UUID) -> dict:
    """Organization-wide totals: campaigns, broadcast messages sent/delivered, delivery rate."""
    total_campaigns = (await db.execute(
        select(func.count(Campaign.id)).where(Campaign.organization_id == organization_id)
    )).scalar() or 0

    sent, delivered = (await db.execute(
        select(
            func.coalesce(func.sum(Broadcast.sent_count), 0),
            func.coalesce(func.sum(Broadcast.delivered_count), 0),
        ).where(Broadcast.organization_id == organization_id)
    )).one()

    return {
        "total_campaigns": total_campaigns,
        "total_messages": int(sent),
        "total_delivered": int(delivered),
        "delivery_rate": round(delivered / sent * 100) if sent else 0,
    }
