"""
Lead scoring - additive 0-100 score from profile, engagement, recency, tasks and status.
Each component is capped independently; the total is their sum.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.activity import LeadMessage, LeadTask
from cadence.models.lead import Lead
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

PROFILE_POINTS_PER_FIELD = 5
PROFILE_FIELDS = ("name", "email", "phone", "company")

ENGAGEMENT_POINTS_PER_MESSAGE = 3
ENGAGEMENT_CAP = 30

TASK_POINTS_PER_COMPLETED = 3
TASK_CAP = 15

# (max age in days, points), checked in order
RECENCY_BRACKETS = ((3, 20), (7, 15), (14, 10), (30, 5))

STATUS_POINTS = {
    "new": 0,
    "contacted": 3,
    "qualified": 8,
    "negotiation": 12,
    "won": 15,
    "lost": 0,
}


class LeadNotFoundError(Exception):
    pass


def profile_points(lead) -> int:
    return sum(PROFILE_POINTS_PER_FIELD for field in PROFILE_FIELDS if getattr(lead, field, None))


def engagement_points(message_count: int) -> int:
    return min(max(message_count, 0) * ENGAGEMENT_POINTS_PER_MESSAGE, ENGAGEMENT_CAP)


def task_points(completed_count: int) -> int:
    return min(max(completed_count, 0) * TASK_POINTS_PER_COMPLETED, TASK_CAP)


def recency_points(last_activity: Optional[datetime], now: datetime) -> int:
    last_activity = as_utc(last_activity)
    if last_activity is None:
        return 0
    age_days = (as_utc(now) - last_activity).total_seconds() / 86400
    for max_days, points in RECENCY_BRACKETS:
        if age_days <= max_days:
            return points
    return 0


def status_points(status: Optional[str]) -> int:
    return STATUS_POINTS.get(status or "", 0)


def compute_score(
    lead,
    message_count: int,
    completed_task_count: int,
    now: datetime,
) -> tuple[int, dict]:
    """Pure scoring function. Returns (score, breakdown)."""
    breakdown = {
        "profile": profile_points(lead),
        "engagement": engagement_points(message_count),
        "recency": recency_points(lead.last_activity_at or lead.updated_at, now),
        "tasks": task_points(completed_task_count),
        "status": status_points(lead.status),
    }
    return sum(breakdown.values()), breakdown


async def score_lead(
    db: AsyncSession,
    organization_id: uuid.UUID,
    lead_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> tuple[int, dict]:
    """Compute and persist a lead's score. Flushes but does not commit."""
    now = now or utcnow()
    lead = await db.get(Lead, lead_id)
    if not lead or lead.organization_id != organization_id:
        raise LeadNotFoundError(f"Lead {str(lead_id)[:8]} not found")

    message_count = (await db.execute(
        select(func.count(LeadMessage.id)).where(LeadMessage.lead_id == lead_id)
    )).scalar() or 0
    completed_tasks = (await db.execute(
        select(func.count(LeadTask.id)).where(
            LeadTask.lead_id == lead_id,
            LeadTask.status == "completed",
        )
    )).scalar() or 0

    score, breakdown = compute_score(lead, message_count, completed_tasks, now)
    lead.score = score
    lead.score_breakdown = breakdown
    lead.last_scored_at = now
    await db.flush()

    logger.debug("Lead %s scored %d %s", str(lead_id)[:8], score, breakdown)
    return score, breakdown


async def score_organization(
    db: AsyncSession,
    organization_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> int:
    """
    Rescore every lead in an organization.
    Each lead is committed on its own; a failure is rolled back, logged and skipped.
    Returns the number of leads successfully updated.
    """
    now = now or utcnow()
    result = await db.execute(
        select(Lead.id).where(Lead.organization_id == organization_id).order_by(Lead.created_at)
    )
    lead_ids = list(result.scalars().all())

    updated = 0
    for lead_id in lead_ids:
        try:
            await score_lead(db, organization_id, lead_id, now=now)
            await db.commit()
            updated += 1
        except Exception as e:
            await db.rollback()
            logger.warning("Scoring failed for lead %s: %s", str(lead_id)[:8], str(e))

    logger.info(
        "Rescored %d/%d leads for org %s",
        updated, len(lead_ids), str(organization_id)[:8],
    )
    return updated
