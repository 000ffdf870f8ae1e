"""
Enrollment orchestrator - enrolls a campaign's audience into its active sequence.

Preconditions are checked in a fixed order and each failure is a typed
EnrollmentError. The dedup check-then-insert runs under a per-campaign Redis
lock; the partial unique index on enrollments is the backstop if Redis is down.
Re-running enroll is safe: already-enrolled leads are skipped and the call
returns enrolled=0.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.audience import Audience
from cadence.models.campaign import Campaign
from cadence.models.enrollment import Enrollment
from cadence.models.sequence import Sequence
from cadence.services.audience import resolve_audience
from cadence.services.steps import add_delay, first_step
from cadence.utils.locks import LockTimeoutError, campaign_lock
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = ("active", "completed")


class EnrollmentError(Exception):
    """A precondition for enrollment is not met. Never retried automatically."""
    pass


class CampaignNotFoundError(EnrollmentError):
    pass


class NoAudienceLinkedError(EnrollmentError):
    pass


class AudienceNotFoundError(EnrollmentError):
    pass


class CampaignScheduledError(EnrollmentError):
    pass


class NoActiveSequenceError(EnrollmentError):
    pass


class SequenceHasNoStepsError(EnrollmentError):
    pass


class EnrollmentBusyError(EnrollmentError):
    """Another enrollment for the same campaign is in progress."""
    pass


class EnrollmentResult:
    def __init__(self, enrolled: int, audience_size: int):
        self.enrolled = enrolled
        self.audience_size = audience_size

    def to_dict(self) -> dict:
        return {"enrolled": self.enrolled, "audience_size": self.audience_size}

    def __repr__(self) -> str:
        return f"<EnrollmentResult enrolled={self.enrolled} audience={self.audience_size}>"


async def get_active_sequence(db: AsyncSession, campaign_id: uuid.UUID) -> Optional[Sequence]:
    """The campaign's active sequence (oldest first if several are flagged active)."""
    result = await db.execute(
        select(Sequence)
        .where(Sequence.campaign_id == campaign_id, Sequence.is_active.is_(True))
        .order_by(Sequence.created_at, Sequence.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def enroll_campaign(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    now: Optional[datetime] = None,
    allow_reenrollment: Optional[bool] = None,
) -> EnrollmentResult:
    """
    Enroll every lead of the campaign's audience that is not already enrolled.

    Raises an EnrollmentError subclass when a precondition fails.
    Raises AudienceResolutionError when the audience cannot be resolved (retry-safe).
    """
    now = as_utc(now) or utcnow()
    if allow_reenrollment is None:
        from cadence.config import get_settings
        allow_reenrollment = get_settings().allow_reenrollment

    campaign = await db.get(Campaign, campaign_id)
    if not campaign or campaign.organization_id != organization_id:
        raise CampaignNotFoundError("Campaign not found")

    if not campaign.audience_id:
        raise NoAudienceLinkedError("No audience linked to this campaign")

    audience = await db.get(Audience, campaign.audience_id)
    if not audience or audience.organization_id != organization_id:
        raise AudienceNotFoundError("Linked audience not found")

    scheduled_for = as_utc(campaign.scheduled_for)
    if scheduled_for and scheduled_for > now:
        raise CampaignScheduledError(
            f"Campaign is scheduled for later ({scheduled_for.isoformat()})"
        )

    sequence = await get_active_sequence(db, campaign.id)
    if not sequence:
        raise NoActiveSequenceError("No active sequence for this campaign")

    entry_step = await first_step(db, sequence.id)
    if not entry_step:
        raise SequenceHasNoStepsError("Sequence has no steps")

    if entry_step.type == "delay":
        next_run_at = add_delay(now, entry_step.delay_config)
    else:
        next_run_at = now

    try:
        async with campaign_lock(campaign.id):
            lead_ids = await resolve_audience(db, organization_id, audience.filter_config)

            existing_query = select(Enrollment.contact_id).where(
                Enrollment.campaign_id == campaign.id
            )
            if allow_reenrollment:
                existing_query = existing_query.where(Enrollment.status.in_(BLOCKING_STATUSES))
            existing = set((await db.execute(existing_query)).scalars().all())

            new_lead_ids = [lead_id for lead_id in lead_ids if lead_id not in existing]

            db.add_all([
                Enrollment(
                    organization_id=organization_id,
                    campaign_id=campaign.id,
                    sequence_id=sequence.id,
                    contact_id=lead_id,
                    current_step_id=entry_step.id,
                    current_step_started_at=now,
                    status="active",
                    next_run_at=next_run_at,
                    execution_logs=[],
                )
                for lead_id in new_lead_ids
            ])

            campaign.total_enrolled = len(lead_ids)
            campaign.status = "active"

            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning(
                    "Concurrent enrollment detected for campaign %s: %s",
                    str(campaign_id)[:8], str(e),
                )
                raise EnrollmentBusyError("Enrollment already in progress for this campaign") from e
    except LockTimeoutError as e:
        raise EnrollmentBusyError("Enrollment already in progress for this campaign") from e

    logger.info(
        "Campaign %s enrolled %d new leads (audience=%d, already enrolled=%d)",
        str(campaign_id)[:8], len(new_lead_ids), len(lead_ids), len(lead_ids) - len(new_lead_ids),
        extra={"organization_id": str(organization_id), "campaign_id": str(campaign_id)},
    )
    return EnrollmentResult(enrolled=len(new_lead_ids), audience_size=len(lead_ids))
