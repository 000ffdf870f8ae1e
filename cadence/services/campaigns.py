"""
Campaign, audience, sequence and step curation.

Campaign lifecycle:
  draft -> active        (activate: needs a linked audience and an elapsed schedule)
  active <-> paused      (pause / resume)
  * -> completed/archived (manual curation only, never reached automatically)
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.audience import Audience
from cadence.models.broadcast import Broadcast
from cadence.models.campaign import Campaign
from cadence.models.sequence import MESSAGE_CHANNELS, STEP_TYPES, Sequence, Step
from cadence.schemas.audience_filter import AudienceFilter
from cadence.schemas.delivery import DeliveryConfig
from cadence.services.audience import count_audience
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

CAMPAIGN_UPDATABLE_FIELDS = {"name", "description", "goal", "delivery_config", "scheduled_for", "engagement_score"}
STEP_UPDATABLE_FIELDS = {"name", "channel", "content", "delay_config", "condition_config"}


class NotFoundError(Exception):
    pass


class CampaignStateError(Exception):
    """Requested lifecycle transition is not allowed from the current status."""
    pass


class InvalidStepError(Exception):
    pass


# --- Campaigns ---

async def list_campaigns(db: AsyncSession, organization_id: uuid.UUID) -> list[Campaign]:
    result = await db.execute(
        select(Campaign)
        .where(Campaign.organization_id == organization_id)
        .order_by(Campaign.created_at.desc())
    )
    return list(result.scalars().all())


async def get_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if not campaign or campaign.organization_id != organization_id:
        raise NotFoundError("Campaign not found")
    return campaign


async def create_campaign(
    db: AsyncSession,
    organization_id: uuid.UUID,
    name: str,
    description: Optional[str] = None,
    goal: Optional[str] = None,
    delivery_config: Optional[dict] = None,
    scheduled_for: Optional[datetime] = None,
) -> Campaign:
    """Create a campaign in draft."""
    campaign = Campaign(
        organization_id=organization_id,
        name=name,
        description=description,
        goal=goal,
        status="draft",
        delivery_config=DeliveryConfig.from_config(delivery_config).model_dump(mode="json"),
        scheduled_for=as_utc(scheduled_for),
    )
    db.add(campaign)
    await db.commit()
    logger.info("Campaign created: %s (%s)", name, str(campaign.id)[:8])
    return campaign


async def create_quick_campaign(
    db: AsyncSession,
    organization_id: uuid.UUID,
    name: str,
    message: str,
    channel: str,
    filters: Optional[dict] = None,
) -> dict:
    """
    One-shot setup: audience from filters, draft campaign, sequence with a
    single message step, and a draft broadcast record for reporting.
    """
    if channel not in MESSAGE_CHANNELS:
        raise InvalidStepError(f"Unsupported channel: {channel}")

    audience_filter = AudienceFilter.from_config(filters)
    recipients = await count_audience(db, organization_id, audience_filter)
    now = utcnow()

    audience = Audience(
        organization_id=organization_id,
        name=f"{name} audience",
        type="dynamic",
        filter_config=audience_filter.to_config(),
        cached_count=recipients,
        last_count_at=now,
    )
    db.add(audience)
    await db.flush()

    campaign = Campaign(
        organization_id=organization_id,
        name=name,
        description="Quick broadcast campaign",
        goal="broadcast",
        status="draft",
        audience_id=audience.id,
        delivery_config=DeliveryConfig(mode="growth", humanize=True).model_dump(mode="json"),
    )
    db.add(campaign)
    await db.flush()

    sequence = Sequence(
        organization_id=organization_id,
        campaign_id=campaign.id,
        name="Main Flow",
        trigger_type="manual",
        is_active=True,
    )
    db.add(sequence)
    await db.flush()

    db.add(Step(
        organization_id=organization_id,
        sequence_id=sequence.id,
        type="message",
        channel=channel,
        name="Broadcast Message",
        order_index=0,
        content={"body": message},
    ))
    broadcast = Broadcast(
        organization_id=organization_id,
        campaign_id=campaign.id,
        name=name,
        message=message,
        channel=channel,
        filters=audience_filter.to_config(),
        status="draft",
        total_recipients=recipients,
    )
    db.add(broadcast)
    await db.commit()

    logger.info(
        "Quick campaign created: %s (%s) recipients=%d",
        name, str(campaign.id)[:8], recipients,
    )
    return {"campaign": campaign, "audience": audience, "sequence": sequence, "broadcast": broadcast}


async def update_campaign(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    data: dict,
) -> Campaign:
    campaign = await get_campaign(db, organization_id, campaign_id)
    unknown = set(data) - CAMPAIGN_UPDATABLE_FIELDS
    if unknown:
        raise CampaignStateError(f"Fields cannot be updated directly: {', '.join(sorted(unknown))}")

    for field, value in data.items():
        if field == "delivery_config":
            value = DeliveryConfig.from_config(value).model_dump(mode="json")
        elif field == "scheduled_for":
            value = as_utc(value)
        setattr(campaign, field, value)

    await db.commit()
    return campaign


async def delete_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> None:
    campaign = await get_campaign(db, organization_id, campaign_id)
    await db.delete(campaign)
    await db.commit()
    logger.info("Campaign deleted: %s", str(campaign_id)[:8])


async def link_audience(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    audience_id: Optional[uuid.UUID],
) -> Campaign:
    """Link an audience to a campaign, or unlink with audience_id=None."""
    campaign = await get_campaign(db, organization_id, campaign_id)
    if audience_id is not None:
        await get_audience(db, organization_id, audience_id)
    campaign.audience_id = audience_id
    await db.commit()
    return campaign


async def activate_campaign(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Campaign:
    now = as_utc(now) or utcnow()
    campaign = await get_campaign(db, organization_id, campaign_id)
    if campaign.status == "active":
        return campaign
    if campaign.status != "draft":
        raise CampaignStateError(f"Cannot activate a {campaign.status} campaign")
    if not campaign.audience_id:
        raise CampaignStateError("Link an audience before activating")
    scheduled_for = as_utc(campaign.scheduled_for)
    if scheduled_for and scheduled_for > now:
        raise CampaignStateError("Campaign is scheduled for later")

    campaign.status = "active"
    await db.commit()
    return campaign


async def _transition(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    allowed_from: tuple,
    target: str,
) -> Campaign:
    campaign = await get_campaign(db, organization_id, campaign_id)
    if campaign.status == target:
        return campaign
    if campaign.status not in allowed_from:
        raise CampaignStateError(f"Cannot move a {campaign.status} campaign to {target}")
    campaign.status = target
    await db.commit()
    logger.info("Campaign %s -> %s", str(campaign_id)[:8], target)
    return campaign


async def pause_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    return await _transition(db, organization_id, campaign_id, ("active",), "paused")


async def resume_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    return await _transition(db, organization_id, campaign_id, ("paused",), "active")


async def complete_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    return await _transition(db, organization_id, campaign_id, ("draft", "active", "paused"), "completed")


async def archive_campaign(db: AsyncSession, organization_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    return await _transition(
        db, organization_id, campaign_id, ("draft", "active", "paused", "completed"), "archived",
    )


# --- Audiences ---

async def list_audiences(db: AsyncSession, organization_id: uuid.UUID) -> list[Audience]:
    result = await db.execute(
        select(Audience)
        .where(Audience.organization_id == organization_id)
        .order_by(Audience.created_at.desc())
    )
    return list(result.scalars().all())


async def get_audience(db: AsyncSession, organization_id: uuid.UUID, audience_id: uuid.UUID) -> Audience:
    audience = await db.get(Audience, audience_id)
    if not audience or audience.organization_id != organization_id:
        raise NotFoundError("Audience not found")
    return audience


async def create_audience(
    db: AsyncSession,
    organization_id: uuid.UUID,
    name: str,
    filter_config: Optional[dict] = None,
    description: Optional[str] = None,
    audience_type: str = "dynamic",
) -> Audience:
    """Create an audience with a cached_count snapshot of its current size."""
    audience_filter = AudienceFilter.from_config(filter_config)
    audience = Audience(
        organization_id=organization_id,
        name=name,
        description=description,
        type=audience_type,
        filter_config=audience_filter.to_config(),
        cached_count=await count_audience(db, organization_id, audience_filter),
        last_count_at=utcnow(),
    )
    db.add(audience)
    await db.commit()
    return audience


async def update_audience(
    db: AsyncSession,
    organization_id: uuid.UUID,
    audience_id: uuid.UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
    filter_config: Optional[dict] = None,
) -> Audience:
    audience = await get_audience(db, organization_id, audience_id)
    if name is not None:
        audience.name = name
    if description is not None:
        audience.description = description
    if filter_config is not None:
        audience_filter = AudienceFilter.from_config(filter_config)
        audience.filter_config = audience_filter.to_config()
        audience.cached_count = await count_audience(db, organization_id, audience_filter)
        audience.last_count_at = utcnow()
    await db.commit()
    return audience


async def refresh_audience_count(db: AsyncSession, organization_id: uuid.UUID, audience_id: uuid.UUID) -> Audience:
    audience = await get_audience(db, organization_id, audience_id)
    audience.cached_count = await count_audience(db, organization_id, audience.filter_config)
    audience.last_count_at = utcnow()
    await db.commit()
    return audience


async def delete_audience(db: AsyncSession, organization_id: uuid.UUID, audience_id: uuid.UUID) -> None:
    audience = await get_audience(db, organization_id, audience_id)
    # Campaigns keep existing but lose their link
    await db.execute(
        update(Campaign)
        .where(Campaign.audience_id == audience_id)
        .values(audience_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.delete(audience)
    await db.commit()


async def preview_audience_count(db: AsyncSession, organization_id: uuid.UUID, filter_config: Optional[dict]) -> int:
    return await count_audience(db, organization_id, AudienceFilter.from_config(filter_config))


# --- Sequences & steps ---

async def list_sequences(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: Optional[uuid.UUID] = None,
) -> list[tuple[Sequence, list[Step]]]:
    """Sequences with their steps ordered by order_index."""
    query = select(Sequence).where(Sequence.organization_id == organization_id)
    if campaign_id is not None:
        query = query.where(Sequence.campaign_id == campaign_id)
    sequences = list((await db.execute(query.order_by(Sequence.created_at))).scalars().all())

    out = []
    for sequence in sequences:
        steps = (await db.execute(
            select(Step).where(Step.sequence_id == sequence.id).order_by(Step.order_index)
        )).scalars().all()
        out.append((sequence, list(steps)))
    return out


async def get_sequence(db: AsyncSession, organization_id: uuid.UUID, sequence_id: uuid.UUID) -> Sequence:
    sequence = await db.get(Sequence, sequence_id)
    if not sequence or sequence.organization_id != organization_id:
        raise NotFoundError("Sequence not found")
    return sequence


async def create_sequence(
    db: AsyncSession,
    organization_id: uuid.UUID,
    campaign_id: uuid.UUID,
    name: str,
    trigger_type: str = "manual",
    is_active: bool = True,
) -> Sequence:
    """Create a sequence. An active sequence deactivates the campaign's other sequences."""
    await get_campaign(db, organization_id, campaign_id)
    if is_active:
        await db.execute(
            update(Sequence)
            .where(Sequence.campaign_id == campaign_id, Sequence.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
    sequence = Sequence(
        organization_id=organization_id,
        campaign_id=campaign_id,
        name=name,
        trigger_type=trigger_type,
        is_active=is_active,
    )
    db.add(sequence)
    await db.commit()
    return sequence


async def delete_sequence(db: AsyncSession, organization_id: uuid.UUID, sequence_id: uuid.UUID) -> None:
    sequence = await get_sequence(db, organization_id, sequence_id)
    await db.delete(sequence)
    await db.commit()


def _validate_step(step_type: str, channel: Optional[str]) -> None:
    if step_type not in STEP_TYPES:
        raise InvalidStepError(f"Unknown step type: {step_type}")
    if step_type == "message" and channel not in MESSAGE_CHANNELS:
        raise InvalidStepError(f"Message steps need a channel ({', '.join(MESSAGE_CHANNELS)})")


async def add_step(
    db: AsyncSession,
    organization_id: uuid.UUID,
    sequence_id: uuid.UUID,
    step_type: str,
    channel: Optional[str] = None,
    name: Optional[str] = None,
    content: Optional[dict] = None,
    delay_config: Optional[dict] = None,
    condition_config: Optional[dict] = None,
) -> Step:
    """Append a step at the end of the sequence (order_index = max + 1)."""
    _validate_step(step_type, channel)
    sequence = await get_sequence(db, organization_id, sequence_id)

    max_index = (await db.execute(
        select(func.max(Step.order_index)).where(Step.sequence_id == sequence.id)
    )).scalar()
    step = Step(
        organization_id=organization_id,
        sequence_id=sequence.id,
        type=step_type,
        channel=channel if step_type == "message" else None,
        name=name,
        order_index=0 if max_index is None else max_index + 1,
        content=content,
        delay_config=delay_config,
        condition_config=condition_config,
    )
    db.add(step)
    await db.commit()
    return step


async def get_step(db: AsyncSession, organization_id: uuid.UUID, step_id: uuid.UUID) -> Step:
    step = await db.get(Step, step_id)
    if not step or step.organization_id != organization_id:
        raise NotFoundError("Step not found")
    return step


async def update_step(db: AsyncSession, organization_id: uuid.UUID, step_id: uuid.UUID, data: dict) -> Step:
    step = await get_step(db, organization_id, step_id)
    unknown = set(data) - STEP_UPDATABLE_FIELDS
    if unknown:
        raise InvalidStepError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "channel" in data:
        _validate_step(step.type, data["channel"])
    for field, value in data.items():
        setattr(step, field, value)
    await db.commit()
    return step


async def delete_step(db: AsyncSession, organization_id: uuid.UUID, step_id: uuid.UUID) -> None:
    step = await get_step(db, organization_id, step_id)
    await db.delete(step)
    await db.commit()
