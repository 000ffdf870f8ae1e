"""
Broadcasts - one-shot sends to a filtered set of leads.

Status: draft | scheduled -> sending -> completed | failed.
The recipient count is snapshotted at creation; the actual recipients are
resolved again when sending starts, so opt-outs in between are honoured.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.activity import LeadMessage
from cadence.models.broadcast import Broadcast
from cadence.models.lead import Lead
from cadence.models.sequence import MESSAGE_CHANNELS
from cadence.schemas.audience_filter import AudienceFilter
from cadence.services.audience import count_audience, resolve_audience
from cadence.services.sender import get_sender, recipient_for
from cadence.utils.templates import render_message
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = ("draft", "scheduled")
DISPATCH_BATCH_SIZE = 10


class BroadcastNotFoundError(Exception):
    pass


class BroadcastStateError(Exception):
    pass


async def list_broadcasts(db: AsyncSession, organization_id: uuid.UUID) -> list[Broadcast]:
    result = await db.execute(
        select(Broadcast)
        .where(Broadcast.organization_id == organization_id)
        .order_by(Broadcast.created_at.desc())
    )
    return list(result.scalars().all())


async def get_broadcast(db: AsyncSession, organization_id: uuid.UUID, broadcast_id: uuid.UUID) -> Broadcast:
    broadcast = await db.get(Broadcast, broadcast_id)
    if not broadcast or broadcast.organization_id != organization_id:
        raise BroadcastNotFoundError("Broadcast not found")
    return broadcast


async def create_broadcast(
    db: AsyncSession,
    organization_id: uuid.UUID,
    name: str,
    message: str,
    channel: str = "whatsapp",
    filters: Optional[dict] = None,
    scheduled_at: Optional[datetime] = None,
    subject: Optional[str] = None,
    campaign_id: Optional[uuid.UUID] = None,
) -> Broadcast:
    """Create a broadcast with a recipient-count snapshot. Scheduled if scheduled_at is given."""
    if channel not in MESSAGE_CHANNELS:
        raise BroadcastStateError(f"Unsupported channel: {channel}")

    audience_filter = AudienceFilter.from_config(filters)
    broadcast = Broadcast(
        organization_id=organization_id,
        campaign_id=campaign_id,
        name=name,
        message=message,
        channel=channel,
        subject=subject,
        filters=audience_filter.to_config(),
        status="scheduled" if scheduled_at else "draft",
        scheduled_at=as_utc(scheduled_at),
        total_recipients=await count_audience(db, organization_id, audience_filter),
        sent_count=0,
        delivered_count=0,
        read_count=0,
        failed_count=0,
    )
    db.add(broadcast)
    await db.commit()
    logger.info(
        "Broadcast created: %s (%s) recipients=%d status=%s",
        name, str(broadcast.id)[:8], broadcast.total_recipients, broadcast.status,
    )
    return broadcast


async def delete_broadcast(db: AsyncSession, organization_id: uuid.UUID, broadcast_id: uuid.UUID) -> None:
    broadcast = await get_broadcast(db, organization_id, broadcast_id)
    if broadcast.status == "sending":
        raise BroadcastStateError("Cannot delete a broadcast while it is sending")
    await db.delete(broadcast)
    await db.commit()


async def preview_recipient_count(db: AsyncSession, organization_id: uuid.UUID, filters: Optional[dict]) -> int:
    return await count_audience(db, organization_id, AudienceFilter.from_config(filters))


async def _finish(db: AsyncSession, broadcast_id: uuid.UUID, **values) -> None:
    await db.execute(
        update(Broadcast)
        .where(Broadcast.id == broadcast_id, Broadcast.status == "sending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def send_broadcast(
    db: AsyncSession,
    organization_id: uuid.UUID,
    broadcast_id: uuid.UUID,
    sender=None,
    now: Optional[datetime] = None,
) -> Broadcast:
    """
    Send a draft or scheduled broadcast to every currently matching lead.

    The move to "sending" is a conditional update, so two callers cannot both
    start the same broadcast. Ends completed with sent/failed counts, or failed
    when the sender raises or no recipient could be reached.
    """
    now = as_utc(now) or utcnow()
    sender = sender or get_sender()
    broadcast = await get_broadcast(db, organization_id, broadcast_id)

    claim = await db.execute(
        update(Broadcast)
        .where(Broadcast.id == broadcast.id, Broadcast.status.in_(SENDABLE_STATUSES))
        .values(status="sending", sent_at=now)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        raise BroadcastStateError(f"Broadcast cannot be sent in status '{broadcast.status}'")
    await db.commit()

    sent = 0
    failed = 0
    lead_ids: list = []
    try:
        lead_ids = await resolve_audience(db, organization_id, broadcast.filters)
        for lead_id in lead_ids:
            lead = await db.get(Lead, lead_id)
            to = recipient_for(broadcast.channel, lead) if lead else None
            if not to:
                failed += 1
                continue

            body = render_message(broadcast.message, lead)
            result = await sender.send(broadcast.channel, to, body, subject=broadcast.subject)
            if result.ok:
                sent += 1
                db.add(LeadMessage(
                    organization_id=organization_id,
                    lead_id=lead.id,
                    direction="outbound",
                    channel=broadcast.channel,
                    body=body,
                    external_id=result.external_id,
                    created_at=now,
                ))
                # Outbound record survives a later sender error
                await db.commit()
            else:
                failed += 1
                logger.warning(
                    "Broadcast %s send to lead %s failed: %s",
                    str(broadcast_id)[:8], str(lead_id)[:8], result.error,
                )
    except Exception as e:
        await db.rollback()
        # Recipients not reached before the error count as failed
        failed = max(failed, len(lead_ids) - sent)
        logger.error(
            "Broadcast %s failed: %s", str(broadcast_id)[:8], str(e),
            extra={"broadcast_id": str(broadcast_id)},
        )
        await _finish(
            db, broadcast_id,
            status="failed", error=str(e), sent_count=sent, failed_count=failed, completed_at=utcnow(),
        )
        await db.refresh(broadcast)
        return broadcast

    total = sent + failed
    if total > 0 and sent == 0:
        await _finish(
            db, broadcast_id,
            status="failed", error="All recipients failed", sent_count=0, failed_count=failed,
            completed_at=utcnow(),
        )
    else:
        await _finish(
            db, broadcast_id,
            status="completed", sent_count=sent, failed_count=failed,
            completed_at=utcnow(),
        )
    await db.refresh(broadcast)

    logger.info(
        "Broadcast %s finished: %s sent=%d failed=%d",
        str(broadcast_id)[:8], broadcast.status, sent, failed,
    )
    return broadcast


async def dispatch_due_broadcasts(
    db: AsyncSession,
    now: Optional[datetime] = None,
    sender=None,
) -> int:
    """Send scheduled broadcasts whose scheduled_at has passed. Returns how many were started."""
    now = as_utc(now) or utcnow()
    result = await db.execute(
        select(Broadcast.id, Broadcast.organization_id)
        .where(
            Broadcast.status == "scheduled",
            Broadcast.scheduled_at.is_not(None),
            Broadcast.scheduled_at <= now,
        )
        .order_by(Broadcast.scheduled_at)
        .limit(DISPATCH_BATCH_SIZE)
    )
    due = result.all()

    started = 0
    for broadcast_id, organization_id in due:
        try:
            await send_broadcast(db, organization_id, broadcast_id, sender=sender, now=now)
            started += 1
        except BroadcastStateError:
            # Picked up by another dispatcher
            await db.rollback()
        except Exception as e:
            await db.rollback()
            logger.error("Dispatch of broadcast %s failed: %s", str(broadcast_id)[:8], str(e))

    if due:
        logger.info("Dispatched %d/%d due broadcasts", started, len(due))
    return started
