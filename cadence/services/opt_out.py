"""
Opt-out handling - marks a lead as opted out and cancels its active enrollments.
Idempotent: a second opt-out keeps the original opted_out_at and cancels nothing new.
"""
import logging
import re
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.models.activity import LeadMessage
from cadence.models.enrollment import Enrollment
from cadence.models.lead import Lead
from cadence.schemas.execution_log import Cancelled, append_log
from cadence.services.scoring import LeadNotFoundError
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

# Exact STOP keywords, recognized case-insensitively after normalization
STOP_KEYWORDS = {
    "stop", "unsubscribe", "cancel", "end", "quit", "optout", "opt-out", "remove",
    "baja", "alto",
}

# Phrases that indicate opt-out intent (substring matching)
STOP_PHRASES = [
    "stop texting",
    "stop messaging",
    "stop sending",
    "please stop",
    "do not contact",
    "don't contact",
    "dont contact",
    "remove me",
    "take me off",
    "opt out",
    "opt me out",
    "unsubscribe me",
    "no more messages",
    "darme de baja",
    "no me escriban",
]


class OptOutResult:
    def __init__(self, lead_id: uuid.UUID, already_opted_out: bool, cancelled: int):
        self.lead_id = lead_id
        self.already_opted_out = already_opted_out
        self.cancelled = cancelled

    def to_dict(self) -> dict:
        return {
            "lead_id": str(self.lead_id),
            "already_opted_out": self.already_opted_out,
            "cancelled_enrollments": self.cancelled,
        }


def is_opt_out_message(message: Optional[str]) -> bool:
    """
    True if an inbound reply asks to stop receiving messages.
    Short messages containing a stop keyword count; long sentences only
    count when they contain an explicit opt-out phrase.
    """
    if not message or not message.strip():
        return False

    normalized = message.strip().lower()
    cleaned = re.sub(r"[^\w\s-]", "", normalized).strip()

    if cleaned in STOP_KEYWORDS:
        return True

    # STOPPPP -> stop
    collapsed = re.sub(r"(.)\1{2,}", r"\1", cleaned)
    if collapsed in STOP_KEYWORDS:
        return True

    if any(phrase in normalized for phrase in STOP_PHRASES):
        return True

    words = cleaned.split()
    return len(words) <= 4 and bool(set(words) & STOP_KEYWORDS)


async def opt_out_lead(
    db: AsyncSession,
    organization_id: uuid.UUID,
    lead_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> OptOutResult:
    """Opt a lead out of marketing and cancel its active enrollments in the organization."""
    now = as_utc(now) or utcnow()

    lead = await db.get(Lead, lead_id)
    if not lead or lead.organization_id != organization_id:
        raise LeadNotFoundError(f"Lead {str(lead_id)[:8]} not found")

    already_opted_out = bool(lead.opted_out)
    if not already_opted_out:
        lead.opted_out = True
        lead.opted_out_at = now

    result = await db.execute(
        select(Enrollment)
        .where(
            Enrollment.organization_id == organization_id,
            Enrollment.contact_id == lead_id,
            Enrollment.status == "active",
        )
        .with_for_update()
    )
    enrollments = result.scalars().all()
    for enrollment in enrollments:
        enrollment.status = "cancelled"
        enrollment.next_run_at = None
        append_log(enrollment, Cancelled(timestamp=now, step_id=enrollment.current_step_id))

    await db.commit()

    logger.info(
        "Lead %s opted out (already=%s), cancelled %d enrollments",
        str(lead_id)[:8], already_opted_out, len(enrollments),
        extra={"organization_id": str(organization_id), "lead_id": str(lead_id)},
    )
    return OptOutResult(lead_id, already_opted_out, len(enrollments))


async def handle_inbound_message(
    db: AsyncSession,
    organization_id: uuid.UUID,
    lead_id: uuid.UUID,
    channel: str,
    body: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    """
    Record an inbound reply from a lead and opt them out on a STOP message.
    The recorded message feeds the engagement component of scoring.
    """
    now = as_utc(now) or utcnow()
    lead = await db.get(Lead, lead_id)
    if not lead or lead.organization_id != organization_id:
        raise LeadNotFoundError(f"Lead {str(lead_id)[:8]} not found")

    db.add(LeadMessage(
        organization_id=organization_id,
        lead_id=lead_id,
        direction="inbound",
        channel=channel,
        body=body,
        created_at=now,
    ))
    lead.last_activity_at = now

    if is_opt_out_message(body):
        result = await opt_out_lead(db, organization_id, lead_id, now=now)
        return {"recorded": True, "opted_out": True, "cancelled_enrollments": result.cancelled}

    await db.commit()
    return {"recorded": True, "opted_out": False, "cancelled_enrollments": 0}
