"""
Sequence runner - advances enrolled leads through their campaign's steps.

Each cycle selects due enrollments, claims them with a conditional UPDATE
that pushes next_run_at forward by a lease (committed before any send), then
executes the current step. Every write after the claim is conditional on the
enrollment still being active, so a concurrent opt-out always wins and
terminal enrollments are never touched again.

Delivery is at-least-once: if a worker dies after sending but before
recording, the lease expires and the step runs again.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.database import async_session_factory
from cadence.models.activity import LeadMessage
from cadence.models.campaign import Campaign
from cadence.models.enrollment import Enrollment
from cadence.models.lead import Lead
from cadence.models.sequence import Step
from cadence.schemas.delivery import DeliveryConfig
from cadence.schemas.execution_log import (
    Branched,
    Cancelled,
    Completed,
    Deferred,
    Failed,
    Sent,
    Waiting,
    extended_logs,
)
from cadence.services.pacing import get_profile, is_permissible, next_permissible
from cadence.services.sender import SendResult, get_sender, recipient_for
from cadence.services.steps import (
    add_delay,
    evaluate_condition,
    next_step_after,
    step_at_index,
)
from cadence.utils.logging import generate_correlation_id, set_correlation_id
from cadence.utils.redis import write_heartbeat
from cadence.utils.templates import render_message
from cadence.utils.timezone import as_utc, utcnow

logger = logging.getLogger(__name__)

HEARTBEAT_TTL_SECONDS = 300


class CycleSummary:
    """Result of one runner cycle."""

    def __init__(self):
        self.processed = 0
        self.logs: list[dict] = []
        self.counts: dict[str, int] = {}

    def record(self, enrollment_id: uuid.UUID, outcome: str, detail: str = "") -> None:
        self.counts[outcome] = self.counts.get(outcome, 0) + 1
        self.logs.append({
            "enrollment_id": str(enrollment_id),
            "outcome": outcome,
            "detail": detail,
        })

    def to_dict(self) -> dict:
        return {"processed": self.processed, "logs": self.logs, "counts": self.counts}


def _delivery_config(campaign: Campaign) -> DeliveryConfig:
    try:
        return DeliveryConfig.from_config(campaign.delivery_config)
    except ValidationError as e:
        logger.warning(
            "Invalid delivery_config on campaign %s, using defaults: %s",
            str(campaign.id)[:8], str(e),
        )
        return DeliveryConfig()


async def select_due_enrollments(
    db: AsyncSession,
    now: datetime,
    batch_size: int,
    organization_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """IDs of active enrollments whose time has come, in active, already-started campaigns."""
    query = (
        select(Enrollment.id)
        .join(Campaign, Campaign.id == Enrollment.campaign_id)
        .where(
            Enrollment.status == "active",
            Enrollment.next_run_at.is_not(None),
            Enrollment.next_run_at <= now,
            Campaign.status == "active",
            or_(Campaign.scheduled_for.is_(None), Campaign.scheduled_for <= now),
        )
        .order_by(Enrollment.next_run_at, Enrollment.id)
        .limit(batch_size)
        .with_for_update(skip_locked=True, of=Enrollment)
    )
    if organization_id is not None:
        query = query.where(Enrollment.organization_id == organization_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def claim_enrollments(
    db: AsyncSession,
    enrollment_ids: list[uuid.UUID],
    now: datetime,
    lease_seconds: int,
) -> list[uuid.UUID]:
    """
    Claim enrollments for this cycle and commit.
    A row is claimed only if it is still active and still due; the lease moves
    next_run_at out of reach of any other cycle. Returns the IDs actually claimed.
    """
    lease_until = now + timedelta(seconds=lease_seconds)
    claimed = []
    for enrollment_id in enrollment_ids:
        result = await db.execute(
            update(Enrollment)
            .where(
                Enrollment.id == enrollment_id,
                Enrollment.status == "active",
                Enrollment.next_run_at <= now,
            )
            .values(next_run_at=lease_until, last_run_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed.append(enrollment_id)
    await db.commit()
    return claimed


async def _write_if_active(
    db: AsyncSession,
    enrollment: Enrollment,
    entries: list,
    **values,
) -> bool:
    """Conditional write: applies only while the enrollment is still active."""
    result = await db.execute(
        update(Enrollment)
        .where(Enrollment.id == enrollment.id, Enrollment.status == "active")
        .values(execution_logs=extended_logs(enrollment.execution_logs, *entries), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "Enrollment %s left active state mid-cycle, not overwriting",
            str(enrollment.id)[:8],
        )
        return False
    return True


async def _complete(db: AsyncSession, enrollment: Enrollment, entries: list, now: datetime) -> bool:
    written = await _write_if_active(
        db, enrollment, [*entries, Completed(timestamp=now)],
        status="completed", completed_at=now, next_run_at=None,
    )
    if written:
        await db.execute(
            update(Campaign)
            .where(Campaign.id == enrollment.campaign_id)
            .values(total_completed=Campaign.total_completed + 1)
            .execution_options(synchronize_session=False)
        )
    return written


async def _fail(db: AsyncSession, enrollment: Enrollment, error: str, now: datetime, channel: Optional[str] = None) -> bool:
    entry = Failed(timestamp=now, step_id=enrollment.current_step_id, error=error, channel=channel)
    return await _write_if_active(db, enrollment, [entry], status="failed", next_run_at=None)


async def _advance(
    db: AsyncSession,
    enrollment: Enrollment,
    next_step: Optional[Step],
    entries: list,
    now: datetime,
    jitter: timedelta = timedelta(0),
) -> str:
    """Move the cursor onto next_step, or complete the enrollment when there is none."""
    if next_step is None:
        written = await _complete(db, enrollment, entries, now)
        return "completed" if written else "skipped"

    if next_step.type == "delay":
        next_run_at = add_delay(now, next_step.delay_config)
        entries = [*entries, Waiting(timestamp=now, step_id=next_step.id, until=next_run_at)]
    else:
        next_run_at = now + jitter

    written = await _write_if_active(
        db, enrollment, entries,
        current_step_id=next_step.id,
        current_step_started_at=now,
        next_run_at=next_run_at,
    )
    return "advanced" if written else "skipped"


async def _run_message_step(
    db: AsyncSession,
    enrollment: Enrollment,
    campaign: Campaign,
    lead: Lead,
    step: Step,
    now: datetime,
    sender,
    sends_this_cycle: dict,
) -> tuple[str, str]:
    config = _delivery_config(campaign)

    if not is_permissible(now, config):
        until = next_permissible(now, config)
        entry = Deferred(timestamp=now, step_id=step.id, reason="outside_window", until=until)
        written = await _write_if_active(db, enrollment, [entry], next_run_at=until)
        return ("deferred" if written else "skipped"), f"outside send window until {until.isoformat()}"

    profile = get_profile(config.mode)
    if not profile.allows(sends_this_cycle.get(campaign.id, 0)):
        until = now + timedelta(seconds=profile.throttle_deferral_seconds)
        entry = Deferred(timestamp=now, step_id=step.id, reason="throughput", until=until)
        written = await _write_if_active(db, enrollment, [entry], next_run_at=until)
        return ("deferred" if written else "skipped"), f"{profile.name} cap reached"

    channel = step.channel or "whatsapp"
    to = recipient_for(channel, lead)
    if not to:
        error = f"Lead has no {'email' if channel == 'email' else 'phone'} for {channel}"
        written = await _fail(db, enrollment, error, now, channel)
        return ("failed" if written else "skipped"), error

    content = step.content or {}
    body = render_message(content.get("body", ""), lead, humanize=config.humanize)
    subject = content.get("subject")
    if subject:
        subject = render_message(subject, lead, humanize=config.humanize)

    try:
        result = await sender.send(channel, to, body, subject=subject)
    except Exception as e:
        logger.error(
            "Sender raised for enrollment %s: %s", str(enrollment.id)[:8], str(e),
            extra={"enrollment_id": str(enrollment.id), "channel": channel},
        )
        result = SendResult(False, error=str(e))

    if not result.ok:
        error = result.error or "Send failed"
        written = await _fail(db, enrollment, error, now, channel)
        return ("failed" if written else "skipped"), error

    sends_this_cycle[campaign.id] = sends_this_cycle.get(campaign.id, 0) + 1
    enrollment_id = enrollment.id
    try:
        db.add(LeadMessage(
            organization_id=enrollment.organization_id,
            lead_id=lead.id,
            direction="outbound",
            channel=channel,
            body=body,
            external_id=result.external_id,
            created_at=now,
        ))
        sent = Sent(timestamp=now, step_id=step.id, channel=channel, external_id=result.external_id)
        next_step = await next_step_after(db, step)
        outcome = await _advance(db, enrollment, next_step, [sent], now, jitter=profile.jitter())
    except Exception as e:
        # Already sent: the row stays active and is retried once the claim lease expires
        await db.rollback()
        logger.error(
            "Sent for enrollment %s but could not record it: %s", str(enrollment_id)[:8], str(e),
            extra={"enrollment_id": str(enrollment_id), "channel": channel},
        )
        return "sent", f"sent via {channel}, not recorded until lease expiry"

    if outcome == "completed":
        return "sent", f"sent via {channel}, sequence completed"
    return "sent", f"sent via {channel}"


async def _run_delay_step(
    db: AsyncSession,
    enrollment: Enrollment,
    step: Step,
    now: datetime,
) -> tuple[str, str]:
    started = as_utc(enrollment.current_step_started_at) or now
    wait_until = add_delay(started, step.delay_config)
    if now < wait_until:
        entry = Waiting(timestamp=now, step_id=step.id, until=wait_until)
        written = await _write_if_active(db, enrollment, [entry], next_run_at=wait_until)
        return ("waiting" if written else "skipped"), f"waiting until {wait_until.isoformat()}"

    next_step = await next_step_after(db, step)
    return await _advance(db, enrollment, next_step, [], now), "delay elapsed"


async def _run_condition_step(
    db: AsyncSession,
    enrollment: Enrollment,
    lead: Lead,
    step: Step,
    now: datetime,
) -> tuple[str, str]:
    config = step.condition_config or {}
    outcome = evaluate_condition(config, lead, enrollment)
    target_index = config.get("true_step_index" if outcome else "false_step_index")

    if target_index is None:
        target = await next_step_after(db, step)
    else:
        target = await step_at_index(db, step.sequence_id, int(target_index))
        if target is None:
            error = f"Condition target step {target_index} not found"
            logger.warning(
                "Enrollment %s: %s in sequence %s",
                str(enrollment.id)[:8], error, str(step.sequence_id)[:8],
            )
            written = await _fail(db, enrollment, error, now)
            return ("failed" if written else "skipped"), error

    entry = Branched(
        timestamp=now,
        step_id=step.id,
        outcome=outcome,
        to_step_index=target.order_index if target else None,
    )
    return await _advance(db, enrollment, target, [entry], now), f"condition {'true' if outcome else 'false'}"


async def process_enrollment(
    db: AsyncSession,
    enrollment_id: uuid.UUID,
    now: datetime,
    sender,
    sends_this_cycle: dict,
) -> tuple[str, str]:
    """Execute the current step of one claimed enrollment. Returns (outcome, detail)."""
    enrollment = await db.get(Enrollment, enrollment_id, populate_existing=True)
    if enrollment is None or enrollment.status != "active":
        return "skipped", "no longer active"

    campaign = await db.get(Campaign, enrollment.campaign_id, populate_existing=True)
    lead = await db.get(Lead, enrollment.contact_id, populate_existing=True)

    if campaign is None or lead is None:
        written = await _fail(db, enrollment, "Campaign or lead not found", now)
        return ("failed" if written else "skipped"), "missing campaign or lead"

    if (
        campaign.organization_id != enrollment.organization_id
        or lead.organization_id != enrollment.organization_id
    ):
        written = await _fail(db, enrollment, "Tenant mismatch", now)
        return ("failed" if written else "skipped"), "tenant mismatch"

    # Late opt-out: cancel before running anything
    if lead.opted_out:
        entry = Cancelled(timestamp=now, step_id=enrollment.current_step_id)
        written = await _write_if_active(db, enrollment, [entry], status="cancelled", next_run_at=None)
        return ("cancelled" if written else "skipped"), "lead opted out"

    step = await db.get(Step, enrollment.current_step_id) if enrollment.current_step_id else None
    if step is None or step.sequence_id != enrollment.sequence_id:
        written = await _complete(db, enrollment, [], now)
        return ("completed" if written else "skipped"), "no current step"

    if step.type == "message":
        return await _run_message_step(db, enrollment, campaign, lead, step, now, sender, sends_this_cycle)
    if step.type == "delay":
        return await _run_delay_step(db, enrollment, step, now)
    if step.type == "condition":
        return await _run_condition_step(db, enrollment, lead, step, now)

    error = f"Unknown step type: {step.type}"
    written = await _fail(db, enrollment, error, now)
    return ("failed" if written else "skipped"), error


async def run_cycle(
    db: AsyncSession,
    organization_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
    sender=None,
    batch_size: Optional[int] = None,
) -> CycleSummary:
    """
    Run one cycle: select, claim, execute. Safe to call concurrently;
    each due enrollment is executed by at most one cycle.
    """
    from cadence.config import get_settings
    settings = get_settings()

    now = as_utc(now) or utcnow()
    sender = sender or get_sender()
    batch_size = batch_size or settings.runner_batch_size

    summary = CycleSummary()
    candidates = await select_due_enrollments(db, now, batch_size, organization_id)
    if not candidates:
        await db.commit()
        return summary

    claimed = await claim_enrollments(db, candidates, now, settings.runner_claim_lease_seconds)
    if len(claimed) < len(candidates):
        logger.debug("%d enrollments claimed by another cycle", len(candidates) - len(claimed))

    sends_this_cycle: dict = {}
    for enrollment_id in claimed:
        try:
            outcome, detail = await process_enrollment(db, enrollment_id, now, sender, sends_this_cycle)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(
                "Step execution failed for enrollment %s: %s", str(enrollment_id)[:8], str(e),
                extra={"enrollment_id": str(enrollment_id)},
            )
            outcome, detail = "failed", str(e)
            try:
                enrollment = await db.get(Enrollment, enrollment_id, populate_existing=True)
                if enrollment is not None:
                    await _fail(db, enrollment, str(e), now)
                    await db.commit()
            except Exception as inner:
                await db.rollback()
                logger.error("Could not record failure for %s: %s", str(enrollment_id)[:8], str(inner))

        summary.processed += 1
        summary.record(enrollment_id, outcome, detail)

    logger.info(
        "Runner cycle processed %d enrollments: %s",
        summary.processed, summary.counts,
    )
    return summary


async def run_sequence_runner():
    """Main loop - run a cycle every poll interval, then dispatch due broadcasts."""
    from cadence.config import get_settings
    from cadence.services.broadcasts import dispatch_due_broadcasts

    poll_interval = get_settings().runner_poll_interval_seconds
    logger.info("Sequence runner started (poll every %ds)", poll_interval)

    while True:
        await write_heartbeat("sequence_runner", HEARTBEAT_TTL_SECONDS)
        set_correlation_id(generate_correlation_id())
        try:
            async with async_session_factory() as db:
                await run_cycle(db)
            async with async_session_factory() as db:
                await dispatch_due_broadcasts(db)
        except Exception as e:
            logger.error("Sequence runner error: %s", str(e))

        await asyncio.sleep(poll_interval)
