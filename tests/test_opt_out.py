"""
Tests for opt-out handling and STOP detection on inbound replies.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from cadence.models.activity import LeadMessage
from cadence.models.enrollment import Enrollment
from cadence.services.enrollment import enroll_campaign
from cadence.services.opt_out import handle_inbound_message, is_opt_out_message, opt_out_lead
from cadence.services.scoring import LeadNotFoundError
from cadence.utils.timezone import as_utc

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
SMS = {"type": "message", "channel": "sms", "content": {"body": "Hi {first_name}"}}


class TestIsOptOutMessage:
    @pytest.mark.parametrize("message", [
        "STOP", "stop", "Stop.", "  unsubscribe ", "STOPPPP", "opt-out",
        "please stop texting me", "Remove me from this list", "baja",
        "stop now", "ok stop",
    ])
    def test_opt_out_detected(self, message):
        assert is_opt_out_message(message) is True

    @pytest.mark.parametrize("message", [
        None, "", "   ", "Yes I'm interested", "what time do you open?",
        "I can't stop thinking about your offer, when can we talk about pricing",
    ])
    def test_normal_replies_ignored(self, message):
        assert is_opt_out_message(message) is False


class TestOptOutLead:
    async def test_marks_lead_and_cancels_enrollments(self, db, org_id, make_lead, make_campaign, mock_redis):
        lead = await make_lead()
        campaign, _, _ = await make_campaign([SMS])
        await enroll_campaign(db, org_id, campaign.id, now=NOW)

        result = await opt_out_lead(db, org_id, lead.id, now=NOW)

        assert result.to_dict() == {
            "lead_id": str(lead.id), "already_opted_out": False, "cancelled_enrollments": 1,
        }
        await db.refresh(lead)
        assert lead.opted_out is True
        assert as_utc(lead.opted_out_at) == NOW

        enrollment = (await db.execute(select(Enrollment))).scalar_one()
        assert enrollment.status == "cancelled"
        assert enrollment.next_run_at is None
        assert enrollment.execution_logs[-1]["kind"] == "cancelled"
        assert enrollment.execution_logs[-1]["reason"] == "opted_out"

    async def test_second_opt_out_is_noop(self, db, org_id, make_lead):
        lead = await make_lead()
        await opt_out_lead(db, org_id, lead.id, now=NOW)

        result = await opt_out_lead(db, org_id, lead.id, now=NOW + timedelta(days=1))

        assert result.already_opted_out is True
        assert result.cancelled == 0
        await db.refresh(lead)
        assert as_utc(lead.opted_out_at) == NOW

    async def test_terminal_enrollments_untouched(self, db, org_id, make_lead, make_campaign, mock_redis):
        lead = await make_lead()
        campaign, _, _ = await make_campaign([SMS])
        await enroll_campaign(db, org_id, campaign.id, now=NOW)
        enrollment = (await db.execute(select(Enrollment))).scalar_one()
        enrollment.status = "completed"
        enrollment.next_run_at = None
        await db.commit()

        result = await opt_out_lead(db, org_id, lead.id, now=NOW)

        assert result.cancelled == 0
        await db.refresh(enrollment)
        assert enrollment.status == "completed"

    async def test_unknown_lead(self, db, org_id):
        with pytest.raises(LeadNotFoundError):
            await opt_out_lead(db, org_id, uuid.uuid4())

    async def test_lead_of_other_org(self, db, make_lead):
        lead = await make_lead(organization_id=uuid.uuid4())
        with pytest.raises(LeadNotFoundError):
            await opt_out_lead(db, uuid.UUID("a1111111-1111-1111-1111-111111111111"), lead.id)


class TestHandleInboundMessage:
    async def test_regular_reply_recorded(self, db, org_id, make_lead):
        lead = await make_lead()

        result = await handle_inbound_message(db, org_id, lead.id, "sms", "Sounds good!", now=NOW)

        assert result == {"recorded": True, "opted_out": False, "cancelled_enrollments": 0}
        await db.refresh(lead)
        assert lead.opted_out is False
        assert as_utc(lead.last_activity_at) == NOW
        count = (await db.execute(
            select(func.count(LeadMessage.id)).where(
                LeadMessage.lead_id == lead.id, LeadMessage.direction == "inbound",
            )
        )).scalar()
        assert count == 1

    async def test_stop_reply_opts_out(self, db, org_id, make_lead, make_campaign, mock_redis):
        lead = await make_lead()
        campaign, _, _ = await make_campaign([SMS])
        await enroll_campaign(db, org_id, campaign.id, now=NOW)

        result = await handle_inbound_message(db, org_id, lead.id, "whatsapp", "STOP", now=NOW)

        assert result == {"recorded": True, "opted_out": True, "cancelled_enrollments": 1}
        await db.refresh(lead)
        assert lead.opted_out is True
