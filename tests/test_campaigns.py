"""
Campaign curation tests - lifecycle, audiences, sequences, steps and reporting.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from cadence.models.broadcast import Broadcast
from cadence.services.campaigns import (
    CampaignStateError,
    InvalidStepError,
    NotFoundError,
    activate_campaign,
    add_step,
    archive_campaign,
    complete_campaign,
    create_audience,
    create_campaign,
    create_quick_campaign,
    create_sequence,
    delete_audience,
    get_campaign,
    link_audience,
    list_campaigns,
    list_sequences,
    pause_campaign,
    refresh_audience_count,
    resume_campaign,
    update_audience,
    update_campaign,
    update_step,
)
from cadence.services.enrollment import enroll_campaign
from cadence.services.stats import get_campaign_stats, get_marketing_overview
from cadence.workers.sequence_runner import run_cycle

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
SMS = {"type": "message", "channel": "sms", "content": {"body": "Hi {first_name}"}}


class TestCampaignLifecycle:
    async def test_create_is_draft_with_default_delivery(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Spring promo", goal="reactivation")
        assert campaign.status == "draft"
        assert campaign.delivery_config["mode"] == "growth"
        assert campaign.delivery_config["schedule_window"] == {"start": 9, "end": 18}

    async def test_activate_needs_audience(self, db, org_id):
        campaign = await create_campaign(db, org_id, "No audience")
        with pytest.raises(CampaignStateError):
            await activate_campaign(db, org_id, campaign.id, now=NOW)

    async def test_activate_respects_schedule(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Later", scheduled_for=NOW + timedelta(days=1))
        audience = await create_audience(db, org_id, "Everyone")
        await link_audience(db, org_id, campaign.id, audience.id)
        with pytest.raises(CampaignStateError):
            await activate_campaign(db, org_id, campaign.id, now=NOW)

        activated = await activate_campaign(db, org_id, campaign.id, now=NOW + timedelta(days=2))
        assert activated.status == "active"

    async def test_pause_resume_complete_archive(self, db, org_id, make_campaign):
        campaign, _, _ = await make_campaign([SMS])

        assert (await pause_campaign(db, org_id, campaign.id)).status == "paused"
        assert (await pause_campaign(db, org_id, campaign.id)).status == "paused"
        assert (await resume_campaign(db, org_id, campaign.id)).status == "active"
        assert (await complete_campaign(db, org_id, campaign.id)).status == "completed"
        with pytest.raises(CampaignStateError):
            await resume_campaign(db, org_id, campaign.id)
        assert (await archive_campaign(db, org_id, campaign.id)).status == "archived"

    async def test_cannot_resume_draft(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Draft")
        with pytest.raises(CampaignStateError):
            await resume_campaign(db, org_id, campaign.id)

    async def test_update_rejects_counters(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        with pytest.raises(CampaignStateError):
            await update_campaign(db, org_id, campaign.id, {"total_enrolled": 99})

        updated = await update_campaign(
            db, org_id, campaign.id, {"name": "Renamed", "delivery_config": {"mode": "stealth"}},
        )
        assert updated.name == "Renamed"
        assert updated.delivery_config["mode"] == "stealth"

    async def test_org_isolation(self, db, org_id):
        campaign = await create_campaign(db, uuid.uuid4(), "Theirs")
        with pytest.raises(NotFoundError):
            await get_campaign(db, org_id, campaign.id)
        assert await list_campaigns(db, org_id) == []


class TestQuickCampaign:
    async def test_creates_full_setup(self, db, org_id, make_lead):
        await make_lead()
        await make_lead(status="new")

        created = await create_quick_campaign(
            db, org_id, "Flash sale", "Hi {first_name}", "whatsapp", filters={"status": "qualified"},
        )

        assert created["campaign"].status == "draft"
        assert created["campaign"].audience_id == created["audience"].id
        assert created["campaign"].delivery_config["humanize"] is True
        assert created["audience"].cached_count == 1
        assert created["sequence"].is_active is True
        broadcast = created["broadcast"]
        assert isinstance(broadcast, Broadcast)
        assert broadcast.status == "draft"
        assert broadcast.total_recipients == 1

        [(sequence, steps)] = await list_sequences(db, org_id, created["campaign"].id)
        assert [(s.type, s.channel, s.order_index) for s in steps] == [("message", "whatsapp", 0)]

    async def test_quick_campaign_enrolls(self, db, org_id, make_lead, mock_redis):
        await make_lead()
        created = await create_quick_campaign(db, org_id, "Flash sale", "Hello", "sms")
        result = await enroll_campaign(db, org_id, created["campaign"].id, now=NOW)
        assert result.enrolled == 1

    async def test_rejects_unknown_channel(self, db, org_id):
        with pytest.raises(InvalidStepError):
            await create_quick_campaign(db, org_id, "Fax", "Hello", "fax")


class TestAudiences:
    async def test_cached_count_follows_filter(self, db, org_id, make_lead):
        await make_lead(source="referral")
        await make_lead(source="website")
        audience = await create_audience(db, org_id, "Referrals", {"source": "referral"})
        assert audience.cached_count == 1

        audience = await update_audience(db, org_id, audience.id, filter_config={})
        assert audience.cached_count == 2
        assert audience.filter_config == {}

    async def test_refresh_count(self, db, org_id, make_lead):
        audience = await create_audience(db, org_id, "Everyone")
        assert audience.cached_count == 0
        await make_lead()
        audience = await refresh_audience_count(db, org_id, audience.id)
        assert audience.cached_count == 1

    async def test_delete_unlinks_campaigns(self, db, org_id, make_campaign):
        campaign, _, _ = await make_campaign([SMS])
        audience_id = campaign.audience_id

        await delete_audience(db, org_id, audience_id)

        await db.refresh(campaign)
        assert campaign.audience_id is None

    async def test_link_unknown_audience(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        with pytest.raises(NotFoundError):
            await link_audience(db, org_id, campaign.id, uuid.uuid4())


class TestSequencesAndSteps:
    async def test_new_active_sequence_replaces_old(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        first = await create_sequence(db, org_id, campaign.id, "v1")
        second = await create_sequence(db, org_id, campaign.id, "v2")

        await db.refresh(first)
        assert first.is_active is False
        assert second.is_active is True

    async def test_steps_append_in_order(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        sequence = await create_sequence(db, org_id, campaign.id, "Main Flow")

        first = await add_step(db, org_id, sequence.id, "message", channel="sms", content={"body": "Hi"})
        wait = await add_step(db, org_id, sequence.id, "delay", channel="sms", delay_config={"value": 2, "unit": "days"})
        last = await add_step(db, org_id, sequence.id, "message", channel="email", content={"body": "Bye"})

        assert [first.order_index, wait.order_index, last.order_index] == [0, 1, 2]
        assert wait.channel is None

    async def test_invalid_steps_rejected(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        sequence = await create_sequence(db, org_id, campaign.id, "Main Flow")
        with pytest.raises(InvalidStepError):
            await add_step(db, org_id, sequence.id, "webhook")
        with pytest.raises(InvalidStepError):
            await add_step(db, org_id, sequence.id, "message", channel="pigeon")

    async def test_update_step(self, db, org_id):
        campaign = await create_campaign(db, org_id, "Promo")
        sequence = await create_sequence(db, org_id, campaign.id, "Main Flow")
        step = await add_step(db, org_id, sequence.id, "message", channel="sms", content={"body": "Hi"})

        step = await update_step(db, org_id, step.id, {"content": {"body": "Hello"}, "channel": "whatsapp"})
        assert step.content == {"body": "Hello"}
        assert step.channel == "whatsapp"

        with pytest.raises(InvalidStepError):
            await update_step(db, org_id, step.id, {"order_index": 5})


class TestStats:
    async def test_campaign_stats(self, db, org_id, make_campaign, make_lead, fake_sender, mock_redis):
        await make_lead(name="Ana Souza")
        await make_lead(name="Bruno Lima", phone=None)
        campaign, _, _ = await make_campaign([SMS])
        await enroll_campaign(db, org_id, campaign.id, now=NOW)
        await run_cycle(db, now=NOW, sender=fake_sender)
        await db.refresh(campaign)

        stats = await get_campaign_stats(db, org_id, campaign.id, limit=10)

        assert stats["campaign"]["id"] == str(campaign.id)
        assert stats["campaign"]["total_enrolled"] == 2
        assert stats["campaign"]["total_completed"] == 1
        assert stats["stats"] == {"total": 2, "active": 0, "completed": 1, "failed": 1, "cancelled": 0}
        activity = {a["lead"]["name"]: a for a in stats["recent_activity"]}
        assert activity["Ana Souza"]["status"] == "completed"
        assert activity["Ana Souza"]["last_log"]["kind"] == "completed"
        assert activity["Bruno Lima"]["last_log"]["kind"] == "failed"

    async def test_recent_activity_limit(self, db, org_id, make_campaign, make_lead, mock_redis):
        for _ in range(4):
            await make_lead()
        campaign, _, _ = await make_campaign([SMS])
        await enroll_campaign(db, org_id, campaign.id, now=NOW)

        stats = await get_campaign_stats(db, org_id, campaign.id, limit=3)

        assert stats["stats"]["active"] == 4
        assert len(stats["recent_activity"]) == 3

    async def test_unknown_campaign(self, db, org_id):
        with pytest.raises(NotFoundError):
            await get_campaign_stats(db, org_id, uuid.uuid4())

    async def test_marketing_overview(self, db, org_id):
        await create_campaign(db, org_id, "One")
        await create_campaign(db, org_id, "Two")
        db.add(Broadcast(organization_id=org_id, name="A", message="Hi", sent_count=40, delivered_count=30))
        db.add(Broadcast(organization_id=org_id, name="B", message="Hi", sent_count=10, delivered_count=9))
        db.add(Broadcast(organization_id=uuid.uuid4(), name="C", message="Hi", sent_count=99, delivered_count=99))
        await db.commit()

        overview = await get_marketing_overview(db, org_id)

        assert overview == {
            "total_campaigns": 2,
            "total_messages": 50,
            "total_delivered": 39,
            "delivery_rate": 78,
        }

    async def test_overview_without_sends(self, db, org_id):
        overview = await get_marketing_overview(db, org_id)
        assert overview["delivery_rate"] == 0
        assert overview["total_campaigns"] == 0
