"""
Tests for the marketing API routes, the error envelope and the health endpoints.
Route functions are called directly with the test session; app-level behaviour
(middleware, exception handlers, auth) goes through TestClient with get_db overridden.
"""
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from cadence.api import audiences as audiences_api
from cadence.api import broadcasts as broadcasts_api
from cadence.api import campaigns as campaigns_api
from cadence.api import leads as leads_api
from cadence.api import sequences as sequences_api
from cadence.api.health import health_check, readiness_check
from cadence.api.helpers import parse_uuid, to_http_error
from cadence.database import get_db
from cadence.main import create_app
from cadence.schemas.api_requests import (
    AudienceCreateRequest,
    BroadcastCreateRequest,
    CampaignCreateRequest,
    CampaignUpdateRequest,
    FilterPreviewRequest,
    InboundMessageRequest,
    LinkAudienceRequest,
    QuickCampaignRequest,
    SequenceCreateRequest,
    StepCreateRequest,
)
from cadence.services.audience import AudienceResolutionError
from cadence.services.enrollment import EnrollmentBusyError

SMS = {"type": "message", "channel": "sms", "content": {"body": "Hi {first_name}"}}


def _mock_settings(**overrides):
    settings = MagicMock()
    settings.cron_secret = overrides.get("cron_secret", "")
    settings.app_env = overrides.get("app_env", "development")
    settings.runner_batch_size = 50
    settings.runner_claim_lease_seconds = 300
    return settings


@pytest.fixture
def client():
    """TestClient whose database dependency never reaches a real engine."""
    app = create_app()

    async def _fake_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = _fake_db
    return TestClient(app, raise_server_exceptions=False)


class TestHelpers:
    def test_parse_uuid(self):
        value = uuid.uuid4()
        assert parse_uuid(str(value)) == value
        with pytest.raises(HTTPException) as exc:
            parse_uuid("not-a-uuid", "campaign ID")
        assert exc.value.status_code == 400
        assert exc.value.detail == "Invalid campaign ID"

    @pytest.mark.parametrize("error,status", [
        (EnrollmentBusyError("busy"), 409),
        (AudienceResolutionError("down"), 503),
        (RuntimeError("boom"), 500),
    ])
    def test_error_mapping(self, error, status):
        assert to_http_error(error).status_code == status

    def test_unexpected_error_hides_detail(self):
        assert to_http_error(RuntimeError("password=hunter2")).detail == "Internal error"


class TestCampaignRoutes:
    async def test_create_and_get(self, db, org_id):
        created = await campaigns_api.create_campaign(
            str(org_id), CampaignCreateRequest(name="Spring promo", goal="reactivation"), db=db,
        )
        assert created["success"] is True
        assert created["campaign"]["status"] == "draft"

        fetched = await campaigns_api.get_campaign(str(org_id), created["campaign"]["id"], db=db)
        assert fetched["campaign"]["name"] == "Spring promo"

        listed = await campaigns_api.list_campaigns(str(org_id), db=db)
        assert [c["name"] for c in listed["campaigns"]] == ["Spring promo"]

    async def test_unknown_campaign_is_404(self, db, org_id):
        with pytest.raises(HTTPException) as exc:
            await campaigns_api.get_campaign(str(org_id), str(uuid.uuid4()), db=db)
        assert exc.value.status_code == 404

    async def test_invalid_id_is_400(self, db, org_id):
        with pytest.raises(HTTPException) as exc:
            await campaigns_api.get_campaign(str(org_id), "abc", db=db)
        assert exc.value.status_code == 400

    async def test_patch_only_sent_fields(self, db, org_id):
        created = await campaigns_api.create_campaign(
            str(org_id), CampaignCreateRequest(name="Promo", description="Keep me"), db=db,
        )
        updated = await campaigns_api.update_campaign(
            str(org_id), created["campaign"]["id"], CampaignUpdateRequest(name="Renamed"), db=db,
        )
        assert updated["campaign"]["name"] == "Renamed"
        assert updated["campaign"]["description"] == "Keep me"

    async def test_full_flow(self, db, org_id, make_lead, mock_redis):
        await make_lead()
        await make_lead(status="new")
        org = str(org_id)

        campaign = (await campaigns_api.create_campaign(org, CampaignCreateRequest(name="Flow"), db=db))["campaign"]
        audience = (await audiences_api.create_audience(
            org, AudienceCreateRequest(name="Qualified", filter_config={"status": "qualified"}), db=db,
        ))["audience"]
        assert audience["cached_count"] == 1

        await campaigns_api.link_audience(
            org, campaign["id"], LinkAudienceRequest(audience_id=uuid.UUID(audience["id"])), db=db,
        )
        sequence = (await sequences_api.create_sequence(
            org, campaign["id"], SequenceCreateRequest(name="Main Flow"), db=db,
        ))["sequence"]
        step = (await sequences_api.add_step(
            org, sequence["id"], StepCreateRequest(**SMS), db=db,
        ))["step"]
        assert step["order_index"] == 0

        activated = await campaigns_api.activate_campaign(org, campaign["id"], db=db)
        assert activated["campaign"]["status"] == "active"

        enrolled = await campaigns_api.enroll(org, campaign["id"], db=db)
        assert enrolled == {"success": True, "enrolled": 1, "audience_size": 1}

        stats = await campaigns_api.campaign_stats(org, campaign["id"], limit=10, db=db)
        assert stats["stats"]["active"] == 1

    async def test_enroll_without_audience_is_400(self, db, org_id, mock_redis):
        created = await campaigns_api.create_campaign(str(org_id), CampaignCreateRequest(name="Bare"), db=db)
        with pytest.raises(HTTPException) as exc:
            await campaigns_api.enroll(str(org_id), created["campaign"]["id"], db=db)
        assert exc.value.status_code == 400

    async def test_invalid_transition_is_400(self, db, org_id):
        created = await campaigns_api.create_campaign(str(org_id), CampaignCreateRequest(name="Draft"), db=db)
        with pytest.raises(HTTPException) as exc:
            await campaigns_api.resume_campaign(str(org_id), created["campaign"]["id"], db=db)
        assert exc.value.status_code == 400

    async def test_quick_campaign(self, db, org_id, make_lead):
        await make_lead()
        result = await campaigns_api.create_quick_campaign(
            str(org_id), QuickCampaignRequest(name="Flash", message="Hi {first_name}", channel="sms"), db=db,
        )
        assert result["audience"]["cached_count"] == 1
        assert result["broadcast"]["status"] == "draft"
        assert result["sequence"]["is_active"] is True

    async def test_marketing_overview(self, db, org_id):
        overview = await campaigns_api.marketing_overview(str(org_id), db=db)
        assert overview == {
            "success": True, "total_campaigns": 0, "total_messages": 0,
            "total_delivered": 0, "delivery_rate": 0,
        }


class TestAudienceRoutes:
    async def test_preview(self, db, org_id, make_lead):
        await make_lead(tags=["vip"])
        await make_lead()
        result = await audiences_api.preview_audience(
            str(org_id), FilterPreviewRequest(filters={"tags": ["vip"]}), db=db,
        )
        assert result == {"success": True, "count": 1}

    async def test_invalid_filter_is_422(self, db, org_id):
        with pytest.raises(HTTPException) as exc:
            await audiences_api.preview_audience(
                str(org_id), FilterPreviewRequest(filters={"score_min": 500}), db=db,
            )
        assert exc.value.status_code == 422


class TestLeadRoutes:
    async def test_score(self, db, org_id, make_lead):
        lead = await make_lead(email="ana@example.com")
        result = await leads_api.score_single_lead(str(org_id), str(lead.id), db=db)
        assert result["success"] is True
        assert result["breakdown"]["profile"] == 15
        assert 0 <= result["score"] <= 100

    async def test_score_unknown_lead_is_404(self, db, org_id):
        with pytest.raises(HTTPException) as exc:
            await leads_api.score_single_lead(str(org_id), str(uuid.uuid4()), db=db)
        assert exc.value.status_code == 404

    async def test_opt_out_and_inbound(self, db, org_id, make_lead):
        lead = await make_lead()
        inbound = await leads_api.inbound_message(
            str(org_id), str(lead.id), InboundMessageRequest(channel="sms", body="Thanks!"), db=db,
        )
        assert inbound["opted_out"] is False

        result = await leads_api.opt_out(str(org_id), str(lead.id), db=db)
        assert result["success"] is True
        assert result["already_opted_out"] is False

    async def test_rescore(self, db, org_id, make_lead):
        await make_lead()
        await make_lead()
        assert await leads_api.rescore_organization(str(org_id), db=db) == {"success": True, "updated": 2}


class TestBroadcastRoutes:
    async def test_create_and_send(self, db, org_id, make_lead, fake_sender):
        await make_lead()
        created = await broadcasts_api.create_broadcast(
            str(org_id), BroadcastCreateRequest(name="Promo", message="Hi {first_name}", channel="sms"), db=db,
        )
        assert created["broadcast"]["total_recipients"] == 1

        with patch("cadence.services.broadcasts.get_sender", return_value=fake_sender):
            sent = await broadcasts_api.send_broadcast(str(org_id), created["broadcast"]["id"], db=db)

        assert sent["success"] is True
        assert sent["broadcast"]["status"] == "completed"
        assert sent["broadcast"]["sent_count"] == 1

    async def test_send_twice_is_400(self, db, org_id, fake_sender):
        created = await broadcasts_api.create_broadcast(
            str(org_id), BroadcastCreateRequest(name="Promo", message="Hello"), db=db,
        )
        with patch("cadence.services.broadcasts.get_sender", return_value=fake_sender):
            await broadcasts_api.send_broadcast(str(org_id), created["broadcast"]["id"], db=db)
            with pytest.raises(HTTPException) as exc:
                await broadcasts_api.send_broadcast(str(org_id), created["broadcast"]["id"], db=db)
        assert exc.value.status_code == 400


class TestHealth:
    async def test_liveness(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None

    async def test_ready(self, db, mock_redis):
        mock_redis.get = AsyncMock(return_value="2026-03-02T10:00:00+00:00")
        result = await readiness_check(db=db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}
        assert result["runner_heartbeat"] == "2026-03-02T10:00:00+00:00"

    async def test_degraded_without_redis(self, db):
        with patch("cadence.utils.redis.get_redis", side_effect=ConnectionError("down")):
            result = await readiness_check(db=db)
        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False


class TestApp:
    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get("/api/v1/nothing-here")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc123"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "abc123"

    def test_validation_error_envelope(self, client):
        response = client.post(f"/api/v1/orgs/{uuid.uuid4()}/campaigns", json={"description": "no name"})
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert "name" in body["error"]

    def test_invalid_org_id(self, client):
        response = client.get("/api/v1/orgs/not-a-uuid/campaigns")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid organization ID"}

    def test_run_cycle_requires_secret(self, client):
        with patch("cadence.api.runner.get_settings", return_value=_mock_settings(cron_secret="s3cret")):
            missing = client.post("/api/v1/marketing/run-cycle")
            wrong = client.post("/api/v1/marketing/run-cycle", headers={"Authorization": "Bearer nope"})
        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert missing.json() == {"success": False, "error": "Unauthorized"}

    def test_run_cycle_refused_in_production_without_secret(self, client):
        with (
            patch("cadence.api.runner.get_settings", return_value=_mock_settings(app_env="production")),
            patch("cadence.api.runner.run_cycle", new=AsyncMock()) as run,
        ):
            response = client.post("/api/v1/marketing/run-cycle")
        assert response.status_code == 401
        run.assert_not_awaited()

    def test_run_cycle_open_outside_production_without_secret(self, client):
        with (
            patch("cadence.api.runner.get_settings", return_value=_mock_settings()),
            patch("cadence.api.runner.run_cycle", new=AsyncMock(return_value=MagicMock(
                to_dict=lambda: {"processed": 0, "logs": [], "counts": {}},
            ))) as run,
        ):
            response = client.post("/api/v1/marketing/run-cycle")
        assert response.status_code == 200
        run.assert_awaited_once()

    def test_run_cycle_with_secret(self, client):
        with (
            patch("cadence.api.runner.get_settings", return_value=_mock_settings(cron_secret="s3cret")),
            patch("cadence.api.runner.run_cycle", new=AsyncMock(return_value=MagicMock(
                to_dict=lambda: {"processed": 0, "logs": [], "counts": {}},
            ))) as run,
        ):
            response = client.post(
                "/api/v1/marketing/run-cycle", headers={"Authorization": "Bearer s3cret"},
            )
        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 0, "logs": [], "counts": {}}
        assert run.await_args.kwargs == {"organization_id": None}
