"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and the outbound Sender.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from cadence.database import Base
from cadence.models import Audience, Campaign, Lead, Sequence, Step
from cadence.services.sender import SendResult

# Monday, inside the default 9-18 window when the campaign timezone is UTC
MONDAY_10AM = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

UTC_WINDOW = {"mode": "turbo", "timezone": "UTC", "schedule_window": {"start": 9, "end": 18}}


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("cadence.utils.redis.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


class FakeSender:
    """Records every send. Addresses in `reject` get a failed SendResult.
    `error` is raised for every send, or only for addresses in `raise_for` when given."""

    def __init__(self, reject: tuple = (), error: Optional[Exception] = None, raise_for: tuple = ()):
        self.sent: list[dict] = []
        self.reject = set(reject)
        self.error = error
        self.raise_for = set(raise_for)

    async def send(self, channel, to, body, subject=None) -> SendResult:
        if self.error is not None and (not self.raise_for or to in self.raise_for):
            raise self.error
        self.sent.append({"channel": channel, "to": to, "body": body, "subject": subject})
        if to in self.reject:
            return SendResult(False, error="Recipient rejected")
        return SendResult(True, external_id=f"ext-{len(self.sent)}")


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def make_sender():
    """Factory: FakeSender with rejected addresses or a raised error."""
    return FakeSender


@pytest.fixture
def org_id():
    return uuid.UUID("a1111111-1111-1111-1111-111111111111")


@pytest.fixture
def make_lead(db, org_id):
    """Factory: insert a lead (defaults: qualified, with phone, no email)."""
    counter = {"n": 0}

    async def _make(organization_id=None, **fields) -> Lead:
        counter["n"] += 1
        data = {
            "organization_id": organization_id or org_id,
            "name": f"Lead {counter['n']}",
            "phone": f"+1512555{counter['n']:04d}",
            "status": "qualified",
            # Distinct creation times keep resolution order predictable
            "created_at": datetime(2026, 1, 1, 12, counter["n"] % 60, tzinfo=timezone.utc),
        }
        data.update(fields)
        lead = Lead(**data)
        db.add(lead)
        await db.commit()
        return lead

    return _make


@pytest.fixture
def make_campaign(db, org_id):
    """Factory: audience + campaign + active sequence with the given steps.

    Each step is a dict of Step fields (type, channel, content, delay_config, ...);
    order_index follows list order.
    """

    async def _make(
        steps: list[dict],
        filter_config: Optional[dict] = None,
        status: str = "active",
        delivery_config: Optional[dict] = None,
        organization_id=None,
        **campaign_fields,
    ):
        organization_id = organization_id or org_id
        audience = Audience(
            organization_id=organization_id,
            name="Qualified with phone",
            type="dynamic",
            filter_config=filter_config if filter_config is not None else {"status": "qualified"},
        )
        db.add(audience)
        await db.flush()

        campaign = Campaign(
            organization_id=organization_id,
            name="Spring promo",
            status=status,
            audience_id=audience.id,
            delivery_config=delivery_config if delivery_config is not None else dict(UTC_WINDOW),
            total_enrolled=0,
            total_completed=0,
            **campaign_fields,
        )
        db.add(campaign)
        await db.flush()

        sequence = Sequence(
            organization_id=organization_id,
            campaign_id=campaign.id,
            name="Main Flow",
            is_active=True,
        )
        db.add(sequence)
        await db.flush()

        created = []
        for index, step_fields in enumerate(steps):
            step = Step(
                organization_id=organization_id,
                sequence_id=sequence.id,
                order_index=index,
                **step_fields,
            )
            db.add(step)
            created.append(step)
        await db.commit()
        return campaign, sequence, created

    return _make
