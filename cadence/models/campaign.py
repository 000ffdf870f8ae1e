"""
Campaign model - links an Audience to a Sequence and carries delivery policy.
Lifecycle: draft -> active <-> paused; completed/archived are manual curation states.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Float, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cadence.database import Base


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    goal: Mapped[Optional[str]] = mapped_column(String(100))

    status: Mapped[str] = mapped_column(
        String(20), default="draft", nullable=False
    )  # draft, active, paused, completed, archived

    # Targeting
    audience_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("audiences.id", ondelete="SET NULL")
    )
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Pacing
    delivery_config: Mapped[Optional[dict]] = mapped_column(
        JSONB, default=dict
    )  # {"mode": "growth", "humanize": true, "schedule_window": {"start": 9, "end": 18}}

    # Aggregates
    total_enrolled: Mapped[int] = mapped_column(Integer, default=0)
    total_completed: Mapped[int] = mapped_column(Integer, default=0)
    engagement_score: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_campaigns_organization_id", "organization_id"),
        Index("ix_campaigns_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Campaign {self.name} ({self.status})>"
