"""
Audience model - a named, reusable lead filter.
Dynamic audiences are never materialized: membership is recomputed at
enrollment time. cached_count is a display-only snapshot.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cadence.database import Base


class Audience(Base):
    __tablename__ = "audiences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), default="dynamic", nullable=False)  # dynamic, static

    filter_config: Mapped[Optional[dict]] = mapped_column(
        JSONB, default=dict
    )  # {"status": "qualified", "has_phone": true, "tags": ["vip"]}

    cached_count: Mapped[int] = mapped_column(Integer, default=0)
    last_count_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_audiences_organization_id", "organization_id"),
    )

    def __repr__(self) -> str:
        return f"<Audience {self.name} ({self.type})>"
