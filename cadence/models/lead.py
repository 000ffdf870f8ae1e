"""
Lead model - CRM contact records targeted by campaigns.
Owned by the CRM; this service only writes score fields and the opt-out flag.
Opted-out leads are permanently excluded from audience resolution.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cadence.database import Base


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )

    # Contact info
    name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    company: Mapped[Optional[str]] = mapped_column(String(200))

    # Pipeline
    status: Mapped[str] = mapped_column(
        String(50), default="new", nullable=False
    )  # free-form pipeline key: new, contacted, qualified, negotiation, won, lost
    source: Mapped[Optional[str]] = mapped_column(String(50))  # website, referral, import_csv, ...
    tags: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Scoring (0-100, null until first computed)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    score_breakdown: Mapped[Optional[dict]] = mapped_column(JSONB)
    last_scored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Activity
    last_contact_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Marketing opt-out
    opted_out: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    opted_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_leads_organization_id", "organization_id"),
        Index("ix_leads_org_status", "organization_id", "status"),
        Index("ix_leads_org_opted_out", "organization_id", "opted_out"),
        Index("ix_leads_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        masked = self.phone[:6] + "***" if self.phone else "no-phone"
        return f"<Lead {masked} status={self.status}>"
