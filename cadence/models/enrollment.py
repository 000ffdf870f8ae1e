"""
Enrollment model - per-lead progress through a campaign's sequence.
Status: active -> completed | failed | cancelled. Terminal states never change.
The partial unique index backs the orchestrator's dedup check: at most one
active/completed enrollment per (campaign, lead).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cadence.database import Base

ENROLLMENT_STATUSES = ("active", "completed", "failed", "cancelled")

_BLOCKING_STATUS_PREDICATE = text("status IN ('active', 'completed')")


class Enrollment(Base):
    __tablename__ = "campaign_enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    sequence_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sequences.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )

    # Cursor
    current_step_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sequence_steps.id", ondelete="SET NULL")
    )
    current_step_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    status: Mapped[str] = mapped_column(
        String(20), default="active", nullable=False
    )  # active, completed, failed, cancelled

    # Scheduling
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Append-only list of typed entries (see cadence.schemas.execution_log)
    execution_logs: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_enrollments_status_next_run", "status", "next_run_at"),
        Index("ix_enrollments_campaign_id", "campaign_id"),
        Index("ix_enrollments_org_contact", "organization_id", "contact_id"),
        Index(
            "uq_enrollments_campaign_contact_blocking",
            "campaign_id",
            "contact_id",
            unique=True,
            postgresql_where=_BLOCKING_STATUS_PREDICATE,
            sqlite_where=_BLOCKING_STATUS_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Enrollment {str(self.id)[:8]} {self.status}>"
