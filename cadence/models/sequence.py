"""
Sequence and Step models - the ordered actions a campaign runs per enrolled lead.
Steps are linear by order_index; condition steps may jump to another index.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cadence.database import Base

STEP_TYPES = ("message", "delay", "condition")
MESSAGE_CHANNELS = ("whatsapp", "sms", "email")


class Sequence(Base):
    __tablename__ = "sequences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(50), default="manual", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_sequences_campaign_id", "campaign_id"),
    )

    def __repr__(self) -> str:
        return f"<Sequence {self.name} active={self.is_active}>"


class Step(Base):
    __tablename__ = "sequence_steps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    sequence_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sequences.id", ondelete="CASCADE"), nullable=False
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)  # message, delay, condition
    channel: Mapped[Optional[str]] = mapped_column(String(20))  # message steps: whatsapp, sms, email
    name: Mapped[Optional[str]] = mapped_column(String(200))
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    content: Mapped[Optional[dict]] = mapped_column(JSONB)  # {"body": "Hi {first_name}", "subject": "..."}
    delay_config: Mapped[Optional[dict]] = mapped_column(JSONB)  # {"value": 3, "unit": "days"}
    condition_config: Mapped[Optional[dict]] = mapped_column(
        JSONB
    )  # {"field": "status", "operator": "eq", "value": "qualified", "true_step_index": 3, "false_step_index": null}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_sequence_steps_sequence_order", "sequence_id", "order_index", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Step #{self.order_index} {self.type}>"
