"""Initial schema - leads, audiences, campaigns, sequences, enrollments, broadcasts.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Leads (owned by the CRM, read and flagged here)
    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(20)),
        sa.Column("company", sa.String(200)),
        sa.Column("status", sa.String(50), nullable=False, server_default="new"),
        sa.Column("source", sa.String(50)),
        sa.Column("tags", postgresql.JSONB, server_default=sa.text("'[]'::jsonb")),
        sa.Column("assigned_to", postgresql.UUID(as_uuid=True)),
        sa.Column("score", sa.Integer),
        sa.Column("score_breakdown", postgresql.JSONB),
        sa.Column("last_scored_at", sa.DateTime(timezone=True)),
        sa.Column("last_contact_at", sa.DateTime(timezone=True)),
        sa.Column("last_activity_at", sa.DateTime(timezone=True)),
        sa.Column("opted_out", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("opted_out_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_leads_organization_id", "leads", ["organization_id"])
    op.create_index("ix_leads_org_status", "leads", ["organization_id", "status"])
    op.create_index("ix_leads_org_opted_out", "leads", ["organization_id", "opted_out"])
    op.create_index("ix_leads_created_at", "leads", ["created_at"])

    # Lead activity (feeds scoring)
    op.create_table(
        "lead_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("body", sa.Text),
        sa.Column("external_id", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lead_messages_lead_id", "lead_messages", ["lead_id"])

    op.create_table(
        "lead_tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lead_tasks_lead_id", "lead_tasks", ["lead_id"])

    # Audiences
    op.create_table(
        "audiences",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("type", sa.String(20), nullable=False, server_default="dynamic"),
        sa.Column("filter_config", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("cached_count", sa.Integer, server_default="0"),
        sa.Column("last_count_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audiences_organization_id", "audiences", ["organization_id"])

    # Campaigns
    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("goal", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("audience_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("audiences.id", ondelete="SET NULL")),
        sa.Column("scheduled_for", sa.DateTime(timezone=True)),
        sa.Column("delivery_config", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("total_enrolled", sa.Integer, server_default="0"),
        sa.Column("total_completed", sa.Integer, server_default="0"),
        sa.Column("engagement_score", sa.Float, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_campaigns_organization_id", "campaigns", ["organization_id"])
    op.create_index("ix_campaigns_status", "campaigns", ["status"])

    # Sequences and steps
    op.create_table(
        "sequences",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("trigger_type", sa.String(50), nullable=False, server_default="manual"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sequences_campaign_id", "sequences", ["campaign_id"])

    op.create_table(
        "sequence_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sequences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("channel", sa.String(20)),
        sa.Column("name", sa.String(200)),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("content", postgresql.JSONB),
        sa.Column("delay_config", postgresql.JSONB),
        sa.Column("condition_config", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_sequence_steps_sequence_order", "sequence_steps",
        ["sequence_id", "order_index"], unique=True,
    )

    # Enrollments
    op.create_table(
        "campaign_enrollments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sequence_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sequences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_step_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sequence_steps.id", ondelete="SET NULL")),
        sa.Column("current_step_started_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("next_run_at", sa.DateTime(timezone=True)),
        sa.Column("last_run_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("execution_logs", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_enrollments_status_next_run", "campaign_enrollments", ["status", "next_run_at"])
    op.create_index("ix_enrollments_campaign_id", "campaign_enrollments", ["campaign_id"])
    op.create_index("ix_enrollments_org_contact", "campaign_enrollments", ["organization_id", "contact_id"])
    # At most one active/completed enrollment per (campaign, lead)
    op.create_index(
        "uq_enrollments_campaign_contact_blocking", "campaign_enrollments",
        ["campaign_id", "contact_id"], unique=True,
        postgresql_where=sa.text("status IN ('active', 'completed')"),
    )

    # Broadcasts
    op.create_table(
        "broadcasts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="SET NULL")),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("channel", sa.String(20), nullable=False, server_default="whatsapp"),
        sa.Column("subject", sa.String(255)),
        sa.Column("filters", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("total_recipients", sa.Integer, server_default="0"),
        sa.Column("sent_count", sa.Integer, server_default="0"),
        sa.Column("delivered_count", sa.Integer, server_default="0"),
        sa.Column("read_count", sa.Integer, server_default="0"),
        sa.Column("failed_count", sa.Integer, server_default="0"),
        sa.Column("error", sa.Text),
        sa.Column("scheduled_at", sa.DateTime(timezone=True)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_broadcasts_organization_id", "broadcasts", ["organization_id"])
    op.create_index("ix_broadcasts_status_scheduled", "broadcasts", ["status", "scheduled_at"])


def downgrade() -> None:
    op.drop_table("broadcasts")
    op.drop_table("campaign_enrollments")
    op.drop_table("sequence_steps")
    op.drop_table("sequences")
    op.drop_table("campaigns")
    op.drop_table("audiences")
    op.drop_table("lead_tasks")
    op.drop_table("lead_messages")
    op.drop_table("leads")
