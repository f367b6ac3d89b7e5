"""escalation_schema

Revision ID: 5b0e9a7c41d2
Revises:
Create Date: 2026-10-12 09:41:17.530114

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b0e9a7c41d2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create tenants, team members, leads and events."""
    # Tenants table
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid, primary_key=True),
        # Identity
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("niche", sa.String(100)),
        sa.Column("contractor_type", sa.String(30)),
        # SMS
        sa.Column("sms_from_phone", sa.String(20)),
        sa.Column("notification_phone", sa.String(20)),
        # AI config
        sa.Column("ai_greeting", sa.Text),
        sa.Column("ai_service_list", sa.Text),
        sa.Column("ai_tone_style", sa.String(20)),
        # Calendar
        sa.Column("calendar_url", sa.String(500)),
        sa.Column("calcom_api_key", sa.String(255)),
        sa.Column("calcom_event_type_id", sa.Integer),
        sa.Column("calendar_time_zone", sa.String(64)),
        # Settings
        sa.Column("claim_timeout_sec", sa.Integer),
        sa.Column("consent_text", sa.Text),
        sa.Column("is_active", sa.Boolean),
        # Timestamps
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    # Team members table
    op.create_table(
        "team_members",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", sa.Uuid, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("role", sa.String(20)),
        sa.Column("receive_sms", sa.Boolean),
        sa.Column("is_active", sa.Boolean),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_team_members_tenant_id", "team_members", ["tenant_id"])

    # Leads table
    op.create_table(
        "leads",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", sa.Uuid, sa.ForeignKey("tenants.id"), nullable=False),
        # Contact
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100)),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.String(500)),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(50)),
        sa.Column("zip", sa.String(20)),
        sa.Column("project_notes", sa.Text),
        # Consent and source
        sa.Column("ai_consent_given", sa.Boolean),
        sa.Column("consent_ip", sa.String(45)),
        sa.Column("landing_page_id", sa.String(100)),
        sa.Column("utm_source", sa.String(255)),
        sa.Column("utm_medium", sa.String(255)),
        sa.Column("utm_campaign", sa.String(255)),
        # Status
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("claimed_by", sa.String(10)),
        # Claim tracking
        sa.Column("claim_token", sa.Text),
        sa.Column("claim_expires_at", sa.DateTime(timezone=True)),
        sa.Column("claimed_at", sa.DateTime(timezone=True)),
        # AI call
        sa.Column("ai_call_id", sa.String(255)),
        sa.Column("ai_call_started_at", sa.DateTime(timezone=True)),
        sa.Column("ai_call_ended_at", sa.DateTime(timezone=True)),
        sa.Column("ai_call_duration", sa.Integer),
        sa.Column("ai_call_transcript", sa.Text),
        sa.Column("ai_call_outcome", sa.String(255)),
        sa.Column("ai_call_summary", sa.Text),
        sa.Column("ai_call_recording_url", sa.String(1000)),
        # Booking
        sa.Column("appointment_time", sa.DateTime(timezone=True)),
        sa.Column("booking_id", sa.String(255)),
        # Timestamps
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_leads_tenant_id", "leads", ["tenant_id"])
    op.create_index(
        "ix_leads_status_claim_expires_at", "leads", ["status", "claim_expires_at"]
    )
    op.create_index("ix_leads_ai_call_id", "leads", ["ai_call_id"])
    op.create_index("ix_leads_phone_created_at", "leads", ["phone", "created_at"])

    # Events table (append-only audit log)
    op.create_table(
        "events",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", sa.Uuid, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("lead_id", sa.Uuid, sa.ForeignKey("leads.id")),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("payload", sa.JSON),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_events_tenant_id", "events", ["tenant_id"])
    op.create_index("ix_events_lead_id", "events", ["lead_id"])
    op.create_index("ix_events_created_at", "events", ["created_at"])


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_table("events")
    op.drop_table("leads")
    op.drop_table("team_members")
    op.drop_table("tenants")
