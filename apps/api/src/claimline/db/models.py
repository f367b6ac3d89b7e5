"""SQLAlchemy models for tenants, team members, leads and audit events.

A single store holds everything the escalation pipeline reads and
writes. Lead.status is the only source of truth for where a lead is;
transitions on it go through conditional updates in LeadRepository.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from shared.schemas import (
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    ContractorType,
    LeadStatus,
    ToneStyle,
)

from claimline.db.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Tenant Model
# =============================================================================


class Tenant(Base):
    """Contractor account. Configuration is read-only input to escalation."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    niche: Mapped[str | None] = mapped_column(String(100))
    contractor_type: Mapped[str] = mapped_column(
        String(30), default=ContractorType.GENERAL.value
    )

    # SMS
    sms_from_phone: Mapped[str | None] = mapped_column(String(20))
    notification_phone: Mapped[str | None] = mapped_column(String(20))

    # AI config
    ai_greeting: Mapped[str | None] = mapped_column(Text)
    ai_service_list: Mapped[str | None] = mapped_column(Text)
    ai_tone_style: Mapped[str] = mapped_column(
        String(20), default=ToneStyle.PROFESSIONAL.value
    )

    # Calendar
    calendar_url: Mapped[str | None] = mapped_column(String(500))
    calcom_api_key: Mapped[str | None] = mapped_column(String(255))
    calcom_event_type_id: Mapped[int | None] = mapped_column(Integer)
    calendar_time_zone: Mapped[str] = mapped_column(
        String(64), default="America/Los_Angeles"
    )

    # Settings
    claim_timeout_sec: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_CLAIM_TIMEOUT_SECONDS
    )
    consent_text: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    # Relationships
    team_members: Mapped[list["TeamMember"]] = relationship(
        back_populates="tenant", lazy="selectin"
    )

    @property
    def notification_fallback_phone(self) -> str | None:
        """Where claim SMS goes when no team member is notifiable."""
        return self.notification_phone or self.sms_from_phone


# =============================================================================
# Team Member Model
# =============================================================================


class TeamMember(Base):
    """Person who can claim leads for a tenant."""

    __tablename__ = "team_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="sales")

    receive_sms: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    tenant: Mapped["Tenant"] = relationship(back_populates="team_members")

    __table_args__ = (Index("ix_team_members_tenant_id", "tenant_id"),)


# =============================================================================
# Lead Model
# =============================================================================


class Lead(Base):
    """A captured lead and its journey through escalation."""

    __tablename__ = "leads"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )

    # Contact
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str] = mapped_column(String(20), nullable=False)  # E.164
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(String(500))
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(50))
    zip: Mapped[str | None] = mapped_column(String(20))
    project_notes: Mapped[str | None] = mapped_column(Text)

    # Consent and source
    ai_consent_given: Mapped[bool] = mapped_column(Boolean, default=False)
    consent_ip: Mapped[str | None] = mapped_column(String(45))  # IPv6 max length
    landing_page_id: Mapped[str | None] = mapped_column(String(100))
    utm_source: Mapped[str | None] = mapped_column(String(255))
    utm_medium: Mapped[str | None] = mapped_column(String(255))
    utm_campaign: Mapped[str | None] = mapped_column(String(255))

    # Status
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=LeadStatus.NEW.value
    )
    claimed_by: Mapped[str | None] = mapped_column(String(10))  # human / ai

    # Claim tracking
    claim_token: Mapped[str | None] = mapped_column(Text)
    claim_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # AI call
    ai_call_id: Mapped[str | None] = mapped_column(String(255))
    ai_call_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    ai_call_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ai_call_duration: Mapped[int | None] = mapped_column(Integer)  # seconds
    ai_call_transcript: Mapped[str | None] = mapped_column(Text)
    ai_call_outcome: Mapped[str | None] = mapped_column(String(255))
    ai_call_summary: Mapped[str | None] = mapped_column(Text)
    ai_call_recording_url: Mapped[str | None] = mapped_column(String(1000))

    # Booking
    appointment_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    booking_id: Mapped[str | None] = mapped_column(String(255))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_leads_tenant_id", "tenant_id"),
        Index("ix_leads_status_claim_expires_at", "status", "claim_expires_at"),
        Index("ix_leads_ai_call_id", "ai_call_id"),
        Index("ix_leads_phone_created_at", "phone", "created_at"),
    )


# =============================================================================
# Event Model
# =============================================================================


class Event(Base):
    """Append-only audit record. Never read back by the escalation engine."""

    __tablename__ = "events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    lead_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("leads.id"))

    type: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_events_tenant_id", "tenant_id"),
        Index("ix_events_lead_id", "lead_id"),
        Index("ix_events_created_at", "created_at"),
    )
