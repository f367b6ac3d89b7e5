"""Pydantic schemas shared across the claimline packages.

These schemas are provider-agnostic. They describe where a lead is in the
escalation pipeline, what a landing page submits, what the voice agent is
given when a call starts and what it reports back when the call ends.

Provider-specific configuration is handled next to each provider client
via environment variables.
"""

import re
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Constants
# =============================================================================

# Claim window used when a tenant has not configured one
DEFAULT_CLAIM_TIMEOUT_SECONDS: int = 60

# Accepts "+14155551234", "14155551234", "4155551234" after stripping
PHONE_REGEX = re.compile(r"^\+?[1-9]\d{9,14}$")
_PHONE_STRIP = re.compile(r"[\s\-().]")


def normalize_phone(phone: str) -> str:
    """Canonicalize a phone number to E.164.

    Ten-digit numbers are treated as North American and get a +1 prefix.

    Raises:
        ValueError: If the number cannot be a valid phone number.
    """
    cleaned = _PHONE_STRIP.sub("", phone or "")
    if not PHONE_REGEX.match(cleaned):
        raise ValueError(f"Invalid phone number: {phone}")
    if cleaned.startswith("+"):
        return cleaned
    if len(cleaned) == 10:
        return f"+1{cleaned}"
    return f"+{cleaned}"


# =============================================================================
# Pipeline Enums
# =============================================================================


class LeadStatus(str, Enum):
    """Where a lead is in the escalation pipeline."""

    NEW = "NEW"
    SMS_SENT = "SMS_SENT"
    CLAIMED = "CLAIMED"
    AI_CALLING = "AI_CALLING"
    AI_QUALIFIED = "AI_QUALIFIED"
    BOOKED = "BOOKED"
    CALLBACK_SCHEDULED = "CALLBACK_SCHEDULED"
    DISQUALIFIED = "DISQUALIFIED"
    NO_ANSWER = "NO_ANSWER"
    DEAD = "DEAD"  # Operator action only


TERMINAL_STATUSES: frozenset[LeadStatus] = frozenset(
    {
        LeadStatus.CLAIMED,
        LeadStatus.AI_QUALIFIED,
        LeadStatus.BOOKED,
        LeadStatus.CALLBACK_SCHEDULED,
        LeadStatus.DISQUALIFIED,
        LeadStatus.NO_ANSWER,
        LeadStatus.DEAD,
    }
)


class ClaimedBy(str, Enum):
    """Who took ownership of the lead."""

    HUMAN = "human"
    AI = "ai"


class EventType(str, Enum):
    """Audit event types appended on every transition."""

    LEAD_CREATED = "LEAD_CREATED"
    SMS_SENT = "SMS_SENT"
    SMS_DELIVERED = "SMS_DELIVERED"
    SMS_FAILED = "SMS_FAILED"
    CLAIM_CLICKED = "CLAIM_CLICKED"
    CLAIM_TIMEOUT = "CLAIM_TIMEOUT"
    AI_CALL_STARTED = "AI_CALL_STARTED"
    AI_CALL_FAILED = "AI_CALL_FAILED"
    AI_CALL_ENDED = "AI_CALL_ENDED"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_REQUESTED = "BOOKING_REQUESTED"


class ContractorType(str, Enum):
    """Trade a tenant operates in."""

    GENERAL = "GENERAL"
    ROOFING = "ROOFING"
    HVAC = "HVAC"
    HARDSCAPING = "HARDSCAPING"
    ADU = "ADU"
    KITCHEN_BATH = "KITCHEN_BATH"
    SIDING = "SIDING"
    DECKING = "DECKING"
    PLUMBING = "PLUMBING"
    ELECTRICAL = "ELECTRICAL"
    PAINTING = "PAINTING"
    LANDSCAPING = "LANDSCAPING"
    SOLAR = "SOLAR"
    WINDOWS_DOORS = "WINDOWS_DOORS"
    FLOORING = "FLOORING"
    REMODELING = "REMODELING"


class ToneStyle(str, Enum):
    """Communication style for the AI agent."""

    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    CASUAL = "casual"


# =============================================================================
# Lead Intake (Input from Landing Pages)
# =============================================================================


class LeadForm(BaseModel):
    """Landing page submission.

    This is the raw input - validated at the API boundary before a Lead
    row is created.
    """

    tenant_id: UUID
    landing_page_id: str | None = None

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str  # Canonicalized to E.164 by the validator
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    project_notes: str | None = None

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    consent: bool = False  # Must be True to proceed (AI call consent)

    @field_validator("phone")
    @classmethod
    def _canonical_phone(cls, value: str) -> str:
        return normalize_phone(value)

    @field_validator("email")
    @classmethod
    def _blank_email(cls, value: str | None) -> str | None:
        return value or None


# =============================================================================
# Context Inputs (Read from Storage)
# =============================================================================


class TenantProfile(BaseModel):
    """Tenant fields the call context and claim message are built from."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_name: str
    contractor_type: ContractorType = ContractorType.GENERAL
    niche: str | None = None
    sms_from_phone: str | None = None
    ai_greeting: str | None = None
    ai_service_list: str | None = None
    ai_tone_style: ToneStyle = ToneStyle.PROFESSIONAL
    calendar_url: str | None = None
    calcom_api_key: str | None = None


class LeadContact(BaseModel):
    """Lead fields the call context and claim message are built from."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    first_name: str
    last_name: str | None = None
    phone: str
    address: str | None = None
    city: str | None = None
    project_notes: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


# =============================================================================
# Call Context (Passed to the Voice Agent)
# =============================================================================


class CallContext(BaseModel):
    """Pre-built context handed to the voice agent when a call is dispatched.

    Serialized into the agent dispatch metadata. The agent dials
    ``phone`` from ``from_number`` and uses ``dynamic_variables`` to fill
    its prompt.
    """

    lead_id: UUID
    tenant_id: UUID
    phone: str
    from_number: str

    company_name: str
    contractor_type: ContractorType
    service_category: str
    services_offered: str
    tone_style: ToneStyle
    custom_greeting: str = ""

    lead_first_name: str
    lead_full_name: str
    lead_address: str | None = None
    lead_city: str | None = None
    project_notes: str | None = None

    calendar_link: str | None = None

    dynamic_variables: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Webhook Payloads (Posted by Providers)
# =============================================================================


class VoiceCallCompletion(BaseModel):
    """Call-completion report posted by the voice agent."""

    call_id: str
    status: str  # "ended" / "completed" are processed, anything else is acked
    duration_seconds: int | None = None
    transcript: str | None = None
    outcome: str | None = None  # Free-text outcome tag
    summary: str | None = None
    recording_url: str | None = None
    ended_at: datetime | None = None

    @property
    def is_final(self) -> bool:
        return self.status.strip().lower() in ("ended", "completed")


class BookingRequest(BaseModel):
    """Booking callback from the voice agent during a call."""

    call_id: str
    requested_time: str  # ISO 8601, parsed server-side
    address: str | None = None
    notes: str | None = None
