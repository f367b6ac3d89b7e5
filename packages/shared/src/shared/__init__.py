"""Shared schemas for the claimline lead escalation service."""

from shared.schemas import (
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    TERMINAL_STATUSES,
    BookingRequest,
    CallContext,
    ClaimedBy,
    ContractorType,
    EventType,
    LeadContact,
    LeadForm,
    LeadStatus,
    TenantProfile,
    ToneStyle,
    VoiceCallCompletion,
    normalize_phone,
)

__all__ = [
    "DEFAULT_CLAIM_TIMEOUT_SECONDS",
    "TERMINAL_STATUSES",
    "BookingRequest",
    "CallContext",
    "ClaimedBy",
    "ContractorType",
    "EventType",
    "LeadContact",
    "LeadForm",
    "LeadStatus",
    "TenantProfile",
    "ToneStyle",
    "VoiceCallCompletion",
    "normalize_phone",
]
