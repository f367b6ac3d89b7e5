"""Appointment booking requested by the voice agent mid-call.

The agent posts the lead's preferred time; if the tenant has Cal.com
credentials a booking is created right away, otherwise the request is
recorded for a human to confirm. The response is always a sentence the
agent can read back to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from shared.schemas import BookingRequest, EventType, LeadStatus

from claimline.db import Lead, LeadRepository, Tenant
from claimline.escalation.engine import EscalationEngine, get_escalation_engine

logger = logging.getLogger("claimline-booking")

CALCOM_API_URL = "https://api.cal.com/v1"

NOTED_MESSAGE = (
    "I have noted your preferred time. Someone will call you back shortly "
    "to confirm the exact appointment."
)
UNAVAILABLE_MESSAGE = (
    "I cannot complete the booking right now. Someone will call you back "
    "to confirm."
)
SLOT_TAKEN_MESSAGE = (
    "That time slot may have just been taken. I have noted your preference "
    "and someone will call you back within 15 minutes to confirm an "
    "available slot."
)
UNCLEAR_TIME_MESSAGE = (
    "I did not catch the time clearly. Could you repeat when you would like "
    "the appointment?"
)


# =============================================================================
# Cal.com Client
# =============================================================================


@dataclass
class BookingResult:
    """Result of a booking attempt."""

    success: bool
    booking_id: str | None = None
    error: str | None = None


class CalComClient:
    """Minimal Cal.com v1 bookings client."""

    def __init__(
        self,
        base_url: str = CALCOM_API_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def create_booking(
        self,
        api_key: str,
        event_type_id: int,
        start: datetime,
        responses: dict[str, str],
        metadata: dict[str, str],
        time_zone: str,
    ) -> BookingResult:
        payload: dict[str, Any] = {
            "eventTypeId": event_type_id,
            "start": start.isoformat(),
            "responses": responses,
            "metadata": metadata,
            "timeZone": time_zone,
        }
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/bookings",
                    params={"apiKey": api_key},
                    json=payload,
                    timeout=self.timeout,
                )
            if response.status_code >= 400:
                logger.error(
                    f"Cal.com booking failed ({response.status_code}): {response.text}"
                )
                return BookingResult(success=False, error=response.text)

            booking = response.json()
            booking_id = booking.get("id") or booking.get("uid")
            return BookingResult(
                success=True,
                booking_id=str(booking_id) if booking_id is not None else None,
            )

        except httpx.HTTPError as e:
            logger.error(f"Cal.com request error: {e}")
            return BookingResult(success=False, error=str(e))


# =============================================================================
# Booking Service
# =============================================================================


def parse_requested_time(value: str, time_zone: str) -> datetime | None:
    """Parse an ISO 8601 time; naive values are read in the tenant's zone."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        try:
            parsed = parsed.replace(tzinfo=ZoneInfo(time_zone))
        except ZoneInfoNotFoundError:
            logger.warning(f"Unknown time zone {time_zone!r} - assuming UTC")
            parsed = parsed.replace(tzinfo=ZoneInfo("UTC"))
    return parsed


def speakable_time(value: datetime) -> str:
    """'Tuesday, March 4 at 2:30 PM'"""
    hour = value.hour % 12 or 12
    return f"{value:%A, %B} {value.day} at {hour}:{value:%M %p}"


def placeholder_email(phone: str) -> str:
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"{digits}@placeholder.claimline.app"


class BookingService:
    """Books appointments for leads on an active AI call."""

    def __init__(self, engine: EscalationEngine, calcom: CalComClient | None = None):
        self.engine = engine
        self.calcom = calcom or CalComClient()

    async def book(self, request: BookingRequest) -> tuple[str, BookingResult | None]:
        """Handle one booking request.

        Returns:
            (sentence for the agent, booking result if Cal.com was called)
        """
        async with self.engine.session_factory() as db:
            repo = LeadRepository(db)
            lead = await repo.find_by_call_id(request.call_id)
            if lead is None:
                logger.warning(f"Booking for unknown call {request.call_id}")
                return UNAVAILABLE_MESSAGE, None
            tenant = await repo.get_tenant(lead.tenant_id)
            if tenant is None:
                return UNAVAILABLE_MESSAGE, None

            if not tenant.calcom_api_key or not tenant.calcom_event_type_id:
                await self._record_request(repo, lead, request, reason="no_calendar")
                await db.commit()
                return NOTED_MESSAGE, None

            start = parse_requested_time(
                request.requested_time, tenant.calendar_time_zone
            )
            if start is None:
                return UNCLEAR_TIME_MESSAGE, None

            result = await self.calcom.create_booking(
                api_key=tenant.calcom_api_key,
                event_type_id=tenant.calcom_event_type_id,
                start=start,
                responses=self._responses(lead, request),
                metadata={
                    "tenant_id": str(tenant.id),
                    "lead_id": str(lead.id),
                    "source": "claimline-ai-call",
                },
                time_zone=tenant.calendar_time_zone,
            )

            if not result.success:
                await self._record_request(
                    repo, lead, request, reason="provider_error"
                )
                await db.commit()
                return SLOT_TAKEN_MESSAGE, result

            await self._record_booking(repo, tenant, lead, request, start, result)
            await db.commit()

        logger.info(f"Booked lead {lead.id}: booking {result.booking_id}")
        return (
            f"You are all set for {speakable_time(start)}. You will receive a "
            "confirmation text shortly. Is there anything else I can help you with?",
            result,
        )

    def _responses(self, lead: Lead, request: BookingRequest) -> dict[str, str]:
        return {
            "name": f"{lead.first_name} {lead.last_name or ''}".strip(),
            "email": lead.email or placeholder_email(lead.phone),
            "phone": lead.phone,
            "location": request.address or lead.address or "",
            "notes": request.notes or lead.project_notes or "",
        }

    async def _record_booking(
        self,
        repo: LeadRepository,
        tenant: Tenant,
        lead: Lead,
        request: BookingRequest,
        start: datetime,
        result: BookingResult,
    ) -> None:
        fields = {
            "appointment_time": start.astimezone(timezone.utc),
            "booking_id": result.booking_id,
            "address": request.address or lead.address,
        }
        moved = await repo.transition_status(
            lead.id, LeadStatus.AI_CALLING, LeadStatus.BOOKED, **fields
        )
        if not moved:
            await repo.update_lead(lead.id, **fields)
        await repo.log_event(
            tenant.id,
            EventType.BOOKING_CREATED,
            lead_id=lead.id,
            payload={
                "booking_id": result.booking_id,
                "appointment_time": start.isoformat(),
                "call_id": request.call_id,
            },
        )

    async def _record_request(
        self,
        repo: LeadRepository,
        lead: Lead,
        request: BookingRequest,
        reason: str,
    ) -> None:
        await repo.log_event(
            lead.tenant_id,
            EventType.BOOKING_REQUESTED,
            lead_id=lead.id,
            payload={
                "requested_time": request.requested_time,
                "address": request.address,
                "notes": request.notes,
                "reason": reason,
            },
        )


# =============================================================================
# Endpoint
# =============================================================================

router = APIRouter(prefix="/agent", tags=["agent"])


class BookingResponse(BaseModel):
    """Reply read back to the caller by the voice agent."""

    result: str
    booking_id: str | None = None


def get_booking_service(
    engine: EscalationEngine = Depends(get_escalation_engine),
) -> BookingService:
    return BookingService(engine)


@router.post("/book-appointment", response_model=BookingResponse)
async def book_appointment(
    request: BookingRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Book an appointment for the lead on this call."""
    message, result = await service.book(request)
    return BookingResponse(
        result=message,
        booking_id=result.booking_id if result and result.success else None,
    )
