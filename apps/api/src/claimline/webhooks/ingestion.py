"""Reconcile provider callbacks into lead state.

Voice-call completions overwrite the lead's call fields and terminal
status, so a redelivered payload lands on the same values. A lead that
was already booked or marked dead keeps that status. SMS delivery
reports only append audit events.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from shared.schemas import EventType, LeadStatus, VoiceCallCompletion
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from claimline.db import LeadRepository
from claimline.db.models import utcnow
from claimline.escalation.outcomes import map_outcome

logger = logging.getLogger("claimline-webhooks")

SMS_DELIVERY_EVENTS = {
    "delivered": EventType.SMS_DELIVERED,
    "failed": EventType.SMS_FAILED,
    "undelivered": EventType.SMS_FAILED,
}

# Set outside the call webhook; a late completion must not undo them
SETTLED_STATUSES = frozenset({LeadStatus.BOOKED, LeadStatus.DEAD})


class OutcomeIngestor:
    """Applies voice-call and SMS status callbacks to stored leads."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def ingest_call_completion(self, payload: VoiceCallCompletion) -> bool:
        """Record a finished AI call.

        Returns:
            True if a lead was updated. Non-final statuses and unknown
            call ids return False.
        """
        if not payload.is_final:
            logger.info(f"Ignoring call {payload.call_id} status {payload.status}")
            return False

        async with self.session_factory() as db:
            repo = LeadRepository(db)
            lead = await repo.find_by_call_id(payload.call_id)
            if lead is None:
                logger.warning(f"No lead for call {payload.call_id}")
                return False

            status = map_outcome(payload.outcome)
            if lead.status in SETTLED_STATUSES:
                status = LeadStatus(lead.status)
            ended_at = payload.ended_at or lead.ai_call_ended_at or self.clock()

            await repo.update_lead(
                lead.id,
                status=status.value,
                ai_call_duration=payload.duration_seconds,
                ai_call_transcript=payload.transcript,
                ai_call_outcome=payload.outcome,
                ai_call_summary=payload.summary,
                ai_call_recording_url=payload.recording_url,
                ai_call_ended_at=ended_at,
            )
            await repo.log_event(
                lead.tenant_id,
                EventType.AI_CALL_ENDED,
                lead_id=lead.id,
                payload={
                    "call_id": payload.call_id,
                    "outcome": payload.outcome,
                    "status": status.value,
                    "duration_seconds": payload.duration_seconds,
                },
            )
            await db.commit()

        logger.info(f"Call {payload.call_id} ended: lead {lead.id} -> {status.value}")
        return True

    async def ingest_sms_status(
        self,
        message_sid: str,
        message_status: str,
        to: str,
        error_code: str | None = None,
    ) -> bool:
        """Record a delivery report against the latest lead with that phone.

        The phone lookup is best effort: repeat customers share a number
        and the newest lead wins.
        """
        event_type = SMS_DELIVERY_EVENTS.get((message_status or "").lower())
        if event_type is None:
            return False

        async with self.session_factory() as db:
            repo = LeadRepository(db)
            lead = await repo.find_latest_by_phone(to)
            if lead is None:
                logger.info(f"SMS {message_sid} to {to}: no matching lead")
                return False

            await repo.log_event(
                lead.tenant_id,
                event_type,
                lead_id=lead.id,
                payload={
                    "message_sid": message_sid,
                    "status": message_status,
                    "to": to,
                    "error_code": error_code,
                },
            )
            await db.commit()

        logger.info(f"SMS {message_sid} {message_status} for lead {lead.id}")
        return True
