"""Provider webhook endpoints."""

import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from shared.schemas import VoiceCallCompletion

from claimline.escalation.engine import EscalationEngine, get_escalation_engine
from claimline.webhooks.ingestion import OutcomeIngestor

logger = logging.getLogger("claimline-webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    received: bool
    processed: bool


def get_ingestor(
    engine: EscalationEngine = Depends(get_escalation_engine),
) -> OutcomeIngestor:
    return OutcomeIngestor(engine.session_factory, clock=engine.clock)


@router.post("/voice-call", response_model=WebhookAck)
async def voice_call_webhook(
    payload: VoiceCallCompletion,
    ingestor: OutcomeIngestor = Depends(get_ingestor),
):
    """Call-completion report from the voice agent.

    Unknown call ids and non-final statuses are acknowledged so the
    sender does not retry.
    """
    processed = await ingestor.ingest_call_completion(payload)
    return WebhookAck(received=True, processed=processed)


@router.post("/sms-status", response_class=PlainTextResponse)
async def sms_status_webhook(
    MessageSid: str = Form(default=""),
    MessageStatus: str = Form(default=""),
    To: str = Form(default=""),
    ErrorCode: str | None = Form(default=None),
    ingestor: OutcomeIngestor = Depends(get_ingestor),
):
    """Twilio delivery status callback. Always answers 200 OK."""
    try:
        await ingestor.ingest_sms_status(MessageSid, MessageStatus, To, ErrorCode)
    except Exception:
        logger.exception(f"Failed to record SMS status for {MessageSid}")
    return PlainTextResponse("OK")
