"""Lead escalation state machine.

NEW -> SMS_SENT -> CLAIMED (human clicked the claim link in time)
                -> AI_CALLING (claim window lapsed, AI voice call placed)

The claim and timeout paths race on the same lead. Each one moves the
lead with a conditional update on its current status, so exactly one of
them wins. Everything else (cache, SMS, voice dispatch) is a side effect
whose failure is logged and never undoes a committed transition.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from context_builder import ContextBuilder
from shared.schemas import (
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    CallContext,
    ClaimedBy,
    EventType,
    LeadContact,
    LeadStatus,
    TenantProfile,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from claimline.config import AppConfig
from claimline.db import Lead, LeadRepository, async_session
from claimline.db.models import utcnow
from claimline.dispatch import CallInitiator, DispatchResult, LiveKitCallInitiator
from claimline.escalation.cache import TimeoutCache
from claimline.escalation.tokens import ClaimTokenCodec
from claimline.notify import ClaimNotifier, FanOutResult, SmsConfig, TwilioSmsSender

logger = logging.getLogger("claimline-escalation")


# =============================================================================
# Errors and Results
# =============================================================================


class EscalationError(Exception):
    """Base class for escalation failures."""

    pass


class LeadNotFoundError(EscalationError):
    def __init__(self, lead_id: UUID):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class TenantNotFoundError(EscalationError):
    def __init__(self, tenant_id: UUID):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id


class ClaimOutcome(str, Enum):
    """Distinguishable results of a claim attempt."""

    CLAIMED = "claimed"
    EXPIRED = "expired"
    INVALID = "invalid"
    ALREADY_CLAIMED = "already_claimed"
    LEAD_NOT_FOUND = "lead_not_found"
    TENANT_NOT_FOUND = "tenant_not_found"


CLAIM_ERRORS = {
    ClaimOutcome.EXPIRED: "Claim link expired",
    ClaimOutcome.INVALID: "Invalid claim link",
    ClaimOutcome.ALREADY_CLAIMED: "Lead already claimed",
    ClaimOutcome.LEAD_NOT_FOUND: "Lead not found",
    ClaimOutcome.TENANT_NOT_FOUND: "Tenant not found",
}


@dataclass
class ClaimResult:
    """Result of a claim attempt."""

    outcome: ClaimOutcome
    lead: Lead | None = None

    @property
    def success(self) -> bool:
        return self.outcome == ClaimOutcome.CLAIMED

    @property
    def error(self) -> str | None:
        return CLAIM_ERRORS.get(self.outcome)


# =============================================================================
# Engine
# =============================================================================


class EscalationEngine:
    """Drives leads through claim-or-escalate."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        codec: ClaimTokenCodec,
        cache: TimeoutCache,
        notifier: ClaimNotifier,
        initiator: CallInitiator,
        config: AppConfig,
        builder: ContextBuilder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the engine.

        Args:
            session_factory: Source of database sessions. Each operation
                opens its own session and commits explicitly.
            codec: Claim token issuer/verifier.
            cache: Best-effort claim window markers.
            notifier: Claim SMS fan-out.
            initiator: AI voice call starter.
            config: App configuration (claim link base URL).
            builder: Call context / SMS text builder.
            clock: Current UTC time.
        """
        self.session_factory = session_factory
        self.codec = codec
        self.cache = cache
        self.notifier = notifier
        self.initiator = initiator
        self.config = config
        self.builder = builder or ContextBuilder()
        self.clock = clock

    # -------------------------------------------------------------------------
    # NEW -> SMS_SENT
    # -------------------------------------------------------------------------

    async def start_escalation(self, lead_id: UUID) -> FanOutResult | None:
        """Open the claim window for a new lead and text the team.

        Returns:
            The SMS fan-out result, or None if the lead had already left
            NEW (nothing was sent).

        Raises:
            LeadNotFoundError: The lead does not exist.
            TenantNotFoundError: The lead's tenant does not exist.
        """
        async with self.session_factory() as db:
            repo = LeadRepository(db)

            lead = await repo.get_lead(lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            tenant = await repo.get_tenant(lead.tenant_id)
            if tenant is None:
                raise TenantNotFoundError(lead.tenant_id)

            ttl = tenant.claim_timeout_sec or DEFAULT_CLAIM_TIMEOUT_SECONDS
            now = self.clock()
            token = self.codec.issue(lead.id, tenant.id, ttl, issued_at=now)

            opened = await repo.transition_status(
                lead.id,
                LeadStatus.NEW,
                LeadStatus.SMS_SENT,
                claim_token=token,
                claim_expires_at=now + timedelta(seconds=ttl),
            )
            if not opened:
                await db.rollback()
                logger.info(f"Lead {lead_id} is no longer NEW - skipping escalation")
                return None
            await db.commit()
            logger.info(f"Lead {lead_id} -> SMS_SENT (claim window {ttl}s)")

            await self.cache.set(lead.id, token, ttl)

            claim_url = self.config.claim_url(token)
            body = self.builder.claim_message(
                TenantProfile.model_validate(tenant),
                LeadContact.model_validate(lead),
                claim_url,
                ttl,
            )

            members = await repo.get_notifiable_members(tenant.id)
            recipients = [m.phone for m in members]
            if not recipients and tenant.notification_fallback_phone:
                recipients = [tenant.notification_fallback_phone]

            if not tenant.sms_from_phone:
                logger.warning(
                    f"Tenant {tenant.id} has no SMS sender number - claim SMS not sent"
                )
                fan_out = FanOutResult()
            elif not recipients:
                logger.warning(f"Tenant {tenant.id} has no one to notify")
                fan_out = FanOutResult()
            else:
                fan_out = await self.notifier.notify(
                    recipients, tenant.sms_from_phone, body
                )

            await repo.log_event(
                tenant.id,
                EventType.SMS_SENT,
                lead_id=lead.id,
                payload={
                    "recipient_count": len(fan_out.sent),
                    "failed_count": len(fan_out.failed),
                    "claim_url": claim_url,
                    "claim_timeout_sec": ttl,
                },
            )
            await db.commit()

        logger.info(
            f"Claim SMS for lead {lead_id}: {len(fan_out.sent)} sent, "
            f"{len(fan_out.failed)} failed"
        )
        return fan_out

    # -------------------------------------------------------------------------
    # SMS_SENT -> CLAIMED
    # -------------------------------------------------------------------------

    async def process_claim(self, token: str) -> ClaimResult:
        """Claim a lead for a human from a claim link token."""
        payload = self.codec.verify(token)
        if payload is None:
            if self.codec.is_expired(token):
                return ClaimResult(ClaimOutcome.EXPIRED)
            return ClaimResult(ClaimOutcome.INVALID)

        async with self.session_factory() as db:
            repo = LeadRepository(db)

            lead = await repo.get_lead(payload.lead_id)
            if lead is None:
                return ClaimResult(ClaimOutcome.LEAD_NOT_FOUND)
            tenant = await repo.get_tenant(payload.tenant_id)
            if tenant is None:
                return ClaimResult(ClaimOutcome.TENANT_NOT_FOUND)
            if lead.tenant_id != tenant.id:
                logger.warning(
                    f"Claim token for lead {lead.id} names tenant {tenant.id}, "
                    f"lead belongs to {lead.tenant_id}"
                )
                return ClaimResult(ClaimOutcome.INVALID)

            claimed = await repo.transition_status(
                lead.id,
                LeadStatus.SMS_SENT,
                LeadStatus.CLAIMED,
                claimed_by=ClaimedBy.HUMAN.value,
                claimed_at=self.clock(),
            )
            if not claimed:
                await db.rollback()
                logger.info(
                    f"Claim rejected for lead {payload.lead_id}: already claimed"
                )
                # Rollback expired the row; reload it to report the winner's state
                await db.refresh(lead)
                return ClaimResult(ClaimOutcome.ALREADY_CLAIMED, lead=lead)

            await repo.log_event(
                tenant.id,
                EventType.CLAIM_CLICKED,
                lead_id=lead.id,
                payload={"claimed_by": ClaimedBy.HUMAN.value},
            )
            await db.commit()
            logger.info(f"Lead {lead.id} -> CLAIMED")

            await self.cache.delete(lead.id)
            await db.refresh(lead)
            return ClaimResult(ClaimOutcome.CLAIMED, lead=lead)

    # -------------------------------------------------------------------------
    # SMS_SENT -> AI_CALLING
    # -------------------------------------------------------------------------

    async def handle_timeout(self, lead_id: UUID) -> bool:
        """Escalate a lead whose claim window lapsed to an AI call.

        Returns:
            True if this call moved the lead to AI_CALLING, False if the
            lead was claimed (or escalated) in the meantime.
        """
        async with self.session_factory() as db:
            repo = LeadRepository(db)

            lead = await repo.get_lead(lead_id)
            if lead is None or lead.status != LeadStatus.SMS_SENT.value:
                return False
            tenant = await repo.get_tenant(lead.tenant_id)
            if tenant is None:
                logger.error(f"Lead {lead_id} has no tenant - cannot escalate")
                return False

            escalated = await repo.transition_status(
                lead.id,
                LeadStatus.SMS_SENT,
                LeadStatus.AI_CALLING,
                claimed_by=ClaimedBy.AI.value,
            )
            if not escalated:
                await db.rollback()
                logger.info(f"Lead {lead_id} claimed before timeout - skipping")
                return False

            await repo.log_event(
                tenant.id,
                EventType.CLAIM_TIMEOUT,
                lead_id=lead.id,
                payload={
                    "claim_expires_at": lead.claim_expires_at.isoformat()
                    if lead.claim_expires_at
                    else None
                },
            )
            await db.commit()
            logger.info(f"Lead {lead_id} -> AI_CALLING")

            context = self.builder.build(
                TenantProfile.model_validate(tenant),
                LeadContact.model_validate(lead),
            )
            result = await self._initiate_call(context)

            if result.success:
                await repo.update_lead(
                    lead.id,
                    ai_call_id=result.call_id,
                    ai_call_started_at=self.clock(),
                )
                await repo.log_event(
                    tenant.id,
                    EventType.AI_CALL_STARTED,
                    lead_id=lead.id,
                    payload={
                        "call_id": result.call_id,
                        "dispatch_id": result.dispatch_id,
                    },
                )
            else:
                # Lead stays AI_CALLING; the event makes the failed call visible
                await repo.log_event(
                    tenant.id,
                    EventType.AI_CALL_FAILED,
                    lead_id=lead.id,
                    payload={"error": result.error},
                )
            await db.commit()

        return True

    async def _initiate_call(self, context: CallContext) -> DispatchResult:
        if not context.from_number:
            logger.error(
                f"Tenant {context.tenant_id} has no caller id - AI call not placed"
            )
            return DispatchResult(success=False, error="No caller id configured")
        try:
            result = await self.initiator.initiate(context)
        except Exception as e:
            logger.exception(f"AI call for lead {context.lead_id} failed")
            return DispatchResult(success=False, error=str(e))
        if not result.success:
            logger.error(f"AI call for lead {context.lead_id} failed: {result.error}")
        return result


async def run_escalation(engine: EscalationEngine, lead_id: UUID) -> None:
    """Background-task entry point for ``start_escalation``.

    Runs after the intake response is sent, so failures can only be logged.
    """
    try:
        await engine.start_escalation(lead_id)
    except Exception:
        logger.exception(f"Escalation failed for lead {lead_id}")


# =============================================================================
# Default Engine
# =============================================================================

_engine: EscalationEngine | None = None


def get_escalation_engine() -> EscalationEngine:
    """Process-wide engine wired from environment config (FastAPI dependency)."""
    global _engine
    if _engine is None:
        config = AppConfig.from_env()
        sender = TwilioSmsSender(SmsConfig.from_env(config.sms_status_callback_url()))
        _engine = EscalationEngine(
            session_factory=async_session,
            codec=ClaimTokenCodec(),
            cache=TimeoutCache(config.redis_url),
            notifier=ClaimNotifier(sender),
            initiator=LiveKitCallInitiator(),
            config=config,
        )
    return _engine
