"""Tests for the escalation state machine."""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from conftest import (
    FakeCallInitiator,
    FakeSmsSender,
    create_lead,
    create_member,
    create_tenant,
    load_events,
    load_lead,
)

from claimline.dispatch import DispatchResult
from claimline.escalation import (
    ClaimOutcome,
    EscalationEngine,
    LeadNotFoundError,
    TenantNotFoundError,
    TimeoutSweeper,
    run_escalation,
)
from claimline.notify import ClaimNotifier


def later(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


async def escalated_lead(engine, session_factory, **tenant_fields):
    """Tenant + lead already moved to SMS_SENT; returns (tenant, lead, token)."""
    tenant = await create_tenant(session_factory, **tenant_fields)
    lead = await create_lead(session_factory, tenant)
    await engine.start_escalation(lead.id)
    lead = await load_lead(session_factory, lead.id)
    return tenant, lead, lead.claim_token


# =============================================================================
# NEW -> SMS_SENT
# =============================================================================


class TestStartEscalation:
    """Opening the claim window and texting the team."""

    @pytest.mark.asyncio
    async def test_moves_lead_to_sms_sent(self, engine, session_factory):
        tenant = await create_tenant(session_factory, claim_timeout_sec=45)
        lead = await create_lead(session_factory, tenant)

        await engine.start_escalation(lead.id)

        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "SMS_SENT"
        assert stored.claim_token
        assert stored.claim_expires_at is not None
        assert stored.claimed_by is None

    @pytest.mark.asyncio
    async def test_token_uses_tenant_timeout(self, engine, session_factory, codec):
        tenant = await create_tenant(session_factory, claim_timeout_sec=45)
        lead = await create_lead(session_factory, tenant)

        await engine.start_escalation(lead.id)

        stored = await load_lead(session_factory, lead.id)
        payload = codec.verify(stored.claim_token)
        assert payload.lead_id == lead.id
        assert payload.tenant_id == tenant.id
        remaining = (payload.exp - datetime.now(timezone.utc)).total_seconds()
        assert 40 <= remaining <= 46

    @pytest.mark.asyncio
    async def test_mirrors_token_in_cache(self, engine, session_factory, redis_client):
        _, lead, token = await escalated_lead(engine, session_factory)

        redis_client.set.assert_awaited_once_with(f"claim:{lead.id}", token, ex=10)

    @pytest.mark.asyncio
    async def test_texts_every_notifiable_member(self, engine, session_factory, sms):
        tenant = await create_tenant(session_factory)
        await create_member(session_factory, tenant, phone="+14155550111")
        await create_member(session_factory, tenant, phone="+14155550112")
        await create_member(
            session_factory, tenant, phone="+14155550113", receive_sms=False
        )
        await create_member(
            session_factory, tenant, phone="+14155550114", is_active=False
        )
        lead = await create_lead(session_factory, tenant)

        result = await engine.start_escalation(lead.id)

        recipients = sorted(to for to, _, _ in sms.sent)
        assert recipients == ["+14155550111", "+14155550112"]
        assert all(from_ == "+14155550100" for _, from_, _ in sms.sent)
        assert len(result.sent) == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_tenant_phone(self, engine, session_factory, sms):
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant)

        await engine.start_escalation(lead.id)

        assert [to for to, _, _ in sms.sent] == ["+14155550199"]

    @pytest.mark.asyncio
    async def test_message_contains_claim_link(self, engine, session_factory, sms):
        _, lead, token = await escalated_lead(engine, session_factory)

        body = sms.sent[0][2]
        assert body.startswith("New roofing lead!")
        assert "Jane Doe" in body
        assert "+14155551234" in body
        assert "Oakland" in body
        assert f"Claim now: https://claim.test/c/{token}" in body
        assert body.endswith("10s until AI takes over")

    @pytest.mark.asyncio
    async def test_records_sms_sent_event(self, engine, session_factory):
        _, lead, _ = await escalated_lead(engine, session_factory)

        assert await load_events(session_factory, lead.id) == ["SMS_SENT"]

    @pytest.mark.asyncio
    async def test_without_sender_number_still_opens_window(
        self, engine, session_factory, sms
    ):
        tenant = await create_tenant(session_factory, sms_from_phone=None)
        lead = await create_lead(session_factory, tenant)

        result = await engine.start_escalation(lead.id)

        assert sms.sent == []
        assert result.sent == []
        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "SMS_SENT"

    @pytest.mark.asyncio
    async def test_second_start_is_a_no_op(self, engine, session_factory, sms):
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant)

        await engine.start_escalation(lead.id)
        first_token = (await load_lead(session_factory, lead.id)).claim_token
        result = await engine.start_escalation(lead.id)

        assert result is None
        assert len(sms.sent) == 1
        assert (await load_lead(session_factory, lead.id)).claim_token == first_token

    @pytest.mark.asyncio
    async def test_unknown_lead_raises(self, engine):
        with pytest.raises(LeadNotFoundError):
            await engine.start_escalation(uuid4())

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_block(
        self, engine, session_factory, redis_client, sms
    ):
        redis_client.set.side_effect = ConnectionError("redis down")
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant)

        await engine.start_escalation(lead.id)

        assert (await load_lead(session_factory, lead.id)).status == "SMS_SENT"
        assert len(sms.sent) == 1


class TestNotificationIsolation:
    """One recipient failing never blocks the others."""

    @pytest.mark.asyncio
    async def test_failed_recipient_does_not_stop_others(
        self, session_factory, codec, cache, initiator, config
    ):
        sms = FakeSmsSender(fail_for=("+14155550112",))
        engine = EscalationEngine(
            session_factory=session_factory,
            codec=codec,
            cache=cache,
            notifier=ClaimNotifier(sms),
            initiator=initiator,
            config=config,
        )
        tenant = await create_tenant(session_factory)
        for phone in ("+14155550111", "+14155550112", "+14155550113"):
            await create_member(session_factory, tenant, phone=phone)
        lead = await create_lead(session_factory, tenant)

        result = await engine.start_escalation(lead.id)

        assert sorted(to for to, _, _ in sms.sent) == ["+14155550111", "+14155550113"]
        assert list(result.failed) == ["+14155550112"]
        assert (await load_lead(session_factory, lead.id)).status == "SMS_SENT"


class TestRunEscalation:
    """Background entry point swallows and logs failures."""

    @pytest.mark.asyncio
    async def test_missing_lead_is_logged_not_raised(self, engine, caplog):
        await run_escalation(engine, uuid4())

        assert "Escalation failed" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_tenant_raises_from_engine(self, engine, session_factory):
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant, tenant_id=uuid4())

        with pytest.raises(TenantNotFoundError):
            await engine.start_escalation(lead.id)


# =============================================================================
# SMS_SENT -> CLAIMED
# =============================================================================


class TestProcessClaim:
    """Human claims through the claim link."""

    @pytest.mark.asyncio
    async def test_claim_succeeds(self, engine, session_factory):
        _, lead, token = await escalated_lead(engine, session_factory)

        result = await engine.process_claim(token)

        assert result.success
        assert result.outcome == ClaimOutcome.CLAIMED
        assert result.lead.id == lead.id
        assert result.lead.status == "CLAIMED"
        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "CLAIMED"
        assert stored.claimed_by == "human"
        assert stored.claimed_at is not None

    @pytest.mark.asyncio
    async def test_claim_clears_cache_and_logs_event(
        self, engine, session_factory, redis_client
    ):
        _, lead, token = await escalated_lead(engine, session_factory)

        await engine.process_claim(token)

        redis_client.delete.assert_awaited_once_with(f"claim:{lead.id}")
        assert await load_events(session_factory, lead.id) == [
            "SMS_SENT",
            "CLAIM_CLICKED",
        ]

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, engine, session_factory):
        _, _, token = await escalated_lead(engine, session_factory)

        first = await engine.process_claim(token)
        second = await engine.process_claim(token)

        assert first.success
        assert not second.success
        assert second.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert second.error == "Lead already claimed"

    @pytest.mark.asyncio
    async def test_concurrent_claims_exactly_one_wins(self, engine, session_factory):
        _, lead, token = await escalated_lead(engine, session_factory)

        results = await asyncio.gather(
            engine.process_claim(token),
            engine.process_claim(token),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["already_claimed", "claimed"]
        assert await load_events(session_factory, lead.id) == [
            "SMS_SENT",
            "CLAIM_CLICKED",
        ]

    @pytest.mark.asyncio
    async def test_many_concurrent_claims_exactly_one_wins(
        self, engine, session_factory
    ):
        _, _, token = await escalated_lead(engine, session_factory)

        results = await asyncio.gather(*(engine.process_claim(token) for _ in range(5)))

        assert sum(r.success for r in results) == 1
        assert sum(r.outcome == ClaimOutcome.ALREADY_CLAIMED for r in results) == 4

    @pytest.mark.asyncio
    async def test_losing_claim_returns_current_lead(self, engine, session_factory):
        _, lead, token = await escalated_lead(engine, session_factory)

        results = await asyncio.gather(
            engine.process_claim(token),
            engine.process_claim(token),
            return_exceptions=True,
        )

        assert not any(isinstance(r, Exception) for r in results)
        loser = next(r for r in results if not r.success)
        assert loser.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert loser.lead.id == lead.id
        assert loser.lead.status == "CLAIMED"
        assert loser.lead.claimed_by == "human"

    @pytest.mark.asyncio
    async def test_invalid_token(self, engine):
        result = await engine.process_claim("not-a-token")

        assert result.outcome == ClaimOutcome.INVALID
        assert result.error == "Invalid claim link"

    @pytest.mark.asyncio
    async def test_expired_token(self, engine, session_factory, codec):
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant, status="SMS_SENT")
        issued_at = datetime.now(timezone.utc) - timedelta(seconds=30)
        token = codec.issue(lead.id, tenant.id, 10, issued_at=issued_at)

        result = await engine.process_claim(token)

        assert result.outcome == ClaimOutcome.EXPIRED
        assert result.error == "Claim link expired"
        assert (await load_lead(session_factory, lead.id)).status == "SMS_SENT"

    @pytest.mark.asyncio
    async def test_unknown_lead(self, engine, session_factory, codec):
        tenant = await create_tenant(session_factory)

        result = await engine.process_claim(codec.issue(uuid4(), tenant.id, 60))

        assert result.outcome == ClaimOutcome.LEAD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, engine, session_factory, codec):
        tenant = await create_tenant(session_factory)
        lead = await create_lead(session_factory, tenant, status="SMS_SENT")

        result = await engine.process_claim(codec.issue(lead.id, uuid4(), 60))

        assert result.outcome == ClaimOutcome.TENANT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_cross_tenant_token_is_rejected(self, engine, session_factory, codec):
        _, lead, _ = await escalated_lead(engine, session_factory)
        other_tenant = await create_tenant(session_factory, company_name="Other Co")

        forged = codec.issue(lead.id, other_tenant.id, 60)
        result = await engine.process_claim(forged)

        assert result.outcome == ClaimOutcome.INVALID
        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "SMS_SENT"
        assert stored.claimed_by is None

    @pytest.mark.asyncio
    async def test_claim_after_ai_escalation_is_rejected(
        self, engine, session_factory
    ):
        _, lead, token = await escalated_lead(engine, session_factory)
        await engine.handle_timeout(lead.id)

        result = await engine.process_claim(token)

        assert result.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert (await load_lead(session_factory, lead.id)).claimed_by == "ai"


# =============================================================================
# SMS_SENT -> AI_CALLING
# =============================================================================


class TestHandleTimeout:
    """Escalating an unclaimed lead to an AI call."""

    @pytest.mark.asyncio
    async def test_escalates_to_ai_calling(self, engine, session_factory, initiator):
        tenant, lead, _ = await escalated_lead(engine, session_factory)

        assert await engine.handle_timeout(lead.id) is True

        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "AI_CALLING"
        assert stored.claimed_by == "ai"
        assert stored.ai_call_id == f"lead-{lead.id}-test"
        assert stored.ai_call_started_at is not None

        assert len(initiator.calls) == 1
        context = initiator.calls[0]
        assert context.phone == "+14155551234"
        assert context.from_number == "+14155550100"
        assert context.tenant_id == tenant.id
        assert context.services_offered == "Roof repair, Gutters"

    @pytest.mark.asyncio
    async def test_records_events(self, engine, session_factory):
        _, lead, _ = await escalated_lead(engine, session_factory)

        await engine.handle_timeout(lead.id)

        assert await load_events(session_factory, lead.id) == [
            "SMS_SENT",
            "CLAIM_TIMEOUT",
            "AI_CALL_STARTED",
        ]

    @pytest.mark.asyncio
    async def test_claimed_lead_is_a_no_op(self, engine, session_factory, initiator):
        _, lead, token = await escalated_lead(engine, session_factory)
        await engine.process_claim(token)

        assert await engine.handle_timeout(lead.id) is False

        assert (await load_lead(session_factory, lead.id)).status == "CLAIMED"
        assert initiator.calls == []

    @pytest.mark.asyncio
    async def test_unknown_lead_is_a_no_op(self, engine, initiator):
        assert await engine.handle_timeout(uuid4()) is False
        assert initiator.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_timeouts_call_once(
        self, engine, session_factory, initiator
    ):
        _, lead, _ = await escalated_lead(engine, session_factory)

        results = await asyncio.gather(
            *(engine.handle_timeout(lead.id) for _ in range(3))
        )

        assert sorted(results) == [False, False, True]
        assert len(initiator.calls) == 1

    @pytest.mark.asyncio
    async def test_initiator_error_keeps_ai_calling(
        self, session_factory, codec, cache, sms, config
    ):
        initiator = FakeCallInitiator(error=RuntimeError("sip trunk down"))
        engine = EscalationEngine(
            session_factory=session_factory,
            codec=codec,
            cache=cache,
            notifier=ClaimNotifier(sms),
            initiator=initiator,
            config=config,
        )
        _, lead, _ = await escalated_lead(engine, session_factory)

        assert await engine.handle_timeout(lead.id) is True

        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "AI_CALLING"
        assert stored.ai_call_id is None
        assert (await load_events(session_factory, lead.id))[-1] == "AI_CALL_FAILED"

    @pytest.mark.asyncio
    async def test_failed_dispatch_result_is_recorded(
        self, session_factory, codec, cache, sms, config
    ):
        initiator = FakeCallInitiator(
            result=DispatchResult(success=False, error="LiveKit not configured")
        )
        engine = EscalationEngine(
            session_factory=session_factory,
            codec=codec,
            cache=cache,
            notifier=ClaimNotifier(sms),
            initiator=initiator,
            config=config,
        )
        _, lead, _ = await escalated_lead(engine, session_factory)

        await engine.handle_timeout(lead.id)

        assert (await load_events(session_factory, lead.id))[-1] == "AI_CALL_FAILED"

    @pytest.mark.asyncio
    async def test_no_caller_id_skips_call(self, engine, session_factory, initiator):
        _, lead, _ = await escalated_lead(engine, session_factory, sms_from_phone=None)

        assert await engine.handle_timeout(lead.id) is True

        assert initiator.calls == []
        assert (await load_lead(session_factory, lead.id)).status == "AI_CALLING"


# =============================================================================
# End-to-end scenarios
# =============================================================================


class TestClaimOrEscalate:
    """Claim and sweep racing over the same lead."""

    @pytest.mark.asyncio
    async def test_claim_then_sweep_does_not_call(
        self, engine, session_factory, initiator
    ):
        _, lead, token = await escalated_lead(
            engine, session_factory, claim_timeout_sec=10
        )

        result = await engine.process_claim(token)
        assert result.success

        report = await TimeoutSweeper(engine).run(now=later(11))

        assert report.total == 0
        assert initiator.calls == []
        assert (await load_lead(session_factory, lead.id)).status == "CLAIMED"

    @pytest.mark.asyncio
    async def test_unclaimed_lead_escalates_after_window(
        self, engine, session_factory, initiator
    ):
        _, lead, _ = await escalated_lead(engine, session_factory, claim_timeout_sec=10)

        report = await TimeoutSweeper(engine).run(now=later(11))

        assert report.escalated == 1
        stored = await load_lead(session_factory, lead.id)
        assert stored.status == "AI_CALLING"
        assert stored.claimed_by == "ai"
        assert [c.phone for c in initiator.calls] == ["+14155551234"]

    @pytest.mark.asyncio
    async def test_sweep_before_window_closes_does_nothing(
        self, engine, session_factory, initiator
    ):
        _, lead, _ = await escalated_lead(engine, session_factory, claim_timeout_sec=10)

        report = await TimeoutSweeper(engine).run(now=later(5))

        assert report.total == 0
        assert (await load_lead(session_factory, lead.id)).status == "SMS_SENT"

    @pytest.mark.asyncio
    async def test_overlapping_sweeps_escalate_once(
        self, engine, session_factory, initiator
    ):
        _, lead, _ = await escalated_lead(engine, session_factory, claim_timeout_sec=10)
        sweeper = TimeoutSweeper(engine)

        reports = await asyncio.gather(
            sweeper.run(now=later(11)),
            sweeper.run(now=later(11)),
            sweeper.run(now=later(11)),
        )

        assert sum(r.escalated for r in reports) == 1
        assert len(initiator.calls) == 1

    @pytest.mark.asyncio
    async def test_claim_racing_timeout_exactly_one_wins(
        self, engine, session_factory, initiator
    ):
        _, lead, token = await escalated_lead(engine, session_factory)

        claim, escalated = await asyncio.gather(
            engine.process_claim(token),
            engine.handle_timeout(lead.id),
        )

        assert claim.success != escalated
        stored = await load_lead(session_factory, lead.id)
        assert stored.status == ("CLAIMED" if claim.success else "AI_CALLING")
