"""Shared fixtures for API tests.

Storage runs on a temporary SQLite file with NullPool so every session
gets its own connection; concurrent claims really race on the database.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from claimline.config import AppConfig
from claimline.db import Event, Lead, TeamMember, Tenant, get_db, init_db
from claimline.dispatch import DispatchResult
from claimline.escalation import ClaimTokenCodec, EscalationEngine, TimeoutCache
from claimline.escalation.engine import get_escalation_engine
from claimline.main import app, intake_limiter
from claimline.notify import ClaimNotifier

TEST_SECRET = "test-claim-secret"


# =============================================================================
# Fake Collaborators
# =============================================================================


class FakeSmsSender:
    """Records messages; raises for numbers listed in ``fail_for``."""

    def __init__(self, fail_for: tuple[str, ...] = ()):
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = set(fail_for)

    async def send(self, to: str, from_: str, body: str) -> str:
        if to in self.fail_for:
            raise RuntimeError(f"carrier rejected {to}")
        self.sent.append((to, from_, body))
        return f"SM{len(self.sent):04d}"


class FakeCallInitiator:
    """Records contexts; returns ``result`` or raises ``error``."""

    def __init__(
        self,
        result: DispatchResult | None = None,
        error: Exception | None = None,
    ):
        self.calls = []
        self.result = result
        self.error = error

    async def initiate(self, context) -> DispatchResult:
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return DispatchResult(
            success=True,
            call_id=f"lead-{context.lead_id}-test",
            dispatch_id="AD_test",
        )


# =============================================================================
# Seed Helpers
# =============================================================================


async def create_tenant(session_factory, **overrides) -> Tenant:
    fields = {
        "company_name": "Acme Roofing",
        "slug": f"acme-{uuid4().hex[:8]}",
        "contractor_type": "ROOFING",
        "sms_from_phone": "+14155550100",
        "notification_phone": "+14155550199",
        "ai_service_list": "Roof repair, Gutters",
        "claim_timeout_sec": 10,
    }
    fields.update(overrides)
    async with session_factory() as db:
        tenant = Tenant(**fields)
        db.add(tenant)
        await db.commit()
        return tenant


async def create_member(session_factory, tenant: Tenant, **overrides) -> TeamMember:
    fields = {"tenant_id": tenant.id, "name": "Sam", "phone": "+14155550111"}
    fields.update(overrides)
    async with session_factory() as db:
        member = TeamMember(**fields)
        db.add(member)
        await db.commit()
        return member


async def create_lead(session_factory, tenant: Tenant, **overrides) -> Lead:
    fields = {
        "tenant_id": tenant.id,
        "first_name": "Jane",
        "last_name": "Doe",
        "phone": "+14155551234",
        "city": "Oakland",
        "ai_consent_given": True,
        "status": "NEW",
    }
    fields.update(overrides)
    async with session_factory() as db:
        lead = Lead(**fields)
        db.add(lead)
        await db.commit()
        return lead


async def load_lead(session_factory, lead_id) -> Lead:
    async with session_factory() as db:
        return await db.get(Lead, lead_id)


async def load_events(session_factory, lead_id) -> list[str]:
    async with session_factory() as db:
        result = await db.execute(
            select(Event.type).where(Event.lead_id == lead_id).order_by(Event.created_at)
        )
        return list(result.scalars().all())


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'claimline.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    asyncio.run(init_db(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sms():
    return FakeSmsSender()


@pytest.fixture
def initiator():
    return FakeCallInitiator()


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.fixture
def cache(redis_client):
    return TimeoutCache(client=redis_client)


@pytest.fixture
def codec():
    return ClaimTokenCodec(lambda: TEST_SECRET)


@pytest.fixture
def config():
    return AppConfig(
        app_url="https://claim.test",
        cron_secret="cron-secret",
        redis_url="",
    )


@pytest.fixture
def engine(session_factory, codec, cache, sms, initiator, config):
    return EscalationEngine(
        session_factory=session_factory,
        codec=codec,
        cache=cache,
        notifier=ClaimNotifier(sms),
        initiator=initiator,
        config=config,
    )


@pytest.fixture
def client(session_factory, engine):
    """Test client wired to the temporary database and fake collaborators."""
    from fastapi.testclient import TestClient

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_escalation_engine] = lambda: engine
    intake_limiter._ip_requests.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
