"""FastAPI application for claimline.

Provides:
- Lead intake from landing pages
- Claim links for team members (SMS)
- Timeout sweep trigger that escalates unclaimed leads to an AI call
- Webhooks for AI call outcomes and SMS delivery status
- Booking callback for the voice agent

Flow:
1. POST /leads - Store the lead, text the team a claim link (background)
2. GET /c/{token} - First team member to click claims the lead
3. GET /cron/check-timeouts - Unclaimed leads past their window get an AI call
4. POST /agent/book-appointment - Agent books during the call
5. POST /webhooks/voice-call - Call outcome is recorded on the lead
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import UUID

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from shared.schemas import EventType, LeadForm, LeadStatus
from sqlalchemy.ext.asyncio import AsyncSession

from claimline.booking import router as booking_router
from claimline.db import Lead, LeadRepository, Tenant, get_db
from claimline.escalation.engine import (
    EscalationEngine,
    get_escalation_engine,
    run_escalation,
)
from claimline.escalation.routes import router as claims_router
from claimline.escalation.sweeper import TimeoutSweeper
from claimline.webhooks import router as webhooks_router

_project_root = os.path.dirname(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
)
load_dotenv(os.path.join(_project_root, ".env.local"))
load_dotenv()  # Also try default .env

logger = logging.getLogger("claimline-api")


# =============================================================================
# Intake Rate Limiting
# =============================================================================


class IntakeRateLimiter:
    """Per-IP sliding window limiter for lead intake.

    All operations are protected by asyncio.Lock to prevent race conditions.
    """

    def __init__(self, window_seconds: int = 60, max_requests: int = 5):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._ip_requests: dict[str, list[datetime]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, ip: str) -> bool:
        """Record a request. Returns True if allowed, False if blocked."""
        async with self._lock:
            now = datetime.now(timezone.utc)
            cutoff = now.timestamp() - self.window_seconds
            self._drop_idle(cutoff)

            requests = self._ip_requests.get(ip, [])
            requests = [r for r in requests if r.timestamp() > cutoff]

            if len(requests) >= self.max_requests:
                self._ip_requests[ip] = requests
                return False

            requests.append(now)
            self._ip_requests[ip] = requests
            return True

    def _drop_idle(self, cutoff: float) -> None:
        """Forget IPs with no request inside the window. Caller holds the lock."""
        idle = [
            ip
            for ip, requests in self._ip_requests.items()
            if not requests or requests[-1].timestamp() <= cutoff
        ]
        for ip in idle:
            del self._ip_requests[ip]

    async def reset(self) -> None:
        async with self._lock:
            self._ip_requests.clear()


intake_limiter = IntakeRateLimiter()


# =============================================================================
# App Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle - start/stop the in-process sweeper."""
    engine = get_escalation_engine()
    sweeper: TimeoutSweeper | None = None
    interval = engine.config.sweeper_interval_seconds
    if interval > 0:
        sweeper = TimeoutSweeper(engine)
        await sweeper.start(interval)
    yield
    if sweeper is not None:
        await sweeper.stop()
    await engine.cache.close()


app = FastAPI(
    title="claimline API",
    description="Lead intake with claim-or-AI-call escalation for contractors",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for landing pages
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Landing pages are served from tenant domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(claims_router)
app.include_router(webhooks_router)
app.include_router(booking_router)


# =============================================================================
# Request/Response Models
# =============================================================================


class LeadCreatedResponse(BaseModel):
    """Response after a lead is stored."""

    success: bool
    lead_id: UUID


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    cache_enabled: bool


# =============================================================================
# Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check(engine: EscalationEngine = Depends(get_escalation_engine)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        cache_enabled=engine.cache.enabled,
    )


@app.post("/leads", response_model=LeadCreatedResponse, status_code=201)
async def create_lead(
    form: LeadForm,
    http_request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Store a landing-page lead and start escalation.

    Validates:
    - Required AI call consent
    - Phone number (normalized to E.164 by LeadForm)
    - Tenant exists and is active
    - IP rate limiting

    The response is sent as soon as the lead is committed; the claim SMS
    goes out from a background task.
    """
    if not form.consent:
        raise HTTPException(
            status_code=400,
            detail="Consent checkbox must be checked to proceed",
        )

    client_ip = http_request.client.host if http_request.client else "unknown"
    if not await intake_limiter.allow(client_ip):
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Max {intake_limiter.max_requests} requests per {intake_limiter.window_seconds} seconds.",
        )

    tenant = await db.get(Tenant, form.tenant_id)
    if tenant is None or not tenant.is_active:
        raise HTTPException(status_code=404, detail="Tenant not found")

    lead = Lead(
        tenant_id=tenant.id,
        first_name=form.first_name,
        last_name=form.last_name,
        phone=form.phone,
        email=form.email,
        address=form.address,
        city=form.city,
        state=form.state,
        zip=form.zip,
        project_notes=form.project_notes,
        ai_consent_given=form.consent,
        consent_ip=client_ip,
        landing_page_id=form.landing_page_id,
        utm_source=form.utm_source,
        utm_medium=form.utm_medium,
        utm_campaign=form.utm_campaign,
        status=LeadStatus.NEW.value,
    )
    db.add(lead)
    await db.flush()

    await LeadRepository(db).log_event(
        tenant.id,
        EventType.LEAD_CREATED,
        lead_id=lead.id,
        payload={
            "source": "landing_page" if form.landing_page_id else "api",
            "landing_page_id": form.landing_page_id,
            "ip": client_ip,
        },
    )
    # Escalation reads the lead from its own session
    await db.commit()
    logger.info(f"Lead {lead.id} created for tenant {tenant.id}")

    background_tasks.add_task(run_escalation, engine, lead.id)

    return LeadCreatedResponse(success=True, lead_id=lead.id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
