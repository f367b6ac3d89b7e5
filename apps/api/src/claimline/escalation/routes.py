"""Claim link and sweep trigger endpoints."""

import html
import logging
import secrets
from datetime import datetime, timezone
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel

from claimline.escalation.engine import (
    ClaimOutcome,
    ClaimResult,
    EscalationEngine,
    get_escalation_engine,
)
from claimline.escalation.sweeper import TimeoutSweeper

logger = logging.getLogger("claimline-api")

router = APIRouter(tags=["claims"])

CLAIM_STATUS_CODES = {
    ClaimOutcome.CLAIMED: 200,
    ClaimOutcome.EXPIRED: 410,
    ClaimOutcome.ALREADY_CLAIMED: 409,
    ClaimOutcome.LEAD_NOT_FOUND: 404,
    ClaimOutcome.TENANT_NOT_FOUND: 404,
    ClaimOutcome.INVALID: 400,
}


# =============================================================================
# Request/Response Models
# =============================================================================


class ClaimResponse(BaseModel):
    """JSON result of a claim attempt."""

    success: bool
    outcome: ClaimOutcome
    error: str | None = None
    lead_id: UUID | None = None


class SweepResponse(BaseModel):
    """Result of one timeout sweep."""

    success: bool
    processed: int
    escalated: int
    skipped: int
    failed: int
    total: int
    timestamp: str


def get_sweeper(
    engine: EscalationEngine = Depends(get_escalation_engine),
) -> TimeoutSweeper:
    return TimeoutSweeper(engine)


# =============================================================================
# Pages
# =============================================================================

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 3rem 1rem;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def render_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(title=html.escape(title), message=html.escape(message)),
        status_code=status_code,
    )


def render_claim_result(result: ClaimResult) -> HTMLResponse:
    status_code = CLAIM_STATUS_CODES[result.outcome]
    if result.success:
        lead = result.lead
        name = f"{lead.first_name} {lead.last_name or ''}".strip()
        return render_page(
            "Lead claimed",
            f"{name} ({lead.phone}) is yours. Call them now.",
            status_code,
        )
    if result.outcome == ClaimOutcome.ALREADY_CLAIMED:
        return render_page(
            "Already claimed",
            "Someone else got to this lead first.",
            status_code,
        )
    if result.outcome == ClaimOutcome.EXPIRED:
        return render_page(
            "Link expired",
            "The claim window closed and our assistant is following up.",
            status_code,
        )
    return render_page("Claim failed", result.error or "Invalid claim link", status_code)


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/claim/{token}", response_class=HTMLResponse)
async def claim_page(
    token: str,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Claim a lead and render the outcome."""
    result = await engine.process_claim(token)
    return render_claim_result(result)


@router.get("/c/{token}")
async def claim_redirect(
    token: str,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Short claim link used in SMS. Redirects to a result page."""
    result = await engine.process_claim(token)
    if result.success:
        return RedirectResponse(
            f"/claim-success?lead_id={result.lead.id}", status_code=303
        )
    return RedirectResponse(
        f"/claim-error?message={quote(result.error or 'Invalid claim link')}",
        status_code=303,
    )


@router.get("/claim-success", response_class=HTMLResponse)
async def claim_success_page():
    return render_page("Lead claimed", "The lead is yours. Call them now.")


@router.get("/claim-error", response_class=HTMLResponse)
async def claim_error_page(message: str = "Invalid claim link"):
    return render_page("Claim failed", message)


@router.get("/api/claims/{token}", response_model=ClaimResponse)
async def claim_json(
    token: str,
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Claim a lead and return the outcome as JSON."""
    result = await engine.process_claim(token)
    body = ClaimResponse(
        success=result.success,
        outcome=result.outcome,
        error=result.error,
        lead_id=result.lead.id if result.lead else None,
    )
    return JSONResponse(
        body.model_dump(mode="json"),
        status_code=CLAIM_STATUS_CODES[result.outcome],
    )


@router.api_route("/cron/check-timeouts", methods=["GET", "POST"])
async def check_timeouts(
    authorization: str | None = Header(default=None),
    sweeper: TimeoutSweeper = Depends(get_sweeper),
) -> SweepResponse:
    """Run one timeout sweep. Called by the external scheduler."""
    cron_secret = sweeper.engine.config.cron_secret
    if cron_secret and not secrets.compare_digest(
        authorization or "", f"Bearer {cron_secret}"
    ):
        logger.warning("Rejected sweep trigger with bad credentials")
        raise HTTPException(status_code=401, detail="Unauthorized")

    report = await sweeper.run()
    return SweepResponse(
        success=True,
        processed=report.processed,
        escalated=report.escalated,
        skipped=report.skipped,
        failed=report.failed,
        total=report.total,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
