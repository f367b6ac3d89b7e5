"""Lead escalation: claim tokens, timeout cache, state machine and sweeper."""

from claimline.escalation.cache import TimeoutCache
from claimline.escalation.engine import (
    ClaimOutcome,
    ClaimResult,
    EscalationEngine,
    EscalationError,
    LeadNotFoundError,
    TenantNotFoundError,
    get_escalation_engine,
    run_escalation,
)
from claimline.escalation.outcomes import map_outcome
from claimline.escalation.sweeper import SweepReport, TimeoutSweeper
from claimline.escalation.tokens import ClaimPayload, ClaimTokenCodec

__all__ = [
    "ClaimOutcome",
    "ClaimPayload",
    "ClaimResult",
    "ClaimTokenCodec",
    "EscalationEngine",
    "EscalationError",
    "LeadNotFoundError",
    "SweepReport",
    "TenantNotFoundError",
    "TimeoutCache",
    "TimeoutSweeper",
    "get_escalation_engine",
    "map_outcome",
    "run_escalation",
]
