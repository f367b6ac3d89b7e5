"""Timeout sweeper.

Finds leads whose claim window lapsed without a claim and hands each one
to the engine's timeout handler. The candidate query is not a lock; the
handler's conditional update decides, so overlapping sweeps are safe.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime

from claimline.db import LeadRepository
from claimline.escalation.engine import EscalationEngine

logger = logging.getLogger("claimline-escalation")


@dataclass
class SweepReport:
    """Counts from one sweep pass."""

    total: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        """Leads whose handler completed (escalated or skipped)."""
        return self.escalated + self.skipped


class TimeoutSweeper:
    """Runs the timeout handler for every expired claim window."""

    def __init__(self, engine: EscalationEngine):
        self.engine = engine
        self._task: asyncio.Task | None = None

    async def run(self, now: datetime | None = None) -> SweepReport:
        """One sweep pass.

        Args:
            now: Cut-off time (defaults to the engine clock).

        Returns:
            SweepReport; a failing lead is counted, never raised.
        """
        now = now or self.engine.clock()
        async with self.engine.session_factory() as db:
            lead_ids = await LeadRepository(db).find_expired_claims(now)

        report = SweepReport(total=len(lead_ids))
        if not lead_ids:
            return report

        results = await asyncio.gather(
            *(self.engine.handle_timeout(lead_id) for lead_id in lead_ids),
            return_exceptions=True,
        )
        for lead_id, result in zip(lead_ids, results, strict=True):
            if isinstance(result, Exception):
                report.failed += 1
                logger.error(f"Timeout handling failed for lead {lead_id}: {result}")
            elif result:
                report.escalated += 1
            else:
                report.skipped += 1

        logger.info(
            f"Sweep: {report.total} expired, {report.escalated} escalated, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report

    # -------------------------------------------------------------------------
    # In-process loop
    # -------------------------------------------------------------------------

    async def start(self, interval_seconds: int) -> None:
        """Start sweeping every ``interval_seconds`` in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self._periodic_sweep(interval_seconds))
            logger.info(f"Timeout sweeper running every {interval_seconds}s")

    async def stop(self) -> None:
        """Stop the background sweep."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def _periodic_sweep(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.run()
            except Exception:
                logger.exception("Timeout sweep failed")
