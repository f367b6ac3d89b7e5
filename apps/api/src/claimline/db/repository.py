"""Lead storage operations used by the escalation pipeline.

Status transitions are conditional updates ("set status to X where status
is still Y"). A transition that affects zero rows means another path got
there first; callers treat that as the race-lost outcome instead of
re-reading the row to work out why.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from shared.schemas import EventType, LeadStatus

from claimline.db.models import Event, Lead, TeamMember, Tenant, utcnow


class LeadRepository:
    """Reads and conditional writes for leads, tenants and events."""

    def __init__(self, db: AsyncSession):
        """Initialize the repository.

        Args:
            db: Async database session. The caller owns commit/rollback.
        """
        self.db = db

    async def get_lead(self, lead_id: UUID) -> Lead | None:
        return await self.db.get(Lead, lead_id)

    async def get_tenant(self, tenant_id: UUID) -> Tenant | None:
        return await self.db.get(Tenant, tenant_id)

    async def get_notifiable_members(self, tenant_id: UUID) -> list[TeamMember]:
        """Active team members that opted in to claim SMS."""
        result = await self.db.execute(
            select(TeamMember)
            .where(TeamMember.tenant_id == tenant_id)
            .where(TeamMember.is_active.is_(True))
            .where(TeamMember.receive_sms.is_(True))
            .order_by(TeamMember.created_at)
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        lead_id: UUID,
        expected: LeadStatus,
        new: LeadStatus,
        **fields: Any,
    ) -> bool:
        """Atomically move a lead from ``expected`` to ``new``.

        Extra keyword arguments are written in the same statement.

        Returns:
            True if this call performed the transition, False if the lead
            was not in ``expected`` (or does not exist).
        """
        result = await self.db.execute(
            update(Lead)
            .where(Lead.id == lead_id)
            .where(Lead.status == expected.value)
            .values(status=new.value, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_lead(self, lead_id: UUID, **fields: Any) -> None:
        """Unconditional field update (no status guard)."""
        await self.db.execute(
            update(Lead)
            .where(Lead.id == lead_id)
            .values(updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )

    async def find_expired_claims(self, now: datetime) -> list[UUID]:
        """Leads still awaiting a claim whose window closed before ``now``."""
        result = await self.db.execute(
            select(Lead.id)
            .where(Lead.status == LeadStatus.SMS_SENT.value)
            .where(Lead.claim_expires_at < now)
            .order_by(Lead.claim_expires_at)
        )
        return list(result.scalars().all())

    async def find_by_call_id(self, call_id: str) -> Lead | None:
        result = await self.db.execute(
            select(Lead).where(Lead.ai_call_id == call_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_latest_by_phone(self, phone: str) -> Lead | None:
        """Most recently created lead with this phone number (best effort)."""
        result = await self.db.execute(
            select(Lead)
            .where(Lead.phone == phone)
            .order_by(Lead.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def log_event(
        self,
        tenant_id: UUID,
        event_type: EventType,
        lead_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """Append an audit event to the session."""
        event = Event(
            tenant_id=tenant_id,
            lead_id=lead_id,
            type=event_type.value,
            payload=payload,
        )
        self.db.add(event)
        await self.db.flush()
        return event
