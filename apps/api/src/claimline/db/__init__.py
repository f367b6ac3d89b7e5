"""Database module for the API.

Provides SQLAlchemy models, async database session management, and the
lead repository.
"""

from claimline.db.database import (
    Base,
    async_session,
    get_db,
    init_db,
)
from claimline.db.models import (
    Event,
    Lead,
    TeamMember,
    Tenant,
)
from claimline.db.repository import LeadRepository

__all__ = [
    "Base",
    "Event",
    "Lead",
    "LeadRepository",
    "TeamMember",
    "Tenant",
    "async_session",
    "get_db",
    "init_db",
]
