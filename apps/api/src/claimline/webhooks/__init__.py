"""Provider callbacks: voice-call completion and SMS delivery status."""

from claimline.webhooks.ingestion import OutcomeIngestor
from claimline.webhooks.routes import router

__all__ = ["OutcomeIngestor", "router"]
