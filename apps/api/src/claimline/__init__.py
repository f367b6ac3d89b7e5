"""claimline API package.

This FastAPI application orchestrates:
- Lead intake (POST /leads)
- Claim links texted to the tenant's team (Twilio)
- Escalation of unclaimed leads to an AI voice call (LiveKit SIP)
- Outcome ingestion from provider webhooks
"""

from claimline.main import app

__all__ = ["app"]
