"""Timeout cache.

Best-effort Redis marker for "this lead has an open claim window". The
claim and timeout paths never read it to decide anything; Lead.status is
the authority. Every failure here is logged and swallowed.
"""

import logging
from uuid import UUID

import redis.asyncio as redis

logger = logging.getLogger("claimline-cache")

KEY_PREFIX = "claim:"


def claim_key(lead_id: UUID | str) -> str:
    return f"{KEY_PREFIX}{lead_id}"


class TimeoutCache:
    """Redis-backed claim window markers. Disabled when no URL is given."""

    def __init__(self, redis_url: str = "", client: redis.Redis | None = None):
        """Initialize the cache.

        Args:
            redis_url: Redis connection URL. Empty disables the cache.
            client: Pre-configured client (tests).
        """
        self._redis = client
        if self._redis is None and redis_url:
            self._redis = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def set(self, lead_id: UUID | str, token: str, ttl_seconds: int) -> bool:
        """Record an open claim window that expires after ``ttl_seconds``."""
        if not self.enabled:
            return False
        try:
            await self._redis.set(claim_key(lead_id), token, ex=ttl_seconds)
            return True
        except Exception as e:
            logger.warning(f"Cache set failed for lead {lead_id}: {e}")
            return False

    async def get(self, lead_id: UUID | str) -> str | None:
        if not self.enabled:
            return None
        try:
            return await self._redis.get(claim_key(lead_id))
        except Exception as e:
            logger.warning(f"Cache get failed for lead {lead_id}: {e}")
            return None

    async def delete(self, lead_id: UUID | str) -> bool:
        """Drop the marker once a lead is claimed."""
        if not self.enabled:
            return False
        try:
            await self._redis.delete(claim_key(lead_id))
            return True
        except Exception as e:
            logger.warning(f"Cache delete failed for lead {lead_id}: {e}")
            return False

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Cache close failed: {e}")
