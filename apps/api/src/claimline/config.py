"""Service configuration.

Loaded from environment variables (``.env.local`` / ``.env`` are read by
the app on import). Provider credentials live next to each provider
client; this module covers the escalation pipeline itself.
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger("claimline-config")

DEV_CLAIM_SECRET = "dev-secret-change-in-production"


class ConfigurationError(Exception):
    """Raised when a setting is present but unusable."""

    pass


class EnvSecretSource:
    """Reads the claim signing secret from the environment on every call.

    Passed to the token codec as a callable so the secret can be rotated
    (or supplied by a vault client) without rebuilding the codec.
    """

    def __init__(self, key: str = "CLAIM_SECRET", default: str = DEV_CLAIM_SECRET):
        self.key = key
        self.default = default
        if not os.getenv(key):
            logger.warning(f"{key} not set - using development secret")

    def __call__(self) -> str:
        return os.getenv(self.key) or self.default


@dataclass
class AppConfig:
    """Configuration for the escalation pipeline."""

    app_url: str
    cron_secret: str
    redis_url: str
    sweeper_interval_seconds: int = 0

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load app config from environment variables."""
        app_url = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
        cron_secret = os.getenv("CRON_SECRET", "")
        redis_url = os.getenv("REDIS_URL", "")
        raw_interval = os.getenv("SWEEPER_INTERVAL_SECONDS", "0")

        try:
            interval = int(raw_interval)
        except ValueError as e:
            raise ConfigurationError(
                f"SWEEPER_INTERVAL_SECONDS must be an integer, got {raw_interval!r}"
            ) from e
        if interval < 0:
            raise ConfigurationError("SWEEPER_INTERVAL_SECONDS cannot be negative")

        if not cron_secret:
            logger.warning("CRON_SECRET not set - timeout sweep trigger is open")
        if not redis_url:
            logger.warning("REDIS_URL not set - timeout cache disabled")

        return cls(
            app_url=app_url,
            cron_secret=cron_secret,
            redis_url=redis_url,
            sweeper_interval_seconds=interval,
        )

    def claim_url(self, token: str) -> str:
        """Public claim link for a token."""
        return f"{self.app_url}/c/{token}"

    def sms_status_callback_url(self) -> str:
        return f"{self.app_url}/webhooks/sms-status"
