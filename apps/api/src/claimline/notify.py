"""Claim SMS delivery.

Sends the claim link to each notifiable team member through Twilio.
Every recipient gets an independent attempt; one failure never stops
the others.
"""

import asyncio
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from twilio.rest import Client

logger = logging.getLogger("claimline-sms")


@dataclass
class SmsConfig:
    """Configuration for the Twilio SMS sender."""

    account_sid: str
    auth_token: str
    status_callback_url: str | None = None

    @classmethod
    def from_env(cls, status_callback_url: str | None = None) -> "SmsConfig":
        """Load SMS config from environment variables."""
        account_sid = os.getenv("TWILIO_ACCOUNT_SID", "")
        auth_token = os.getenv("TWILIO_AUTH_TOKEN", "")

        if not account_sid:
            logger.warning("TWILIO_ACCOUNT_SID not set - SMS disabled")
        if not auth_token:
            logger.warning("TWILIO_AUTH_TOKEN not set - SMS disabled")

        return cls(
            account_sid=account_sid,
            auth_token=auth_token,
            status_callback_url=status_callback_url,
        )

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)


class SmsSender(Protocol):
    async def send(self, to: str, from_: str, body: str) -> str | None:
        """Send one SMS. Returns the provider message id, raises on failure."""
        ...


class TwilioSmsSender:
    """SmsSender backed by the Twilio REST API."""

    def __init__(self, config: SmsConfig | None = None, client: Client | None = None):
        self.config = config or SmsConfig.from_env()
        self._client = client
        if self._client is None and self.config.is_configured():
            self._client = Client(self.config.account_sid, self.config.auth_token)

    async def send(self, to: str, from_: str, body: str) -> str | None:
        if self._client is None:
            logger.warning(f"SMS not configured - skipping message to {to}")
            return None

        kwargs = {"body": body, "from_": from_, "to": to}
        if self.config.status_callback_url:
            kwargs["status_callback"] = self.config.status_callback_url

        # twilio's client is blocking
        message = await asyncio.to_thread(self._client.messages.create, **kwargs)
        logger.info(f"SMS sent to {to}: sid={message.sid}")
        return message.sid


@dataclass
class FanOutResult:
    """Outcome of sending one message to several recipients."""

    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def recipient_count(self) -> int:
        return len(self.sent) + len(self.failed) + len(self.skipped)


class ClaimNotifier:
    """Fans a claim message out to every recipient."""

    def __init__(self, sender: SmsSender):
        self.sender = sender

    async def notify(
        self, recipients: Sequence[str], from_: str, body: str
    ) -> FanOutResult:
        # Same number listed twice should only be texted once
        unique = list(dict.fromkeys(r for r in recipients if r))
        results = await asyncio.gather(
            *(self.sender.send(to, from_, body) for to in unique),
            return_exceptions=True,
        )

        fan_out = FanOutResult()
        for to, result in zip(unique, results, strict=True):
            if isinstance(result, Exception):
                logger.error(f"Claim SMS to {to} failed: {result}")
                fan_out.failed[to] = str(result)
            elif result is None:
                fan_out.skipped.append(to)
            else:
                fan_out.sent.append(to)
        return fan_out
