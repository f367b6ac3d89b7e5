"""Signed, time-limited claim tokens.

A claim token binds a lead id and tenant id with an expiry, signed with a
process-wide secret (HS256 JWT). ``verify`` fails closed: malformed,
tampered, mis-signed and expired tokens all come back as ``None``.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from jose import jwt
from jose.exceptions import JOSEError
from jose.utils import base64url_decode, base64url_encode
from pydantic import BaseModel

from claimline.config import EnvSecretSource

ALGORITHM = "HS256"
TOKEN_TYPE = "claim"


class ClaimPayload(BaseModel):
    """Decoded claim token."""

    lead_id: UUID
    tenant_id: UUID
    exp: datetime


def _is_canonical(token: str) -> bool:
    """Each segment must re-encode to itself.

    base64url ignores the spare low bits of the final character, so
    without this check some single-character edits still decode to the
    same bytes.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return False
    try:
        for segment in segments:
            raw = segment.encode("ascii")
            if base64url_encode(base64url_decode(raw)) != raw:
                return False
    except ValueError:
        return False
    return True


class ClaimTokenCodec:
    """Issues and verifies claim tokens."""

    def __init__(self, secret_source: Callable[[], str] | None = None):
        """Initialize the codec.

        Args:
            secret_source: Callable returning the signing secret. Defaults to
                CLAIM_SECRET from the environment.
        """
        self._secret_source = secret_source or EnvSecretSource()

    def issue(
        self,
        lead_id: UUID | str,
        tenant_id: UUID | str,
        ttl_seconds: int,
        issued_at: datetime | None = None,
    ) -> str:
        """Create a claim token valid for ``ttl_seconds``.

        Args:
            lead_id: The lead being claimed.
            tenant_id: The lead's tenant.
            ttl_seconds: Claim window length, must be positive.
            issued_at: Issue time (defaults to now).

        Returns:
            Encoded JWT claim token.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        now = issued_at or datetime.now(timezone.utc)
        to_encode: dict[str, Any] = {
            "lead_id": str(lead_id),
            "tenant_id": str(tenant_id),
            "type": TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        }
        return jwt.encode(to_encode, self._secret_source(), algorithm=ALGORITHM)

    def _decode(self, token: str, verify_exp: bool) -> ClaimPayload | None:
        if not isinstance(token, str) or not _is_canonical(token):
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_source(),
                algorithms=[ALGORITHM],
                options={"verify_exp": verify_exp},
            )
            if payload.get("type") != TOKEN_TYPE:
                return None
            return ClaimPayload(
                lead_id=UUID(payload["lead_id"]),
                tenant_id=UUID(payload["tenant_id"]),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (JOSEError, KeyError, TypeError, ValueError):
            return None

    def verify(self, token: str) -> ClaimPayload | None:
        """Decode a token if its signature and expiry are both valid."""
        return self._decode(token, verify_exp=True)

    def is_expired(self, token: str) -> bool:
        """True only for a correctly signed token whose window has closed.

        Used to pick the user-facing message after ``verify`` failed;
        never for trust decisions.
        """
        payload = self._decode(token, verify_exp=False)
        if payload is None:
            return False
        return payload.exp <= datetime.now(timezone.utc)
