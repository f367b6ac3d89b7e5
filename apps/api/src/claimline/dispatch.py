"""LiveKit SIP dispatch for AI follow-up calls.

Creates an agent dispatch into a fresh room. The voice agent reads the
call context and outbound trunk from the dispatch metadata, dials the
lead over SIP, and posts the completion webhook when the call ends. The
room name doubles as the call id stored on the lead.
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Protocol

from livekit import api
from shared.schemas import CallContext

logger = logging.getLogger("claimline-dispatch")

DEFAULT_AGENT_NAME = "claimline-agent"

_REQUIRED_ENV = {
    "livekit_url": "LIVEKIT_URL",
    "api_key": "LIVEKIT_API_KEY",
    "api_secret": "LIVEKIT_API_SECRET",
    "sip_trunk_id": "SIP_OUTBOUND_TRUNK_ID",
}


@dataclass
class DispatchConfig:
    """LiveKit credentials and the SIP trunk AI calls go out on."""

    livekit_url: str
    api_key: str
    api_secret: str
    sip_trunk_id: str
    agent_name: str = DEFAULT_AGENT_NAME

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        values = {field: os.getenv(var, "") for field, var in _REQUIRED_ENV.items()}
        missing = [var for field, var in _REQUIRED_ENV.items() if not values[field]]
        if missing:
            logger.warning(f"{', '.join(missing)} not set - AI calls will fail")
        return cls(
            **values,
            agent_name=os.getenv("VOICE_AGENT_NAME", DEFAULT_AGENT_NAME),
        )

    def is_configured(self) -> bool:
        return all(getattr(self, field) for field in _REQUIRED_ENV)


@dataclass
class DispatchResult:
    """Outcome of starting one AI call."""

    success: bool
    call_id: str | None = None
    dispatch_id: str | None = None
    error: str | None = None


class CallInitiator(Protocol):
    async def initiate(self, context: CallContext) -> DispatchResult: ...


def room_name_for(context: CallContext) -> str:
    """Unique room per attempt; the lead id keeps rooms traceable."""
    return f"lead-{context.lead_id}-{secrets.token_hex(4)}"


def dispatch_metadata(context: CallContext, sip_trunk_id: str) -> str:
    """JSON handed to the agent: the call context plus the trunk to dial from."""
    return json.dumps(
        {
            "sip_trunk_id": sip_trunk_id,
            "context": context.model_dump(mode="json"),
        }
    )


class LiveKitCallInitiator:
    """Starts AI voice calls by dispatching the agent into a LiveKit room."""

    def __init__(self, config: DispatchConfig | None = None):
        self.config = config or DispatchConfig.from_env()

    async def initiate(self, context: CallContext) -> DispatchResult:
        """Dispatch the voice agent for one lead.

        Returns:
            DispatchResult with the room name as ``call_id`` on success.
            Provider errors come back as a failed result, never raised.
        """
        if not self.config.is_configured():
            missing = [
                var
                for field, var in _REQUIRED_ENV.items()
                if not getattr(self.config, field)
            ]
            return DispatchResult(
                success=False,
                error=f"LiveKit not configured: missing {', '.join(missing)}",
            )

        room = room_name_for(context)
        request = api.CreateAgentDispatchRequest(
            agent_name=self.config.agent_name,
            room=room,
            metadata=dispatch_metadata(context, self.config.sip_trunk_id),
        )

        lkapi = api.LiveKitAPI(
            self.config.livekit_url,
            self.config.api_key,
            self.config.api_secret,
        )
        try:
            dispatch = await lkapi.agent_dispatch.create_dispatch(request)
        except api.TwirpError as e:
            error_msg = f"LiveKit API error: {e.message}"
            logger.error(f"Dispatch for lead {context.lead_id} rejected: {error_msg}")
            return DispatchResult(success=False, error=error_msg)
        except Exception as e:
            logger.error(f"Dispatch for lead {context.lead_id} failed: {e!s}")
            return DispatchResult(success=False, error=f"Dispatch error: {e!s}")
        finally:
            await lkapi.aclose()

        logger.info(
            f"Dispatched {self.config.agent_name} to {room} "
            f"for lead {context.lead_id} ({dispatch.id})"
        )
        return DispatchResult(success=True, call_id=room, dispatch_id=dispatch.id)
