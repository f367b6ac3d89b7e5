"""Context Builder package for the claimline escalation service.

Builds CallContext objects and claim SMS text before a call or
notification goes out. Nothing here talks to a provider.
"""

from context_builder.builder import (
    ContextBuilder,
    build_claim_message,
    build_context,
)

__all__ = ["ContextBuilder", "build_claim_message", "build_context"]
