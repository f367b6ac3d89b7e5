"""Voice-call outcome classification.

Maps the free-text outcome tag posted by the voice-call service onto a
terminal lead status. Rules are checked in order; the first rule with a
keyword contained in the normalized tag wins. Anything unmatched
(including a missing tag) is AI_QUALIFIED.
"""

import re

from shared.schemas import LeadStatus

DEFAULT_OUTCOME_STATUS = LeadStatus.AI_QUALIFIED

OUTCOME_RULES: tuple[tuple[LeadStatus, tuple[str, ...]], ...] = (
    (LeadStatus.BOOKED, ("booked", "appointment_scheduled", "appointment_booked")),
    (LeadStatus.DISQUALIFIED, ("not_interested", "declined")),
    (LeadStatus.CALLBACK_SCHEDULED, ("callback", "reschedule")),
    (LeadStatus.NO_ANSWER, ("no_answer", "voicemail")),
)

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_outcome(outcome: str | None) -> str:
    """Lowercase, trim, and fold spaces/hyphens to underscores."""
    if not outcome:
        return ""
    return _SEPARATORS.sub("_", outcome.strip().lower())


def map_outcome(outcome: str | None) -> LeadStatus:
    """Terminal status for a call outcome tag."""
    tag = normalize_outcome(outcome)
    if tag:
        for status, keywords in OUTCOME_RULES:
            if any(keyword in tag for keyword in keywords):
                return status
    return DEFAULT_OUTCOME_STATUS
