"""
Enumerations shared by the conversation core.

Values are the lowercase strings stored in the database and exchanged with
the configuration tables, so they double as the persisted representation.
"""

from enum import Enum
from typing import Dict, Optional


class SalesMode(str, Enum):
    """Which party plays the salesperson."""
    AI_IS_SELLER = "ai_sells"
    AI_IS_CUSTOMER = "user_sells"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class Phase(str, Enum):
    GREETING = "greeting"
    DISCOVERY = "discovery"
    PITCHING = "pitching"
    POSITIONING = "positioning"
    CLOSING = "closing"
    COMPLETED = "completed"


class SessionOutcome(str, Enum):
    UNDETERMINED = "undetermined"
    SALE_MADE = "sale_made"
    NO_SALE = "no_sale"
    ABANDONED = "abandoned"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class VerdictOutcome(str, Enum):
    CONFIRMED = "SALE_CONFIRMED"
    DENIED = "SALE_DENIED"
    UNDECIDED = "UNDECIDED"


# Partial order: DISCOVERY and PITCHING share a rank (one per mode)
PHASE_RANK: Dict[Phase, int] = {
    Phase.GREETING: 0,
    Phase.DISCOVERY: 1,
    Phase.PITCHING: 1,
    Phase.POSITIONING: 2,
    Phase.CLOSING: 3,
    Phase.COMPLETED: 4,
}


def phase_rank(phase: Phase) -> int:
    return PHASE_RANK[phase]


def coerce_enum(enum_cls, raw: Optional[str], default):
    """Map a stored string onto an enum member, falling back to ``default``."""
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls((raw or "").strip().lower())
    except ValueError:
        return default
