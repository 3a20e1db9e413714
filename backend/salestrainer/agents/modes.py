# backend/salestrainer/agents/modes.py
"""
Mode strategies.

Everything that differs between "AI sells" and "AI is the customer" lives
here: phase transitions, which utterances are worth classifying, the
confidence threshold, the give-up short circuit and the fallback popup text.
The phase machine and the decision gate only ever talk to a ModeStrategy.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from salestrainer.agents.states import (
    Phase,
    Role,
    SalesMode,
    SessionOutcome,
    phase_rank,
)
from salestrainer.services.config_provider import SessionConfig
from salestrainer.utils.helpers import find_phrase

# (headline, message) shown in the outcome popup
Notice = Tuple[str, str]


@dataclass(frozen=True)
class LexicalSignals:
    """Advisory phrase matches for one utterance. Never enough to commit alone."""
    exit_signal: bool = False
    buy_signal: bool = False
    exit_phrase: Optional[str] = None
    buy_phrase: Optional[str] = None

    @property
    def any(self) -> bool:
        return self.exit_signal or self.buy_signal


class ModeStrategy:
    mode: SalesMode
    fallback_notices: Dict[SessionOutcome, Notice] = {}

    def __init__(self, config: SessionConfig):
        self.config = config

    def next_phase(self, current: Phase, role: Role, text: str, user_messages: int) -> Optional[Phase]:
        """Phase to move to after a finalized utterance, or None to stay put."""
        raise NotImplementedError

    def signals(self, role: Role, text: str) -> LexicalSignals:
        return LexicalSignals()

    def should_classify(self, role: Role, phase: Phase, signals: LexicalSignals) -> bool:
        raise NotImplementedError

    def threshold(self, signals: LexicalSignals) -> float:
        raise NotImplementedError

    def give_up(self, role: Role, text: str, phase: Phase) -> Optional[Notice]:
        """Popup text when this utterance gives up the session as NO_SALE, else None."""
        return None

    def notice_for(self, outcome: SessionOutcome) -> Notice:
        return self.fallback_notices.get(outcome, ("SESSION ENDED", ""))


class SellerMode(ModeStrategy):
    """The AI is the salesperson and the trainee plays the customer."""

    mode = SalesMode.AI_IS_SELLER
    fallback_notices = {
        SessionOutcome.SALE_MADE: ("SALE MADE!", "Congratulations! You closed the deal!"),
        SessionOutcome.NO_SALE: ("NO SALE", "The customer declined. Better luck next time!"),
    }

    POSITIONING_AFTER = 3
    CLOSING_AFTER = 5
    EXIT_THRESHOLD = 60.0
    DEFAULT_THRESHOLD = 80.0

    def next_phase(self, current: Phase, role: Role, text: str, user_messages: int) -> Optional[Phase]:
        if role != Role.USER:
            return None
        if current == Phase.GREETING:
            if not find_phrase(text, [self.config.trigger_phrase]):
                return None
            # The count check still runs on the triggering utterance
            if user_messages >= self.POSITIONING_AFTER:
                return Phase.POSITIONING
            return Phase.DISCOVERY
        if current == Phase.DISCOVERY and user_messages >= self.POSITIONING_AFTER:
            return Phase.POSITIONING
        if current == Phase.POSITIONING and user_messages >= self.CLOSING_AFTER:
            return Phase.CLOSING
        return None

    def signals(self, role: Role, text: str) -> LexicalSignals:
        if role != Role.USER:
            return LexicalSignals()
        exit_phrase = find_phrase(text, self.config.exit_phrases)
        buy_phrase = find_phrase(text, self.config.buy_phrases)
        return LexicalSignals(
            exit_signal=exit_phrase is not None,
            buy_signal=buy_phrase is not None,
            exit_phrase=exit_phrase,
            buy_phrase=buy_phrase,
        )

    def should_classify(self, role: Role, phase: Phase, signals: LexicalSignals) -> bool:
        if role != Role.USER or phase in (Phase.GREETING, Phase.COMPLETED):
            return False
        return phase == Phase.CLOSING or signals.any

    def threshold(self, signals: LexicalSignals) -> float:
        return self.EXIT_THRESHOLD if signals.exit_signal else self.DEFAULT_THRESHOLD


class CustomerMode(ModeStrategy):
    """The AI plays the customer at the configured difficulty and the trainee sells."""

    mode = SalesMode.AI_IS_CUSTOMER
    fallback_notices = {
        SessionOutcome.SALE_MADE: ("YOU MADE THE SALE!", "Great job! The customer bought the pen!"),
        SessionOutcome.NO_SALE: ("NO SALE", "The customer said no. Try a different approach!"),
    }
    GIVE_UP_NOTICE: Notice = (
        "SESSION ENDED",
        "You ended the session without making a sale. Keep practicing!",
    )
    THRESHOLD = 80.0

    def next_phase(self, current: Phase, role: Role, text: str, user_messages: int) -> Optional[Phase]:
        if role == Role.USER and current == Phase.GREETING:
            return Phase.PITCHING
        return None

    def should_classify(self, role: Role, phase: Phase, signals: LexicalSignals) -> bool:
        if role != Role.ASSISTANT or phase == Phase.COMPLETED:
            return False
        return phase_rank(phase) >= phase_rank(Phase.PITCHING)

    def threshold(self, signals: LexicalSignals) -> float:
        return self.THRESHOLD

    def give_up(self, role: Role, text: str, phase: Phase) -> Optional[Notice]:
        if role != Role.USER or phase == Phase.COMPLETED:
            return None
        if find_phrase(text, self.config.give_up_phrases):
            return self.GIVE_UP_NOTICE
        return None


def strategy_for(config: SessionConfig) -> ModeStrategy:
    if config.mode == SalesMode.AI_IS_CUSTOMER:
        return CustomerMode(config)
    return SellerMode(config)
