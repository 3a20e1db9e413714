# backend/salestrainer/agents/phase_machine.py
"""
Per-session phase controller.

Phases only move forward under the partial order
GREETING < {DISCOVERY, PITCHING} < POSITIONING < CLOSING < COMPLETED.
Which move happens is decided by the session's ModeStrategy.
"""
from typing import List, Optional

from salestrainer.agents.modes import ModeStrategy
from salestrainer.agents.states import Phase, Role, phase_rank
from salestrainer.utils.logger import logger


class PhaseMachine:
    def __init__(self, strategy: ModeStrategy, initial: Phase = Phase.GREETING, session_token: str = ""):
        self.strategy = strategy
        self._phase = initial
        self._token = session_token
        self.history: List[Phase] = [initial]

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def completed(self) -> bool:
        return self._phase == Phase.COMPLETED

    def transition_to(self, target: Phase) -> bool:
        """Apply a move if it goes strictly forward. Returns whether the phase changed."""
        if self.completed:
            return False
        if phase_rank(target) <= phase_rank(self._phase):
            return False
        logger.info(f"[PHASE] {self._token} {self._phase.value} -> {target.value}")
        self._phase = target
        self.history.append(target)
        return True

    def on_utterance(self, role: Role, text: str, user_messages: int) -> Optional[Phase]:
        """
        Feed one finalized utterance. Returns the new phase when it moved,
        so the caller can persist it before doing anything that depends on it.
        """
        if self.completed:
            return None
        target = self.strategy.next_phase(self._phase, role, text, user_messages)
        if target is not None and self.transition_to(target):
            return target
        return None

    def complete(self) -> bool:
        return self.transition_to(Phase.COMPLETED)
