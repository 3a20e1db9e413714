# backend/salestrainer/agents/outcome_gate.py
"""
Outcome Decision Gate.

Runs after each finalized utterance and decides whether the session ends:

1. nothing happens once the session is completed
2. the mode's give-up short circuit commits NO_SALE without a classifier call
3. lexical exit/buy signals are computed (advisory only)
4. the mode decides whether the utterance is worth a classifier call
5. the verdict commits only when it is terminal and clears the mode's
   threshold for these signals

Commits go through the lifecycle manager's compare-and-set write, so two
evaluations racing on the same session can never both report a commit.
"""
from dataclasses import dataclass
from typing import Optional

from salestrainer.agents.modes import LexicalSignals, ModeStrategy
from salestrainer.agents.states import Phase, Role, SessionOutcome, VerdictOutcome
from salestrainer.config import settings
from salestrainer.exceptions import PersistenceError
from salestrainer.services.outcome_classifier import ClassifierVerdict, OutcomeClassifier
from salestrainer.services.session_lifecycle import SessionLifecycleManager
from salestrainer.services.session_store import SessionRef, SessionStore
from salestrainer.utils.helpers import truncate_text
from salestrainer.utils.logger import logger

_VERDICT_TO_OUTCOME = {
    VerdictOutcome.CONFIRMED: SessionOutcome.SALE_MADE,
    VerdictOutcome.DENIED: SessionOutcome.NO_SALE,
}


@dataclass
class GateDecision:
    committed: bool = False
    outcome: Optional[SessionOutcome] = None
    headline: str = ""
    message: str = ""
    reason: str = ""
    verdict: Optional[ClassifierVerdict] = None
    signals: Optional[LexicalSignals] = None
    threshold: Optional[float] = None

    @property
    def classified(self) -> bool:
        return self.verdict is not None


class OutcomeDecisionGate:
    def __init__(
        self,
        ref: SessionRef,
        strategy: ModeStrategy,
        lifecycle: SessionLifecycleManager,
        classifier: OutcomeClassifier,
        store: Optional[SessionStore] = None,
    ):
        self.ref = ref
        self.strategy = strategy
        self.lifecycle = lifecycle
        self.classifier = classifier
        self.store = store or lifecycle.store
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop evaluating, e.g. once the bridge has committed or abandoned the session."""
        self._closed = True

    async def _commit(self, outcome: SessionOutcome, headline: str, message: str, reason: str) -> GateDecision:
        committed = await self.lifecycle.finalize(self.ref, outcome)
        if committed:
            self._closed = True
            logger.info(f"[GATE] {self.ref.token} committed {outcome.value} ({reason})")
        return GateDecision(
            committed=committed,
            outcome=outcome,
            headline=headline,
            message=message,
            reason=reason if committed else "already terminal",
        )

    async def evaluate(self, role: Role, text: str, phase: Phase) -> GateDecision:
        if self._closed or phase == Phase.COMPLETED:
            return GateDecision(reason="session completed")

        give_up = self.strategy.give_up(role, text, phase)
        if give_up is not None:
            headline, message = give_up
            logger.info(f"[GATE] {self.ref.token} trainee gave up: {truncate_text(text, 80)!r}")
            return await self._commit(SessionOutcome.NO_SALE, headline, message, "give-up phrase")

        signals = self.strategy.signals(role, text)
        if not self.strategy.should_classify(role, phase, signals):
            return GateDecision(reason="not eligible", signals=signals)

        try:
            messages = await self.store.recent_messages(self.ref, settings.TRANSCRIPT_WINDOW)
        except PersistenceError as e:
            logger.error(f"[GATE] {self.ref.token} could not read transcript: {e}")
            return GateDecision(reason="transcript unavailable", signals=signals)

        verdict = await self.classifier.classify(
            messages,
            self.strategy.mode,
            difficulty=self.strategy.config.difficulty,
        )
        await self.store.log_verdict(self.ref, verdict)

        threshold = self.strategy.threshold(signals)
        logger.info(
            f"[GATE] {self.ref.token} phase={phase.value} outcome={verdict.outcome.value} "
            f"confidence={verdict.confidence:.0f} threshold={threshold:.0f} "
            f"exit={signals.exit_signal} buy={signals.buy_signal}"
        )

        outcome = _VERDICT_TO_OUTCOME.get(verdict.outcome)
        if outcome is None or verdict.confidence < threshold:
            return GateDecision(
                reason="undecided" if outcome is None else "low confidence",
                verdict=verdict,
                signals=signals,
                threshold=threshold,
            )

        if self._closed:
            return GateDecision(reason="session completed", verdict=verdict, signals=signals, threshold=threshold)

        fallback_headline, fallback_message = self.strategy.notice_for(outcome)
        decision = await self._commit(
            outcome,
            verdict.popup_headline or fallback_headline,
            verdict.popup_message or fallback_message,
            f"classifier {verdict.confidence:.0f}>={threshold:.0f}",
        )
        decision.verdict = verdict
        decision.signals = signals
        decision.threshold = threshold
        return decision
