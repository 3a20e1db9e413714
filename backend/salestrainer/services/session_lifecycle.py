# backend/salestrainer/services/session_lifecycle.py
"""
Session lifecycle: creation, graceful finalization and abandonment.

finalize() and abandon() share the store's compare-and-set commit, so
whichever path reaches the database first decides the outcome and every
later attempt is a logged no-op.
"""
from typing import Optional

from salestrainer.agents.states import SessionOutcome
from salestrainer.exceptions import PersistenceError
from salestrainer.services.config_provider import SessionConfig
from salestrainer.services.session_store import SessionRef, SessionStore
from salestrainer.utils.logger import logger


class SessionLifecycleManager:
    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store or SessionStore()

    async def start(self, config: SessionConfig, user_name: Optional[str] = None) -> SessionRef:
        """Create the session row. PersistenceError propagates: a session that was never stored cannot run."""
        return await self.store.create_session(config.mode, config.difficulty, user_name=user_name)

    async def finalize(self, ref: SessionRef, outcome: SessionOutcome) -> bool:
        """
        Commit a terminal outcome. True only when this call made the write;
        a failed write counts as not committed.
        """
        try:
            return await self.store.commit_outcome(ref, outcome)
        except PersistenceError as e:
            logger.error(f"[STORE] Session {ref.token} outcome {outcome.value} not committed: {e}")
            return False

    async def abandon(self, ref: SessionRef) -> bool:
        try:
            committed = await self.store.mark_abandoned(ref)
        except PersistenceError as e:
            logger.error(f"[STORE] Session {ref.token} could not be marked abandoned: {e}")
            return False
        if committed:
            logger.info(f"[STORE] Session {ref.token} marked abandoned")
        return committed

    async def end_by_token(self, token: str, outcome: SessionOutcome = SessionOutcome.ABANDONED) -> Optional[bool]:
        """REST entry point. None when the token is unknown."""
        ref = await self.store.get_ref(token)
        if ref is None:
            return None
        return await self.finalize(ref, outcome)
