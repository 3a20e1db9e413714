# backend/salestrainer/services/session_store.py
"""
SQLAlchemy-backed session store.

Every public method is async: the blocking ORM work runs in a worker
thread with its own short-lived DB session, so one session's writes never
stall the event loop for the others.

Outcome writes are compare-and-set: they only apply while the row is still
undetermined, which is what lets a lexical short-circuit, a classifier
verdict and a disconnect race without double-committing.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from salestrainer.agents.states import (
    Difficulty,
    Phase,
    Role,
    SalesMode,
    SessionOutcome,
    PHASE_RANK,
)
from salestrainer.database import SessionLocal, safe_commit
from salestrainer.exceptions import PersistenceError
from salestrainer.models.session import Message, SalesSession, SessionAnalytics
from salestrainer.utils.helpers import new_session_token, utcnow
from salestrainer.utils.logger import logger


@dataclass(frozen=True)
class SessionRef:
    """Handle on a persisted session: internal id plus the client-facing token."""
    id: int
    token: str


class SessionStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    async def _run(self, fn: Callable[[Session], Any]) -> Any:
        def _do():
            db = self._session_factory()
            try:
                return fn(db)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(getattr(fn, "__name__", "store operation").lstrip("_"), str(e)[:200]) from e
            finally:
                db.close()

        return await asyncio.to_thread(_do)

    @staticmethod
    def _commit(db: Session, operation: str) -> None:
        ok, error = safe_commit(db, operation)
        if not ok:
            raise PersistenceError(operation, error or "")

    # -------------------------
    # Session lifecycle writes
    # -------------------------

    async def create_session(
        self,
        mode: SalesMode,
        difficulty: Optional[Difficulty],
        user_name: Optional[str] = None,
    ) -> SessionRef:
        def _create(db: Session) -> SessionRef:
            row = SalesSession(
                session_token=new_session_token(),
                mode=mode.value,
                difficulty=difficulty.value if (difficulty and mode == SalesMode.AI_IS_CUSTOMER) else None,
                user_name=user_name,
                current_phase=Phase.GREETING.value,
                outcome=SessionOutcome.UNDETERMINED.value,
                started_at=utcnow(),
            )
            row.analytics = SessionAnalytics(user_turns=0, assistant_turns=0, classifier_calls=0)
            db.add(row)
            self._commit(db, "create session")
            return SessionRef(id=row.id, token=row.session_token)

        ref = await self._run(_create)
        logger.info(f"[STORE] Created session token={ref.token} mode={mode.value}")
        return ref

    async def append_message(self, ref: SessionRef, role: Role, content: str, phase: Phase) -> None:
        def _append(db: Session) -> None:
            db.add(Message(
                session_id=ref.id,
                role=role.value,
                content=content,
                phase=phase.value,
                created_at=utcnow(),
            ))
            if role == Role.USER:
                bump = {"user_turns": SessionAnalytics.user_turns + 1}
            else:
                bump = {"assistant_turns": SessionAnalytics.assistant_turns + 1}
            db.execute(
                update(SessionAnalytics)
                .where(SessionAnalytics.session_id == ref.id)
                .values(**bump)
                .execution_options(synchronize_session=False)
            )
            self._commit(db, "append message")

        await self._run(_append)

    async def update_phase(self, ref: SessionRef, phase: Phase) -> bool:
        """Persist a forward phase move. Lower or equal ranks and completed sessions are left alone."""
        lower = [p.value for p, rank in PHASE_RANK.items() if rank < PHASE_RANK[phase]]

        def _update(db: Session) -> bool:
            result = db.execute(
                update(SalesSession)
                .where(SalesSession.id == ref.id, SalesSession.current_phase.in_(lower))
                .values(current_phase=phase.value)
                .execution_options(synchronize_session=False)
            )
            self._commit(db, "update phase")
            return result.rowcount == 1

        return await self._run(_update)

    async def commit_outcome(self, ref: SessionRef, outcome: SessionOutcome) -> bool:
        """
        Compare-and-set the terminal outcome.

        Returns True only for the single call that moved the session out of
        UNDETERMINED; every later call is a no-op returning False. Raises
        PersistenceError when the write itself failed.
        """
        if outcome == SessionOutcome.UNDETERMINED:
            raise ValueError("commit_outcome requires a terminal outcome")

        values: Dict[str, Any] = {"outcome": outcome.value, "ended_at": utcnow()}
        if outcome == SessionOutcome.SALE_MADE:
            values["sale_confirmed"] = True
        elif outcome == SessionOutcome.NO_SALE:
            values["sale_confirmed"] = False
        if outcome != SessionOutcome.ABANDONED:
            values["current_phase"] = Phase.COMPLETED.value

        def _commit_outcome(db: Session) -> bool:
            result = db.execute(
                update(SalesSession)
                .where(
                    SalesSession.id == ref.id,
                    SalesSession.outcome == SessionOutcome.UNDETERMINED.value,
                    SalesSession.ended_at.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self._commit(db, f"commit outcome {outcome.value}")
            return result.rowcount == 1

        committed = await self._run(_commit_outcome)
        if committed:
            logger.info(f"[STORE] Session {ref.token} committed outcome={outcome.value}")
        else:
            logger.info(f"[STORE] Session {ref.token} already terminal - {outcome.value} ignored")
        return committed

    async def mark_abandoned(self, ref: SessionRef) -> bool:
        return await self.commit_outcome(ref, SessionOutcome.ABANDONED)

    # -------------------------
    # Reads
    # -------------------------

    async def recent_messages(self, ref: SessionRef, limit: int) -> List[Dict[str, str]]:
        """Last ``limit`` messages, oldest first."""
        def _recent(db: Session) -> List[Dict[str, str]]:
            rows = (
                db.query(Message)
                .filter(Message.session_id == ref.id)
                .order_by(Message.id.desc())
                .limit(limit)
                .all()
            )
            return [{"role": m.role, "content": m.content} for m in reversed(rows)]

        return await self._run(_recent)

    async def count_user_messages(self, ref: SessionRef) -> int:
        def _count(db: Session) -> int:
            return (
                db.query(func.count(Message.id))
                .filter(Message.session_id == ref.id, Message.role == Role.USER.value)
                .scalar()
            ) or 0

        return await self._run(_count)

    async def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        def _get(db: Session) -> Optional[Dict[str, Any]]:
            row = db.query(SalesSession).filter(SalesSession.session_token == token).first()
            if not row:
                return None
            return {
                "id": row.id,
                "session_token": row.session_token,
                "mode": row.mode,
                "difficulty": row.difficulty,
                "current_phase": row.current_phase,
                "outcome": row.outcome,
                "sale_confirmed": row.sale_confirmed,
                "started_at": row.started_at.isoformat() if row.started_at else None,
                "ended_at": row.ended_at.isoformat() if row.ended_at else None,
                "messages": [
                    {
                        "role": m.role,
                        "content": m.content,
                        "phase": m.phase,
                        "created_at": m.created_at.isoformat() if m.created_at else None,
                    }
                    for m in row.messages
                ],
            }

        return await self._run(_get)

    async def get_ref(self, token: str) -> Optional[SessionRef]:
        def _get(db: Session) -> Optional[SessionRef]:
            row = db.query(SalesSession.id).filter(SalesSession.session_token == token).first()
            return SessionRef(id=row[0], token=token) if row else None

        return await self._run(_get)

    # -------------------------
    # Analytics (best-effort)
    # -------------------------

    async def log_verdict(self, ref: SessionRef, verdict: Any) -> None:
        def _log(db: Session) -> None:
            db.execute(
                update(SessionAnalytics)
                .where(SessionAnalytics.session_id == ref.id)
                .values(
                    classifier_calls=SessionAnalytics.classifier_calls + 1,
                    last_verdict=verdict.outcome.value,
                    last_confidence=verdict.confidence,
                    last_reasoning=(verdict.reasoning or "")[:2000],
                    last_key_phrase=verdict.key_phrase,
                )
                .execution_options(synchronize_session=False)
            )
            self._commit(db, "log verdict")

        try:
            await self._run(_log)
        except PersistenceError as e:
            logger.warning(f"[STORE] Verdict analytics not recorded for {ref.token}: {e}")
