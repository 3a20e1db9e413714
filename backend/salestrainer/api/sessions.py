# backend/salestrainer/api/sessions.py
"""
Trainee-facing REST endpoints: the mode/difficulty/voice picker and
session inspection / manual end.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session
from typing import Optional

from salestrainer.agents.states import Difficulty, SalesMode, SessionOutcome
from salestrainer.database import get_db, safe_commit
from salestrainer.models.training_config import AppConfig
from salestrainer.services.config_provider import ConfigProvider
from salestrainer.services.session_lifecycle import SessionLifecycleManager
from salestrainer.services.session_store import SessionStore
from salestrainer.utils.logger import logger

router = APIRouter(prefix="/api", tags=["sessions"])

VOICES = [
    {"id": "ash", "name": "Ash", "gender": "male", "desc": "Confident & authoritative"},
    {"id": "echo", "name": "Echo", "gender": "male", "desc": "Calm & reassuring"},
    {"id": "verse", "name": "Verse", "gender": "male", "desc": "Dynamic & engaging"},
    {"id": "alloy", "name": "Alloy", "gender": "female", "desc": "Neutral & balanced"},
    {"id": "ballad", "name": "Ballad", "gender": "female", "desc": "Warm & expressive"},
    {"id": "coral", "name": "Coral", "gender": "female", "desc": "Friendly & upbeat"},
    {"id": "sage", "name": "Sage", "gender": "female", "desc": "Wise & professional"},
    {"id": "shimmer", "name": "Shimmer", "gender": "female", "desc": "Bright & energetic"},
]
VOICE_IDS = {v["id"] for v in VOICES}


class UpdateConfigRequest(BaseModel):
    sales_mode: Optional[SalesMode] = None
    difficulty: Optional[Difficulty] = None
    selected_voice: Optional[str] = None

    @field_validator("selected_voice")
    @classmethod
    def _known_voice(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().lower()
        if value not in VOICE_IDS:
            raise ValueError(f"unknown voice '{value}'")
        return value


class EndSessionRequest(BaseModel):
    outcome: SessionOutcome = SessionOutcome.ABANDONED

    @field_validator("outcome")
    @classmethod
    def _terminal_only(cls, value: SessionOutcome) -> SessionOutcome:
        if value == SessionOutcome.UNDETERMINED:
            raise ValueError("outcome must be terminal")
        return value


def get_lifecycle() -> SessionLifecycleManager:
    return SessionLifecycleManager(SessionStore())


@router.get("/config")
async def get_config():
    config = await ConfigProvider().load_session_config()
    return {
        "success": True,
        "config": {
            "sales_mode": config.mode.value,
            "difficulty": config.difficulty.value,
            "selected_voice": config.voice,
            "trigger_phrase": config.trigger_phrase,
            "greeting": config.greeting,
        },
        "voices": VOICES,
    }


@router.post("/config")
async def update_config(request: UpdateConfigRequest, db: Session = Depends(get_db)):
    """Update the active mode, difficulty and voice. Takes effect for the next connection."""
    changes = request.model_dump(exclude_none=True)
    if not changes:
        return {"success": True, "updated": []}

    row = db.query(AppConfig).order_by(AppConfig.id).first()
    if row is None:
        row = AppConfig()
        db.add(row)

    for field, value in changes.items():
        setattr(row, field, value.value if hasattr(value, "value") else value)

    ok, error = safe_commit(db, "update app config")
    if not ok:
        logger.error(f"[CONFIG] Update failed: {error}")
        raise HTTPException(status_code=500, detail="Failed to update configuration")

    logger.info(f"[CONFIG] Updated {sorted(changes)}")
    return {"success": True, "updated": sorted(changes)}


@router.get("/session/{token}")
async def get_session(token: str, lifecycle: SessionLifecycleManager = Depends(get_lifecycle)):
    session = await lifecycle.store.get_session(token)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "session": session}


@router.post("/session/{token}/end")
async def end_session(
    token: str,
    request: Request,
    body: Optional[EndSessionRequest] = None,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
):
    """Commit a terminal outcome by hand. A live conversation for the token is stopped too."""
    outcome = body.outcome if body else SessionOutcome.ABANDONED
    committed = await lifecycle.end_by_token(token, outcome)
    if committed is None:
        raise HTTPException(status_code=404, detail="Session not found")

    if committed:
        bridges = getattr(request.app.state, "bridges", None)
        bridge = bridges.find(token) if bridges is not None else None
        if bridge is not None:
            await bridge.on_external_commit(outcome)
    return {"success": True, "committed": committed, "outcome": outcome.value}
