# backend/salestrainer/services/config_provider.py
"""
Loads the per-connection training configuration from the config tables.

The returned SessionConfig is frozen: mode and difficulty are fixed for the
lifetime of a session even if an admin edits the tables mid-conversation.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from salestrainer.agents.states import Difficulty, SalesMode, coerce_enum
from salestrainer.config import settings
from salestrainer.database import SessionLocal
from salestrainer.models.training_config import (
    AIPromptConfig,
    AppConfig,
    ClosingStrategy,
    DiscoveryQuestion,
    ObjectionHandler,
    PenProduct,
    PositioningAngle,
)
from salestrainer.utils.logger import logger

DEFAULT_TRIGGER_PHRASE = "sell me a pen"
DEFAULT_GREETING = (
    "Welcome to AI Sales, Sell Me a Pen Training App! "
    "When you're ready, just say \"Sell me a pen\" to begin your training session."
)

DEFAULT_EXIT_PHRASES: Tuple[str, ...] = (
    "bye", "goodbye", "i'm done", "end session", "not interested",
    "no thanks", "i don't want", "forget it", "never mind", "i'll pass",
)
DEFAULT_BUY_PHRASES: Tuple[str, ...] = (
    "i'll take it", "i'll buy", "sold", "deal", "yes",
    "sign me up", "i want it", "i'm in",
)
DEFAULT_GIVE_UP_PHRASES: Tuple[str, ...] = (
    "bye", "goodbye", "i give up", "i'm done", "forget it",
    "never mind", "i quit", "end session",
)


@dataclass(frozen=True)
class SessionConfig:
    mode: SalesMode = SalesMode.AI_IS_SELLER
    difficulty: Difficulty = Difficulty.MEDIUM
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE
    greeting: str = DEFAULT_GREETING
    voice: str = "alloy"
    exit_phrases: Tuple[str, ...] = DEFAULT_EXIT_PHRASES
    buy_phrases: Tuple[str, ...] = DEFAULT_BUY_PHRASES
    give_up_phrases: Tuple[str, ...] = DEFAULT_GIVE_UP_PHRASES
    # Product and script rows, passed through untouched to the prompt builder
    persona: Dict[str, Any] = field(default_factory=dict)


def _phrase_list(raw: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if raw is None:
        return default
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[CONFIG] Phrase list is not valid JSON - using defaults")
            return default
    if not isinstance(raw, list):
        return default
    phrases = tuple(str(p).strip().lower() for p in raw if str(p or "").strip())
    return phrases or default


def _json_list(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    return list(raw) if isinstance(raw, list) else []


def _load(db: Session) -> SessionConfig:
    config = db.query(AppConfig).order_by(AppConfig.id).first()
    product = db.query(PenProduct).order_by(PenProduct.id).first()
    prompt = db.query(AIPromptConfig).filter(AIPromptConfig.enabled.is_(True)).order_by(AIPromptConfig.id).first()
    questions = (
        db.query(DiscoveryQuestion)
        .filter(DiscoveryQuestion.enabled.is_(True))
        .order_by(DiscoveryQuestion.sort_order, DiscoveryQuestion.id)
        .all()
    )
    angles = db.query(PositioningAngle).filter(PositioningAngle.enabled.is_(True)).all()
    closings = db.query(ClosingStrategy).filter(ClosingStrategy.enabled.is_(True)).all()
    objections = db.query(ObjectionHandler).filter(ObjectionHandler.enabled.is_(True)).all()

    persona: Dict[str, Any] = {
        "system_prompt": prompt.system_prompt if prompt else None,
        "product": {
            "name": product.name,
            "tagline": product.tagline,
            "base_price": product.base_price,
            "premium_price": product.premium_price,
            "features": _json_list(product.features),
            "benefits": _json_list(product.benefits),
            "variants": _json_list(product.variants),
            "scarcity_message": product.scarcity_message,
        } if product else None,
        "discovery_questions": [{"question": q.question, "purpose": q.purpose} for q in questions],
        "positioning_angles": [
            {"user_need": a.user_need, "headline": a.headline, "emotional_hook": a.emotional_hook}
            for a in angles
        ],
        "closing_strategies": [{"name": c.name, "script": c.script, "use_when": c.use_when} for c in closings],
        "objection_handlers": [{"objection": o.objection, "response": o.response} for o in objections],
    }

    if not config:
        return SessionConfig(voice=settings.OPENAI_REALTIME_VOICE, persona=persona)

    mode = coerce_enum(SalesMode, config.sales_mode, None)
    if mode is None:
        logger.warning(f"[CONFIG] Unknown sales_mode={config.sales_mode!r} - using ai_sells")
        mode = SalesMode.AI_IS_SELLER
    difficulty = coerce_enum(Difficulty, config.difficulty, None)
    if difficulty is None:
        logger.warning(f"[CONFIG] Unknown difficulty={config.difficulty!r} - using medium")
        difficulty = Difficulty.MEDIUM

    return SessionConfig(
        mode=mode,
        difficulty=difficulty,
        trigger_phrase=(config.trigger_phrase or DEFAULT_TRIGGER_PHRASE).strip().lower(),
        greeting=(config.greeting or DEFAULT_GREETING).strip(),
        voice=(config.selected_voice or settings.OPENAI_REALTIME_VOICE).strip(),
        exit_phrases=_phrase_list(config.exit_phrases, DEFAULT_EXIT_PHRASES),
        buy_phrases=_phrase_list(config.buy_phrases, DEFAULT_BUY_PHRASES),
        give_up_phrases=_phrase_list(config.give_up_phrases, DEFAULT_GIVE_UP_PHRASES),
        persona=persona,
    )


class ConfigProvider:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    async def load_session_config(self) -> SessionConfig:
        def _do() -> SessionConfig:
            db = self._session_factory()
            try:
                return _load(db)
            finally:
                db.close()

        config = await asyncio.to_thread(_do)
        logger.info(f"[CONFIG] Session mode={config.mode.value} difficulty={config.difficulty.value}")
        return config
