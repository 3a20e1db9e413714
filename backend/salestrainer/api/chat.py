# backend/salestrainer/api/chat.py
from typing import Any, Callable

from fastapi import APIRouter, Depends, WebSocket

from salestrainer.realtime.bridge import ConnectionBridge
from salestrainer.services.openai_realtime_service import OpenAIRealtimeService
from salestrainer.services.outcome_classifier import OutcomeClassifier

router = APIRouter(tags=["chat"])


def get_upstream_factory() -> Callable[[], Any]:
    return OpenAIRealtimeService


def get_classifier() -> OutcomeClassifier:
    return OutcomeClassifier()


@router.websocket("/ws/chat")
async def chat_ws(
    websocket: WebSocket,
    upstream_factory: Callable[[], Any] = Depends(get_upstream_factory),
    classifier: OutcomeClassifier = Depends(get_classifier),
):
    """One training conversation: the trainee's socket bridged to an OpenAI Realtime session."""
    await websocket.accept()
    bridge = ConnectionBridge(
        websocket,
        classifier=classifier,
        upstream_factory=upstream_factory,
        registry=websocket.app.state.bridges,
    )
    await bridge.run()
