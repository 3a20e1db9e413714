# backend/salestrainer/realtime/protocol.py
"""
Translation tables between the two event vocabularies.

Upstream (OpenAI Realtime) events are reduced to a closed UpstreamKind so
the bridge never branches on raw provider strings. Client frames are
validated with pydantic and expanded into upstream commands through
CLIENT_TO_UPSTREAM. Outbound client events are built by the small
constructors at the bottom.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError, field_validator

from salestrainer.exceptions import MalformedClientEvent


# =============================================================================
# UPSTREAM -> BRIDGE
# =============================================================================

class UpstreamKind(str, Enum):
    SESSION_READY = "session_ready"
    AUDIO_DELTA = "audio_delta"
    ASSISTANT_DELTA = "assistant_delta"
    ASSISTANT_FINAL = "assistant_final"
    USER_FINAL = "user_final"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    RESPONSE_DONE = "response_done"
    ERROR = "error"
    IGNORED = "ignored"


UPSTREAM_EVENT_KINDS: Dict[str, UpstreamKind] = {
    "session.created": UpstreamKind.SESSION_READY,
    "session.updated": UpstreamKind.SESSION_READY,
    "response.audio.delta": UpstreamKind.AUDIO_DELTA,
    "response.output_audio.delta": UpstreamKind.AUDIO_DELTA,
    "response.audio_transcript.delta": UpstreamKind.ASSISTANT_DELTA,
    "response.output_audio_transcript.delta": UpstreamKind.ASSISTANT_DELTA,
    "response.audio_transcript.done": UpstreamKind.ASSISTANT_FINAL,
    "response.output_audio_transcript.done": UpstreamKind.ASSISTANT_FINAL,
    "conversation.item.input_audio_transcription.completed": UpstreamKind.USER_FINAL,
    "input_audio_buffer.speech_started": UpstreamKind.SPEECH_STARTED,
    "input_audio_buffer.speech_stopped": UpstreamKind.SPEECH_STOPPED,
    "response.done": UpstreamKind.RESPONSE_DONE,
    "error": UpstreamKind.ERROR,
}


@dataclass(frozen=True)
class UpstreamEvent:
    kind: UpstreamKind
    type: str
    text: str = ""
    audio: str = ""
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def decode_upstream(event: Dict[str, Any]) -> UpstreamEvent:
    et = (event.get("type") or "").strip()
    kind = UPSTREAM_EVENT_KINDS.get(et, UpstreamKind.IGNORED)

    if kind == UpstreamKind.AUDIO_DELTA:
        return UpstreamEvent(kind, et, audio=event.get("delta") or event.get("audio") or "", raw=event)
    if kind == UpstreamKind.ASSISTANT_DELTA:
        return UpstreamEvent(kind, et, text=event.get("delta") or "", raw=event)
    if kind in (UpstreamKind.ASSISTANT_FINAL, UpstreamKind.USER_FINAL):
        transcript = (
            event.get("transcript")
            or event.get("text")
            or (event.get("item", {}) or {}).get("transcript")
            or ""
        )
        return UpstreamEvent(kind, et, text=transcript.strip(), raw=event)
    if kind == UpstreamKind.ERROR:
        err = event.get("error")
        detail = err.get("message") if isinstance(err, dict) else err
        return UpstreamEvent(kind, et, error=str(detail or "Unknown error"), raw=event)
    return UpstreamEvent(kind, et, raw=event)


# =============================================================================
# CLIENT -> UPSTREAM
# =============================================================================

class ClientAudio(BaseModel):
    type: Literal["audio"]
    # base64 pcm16 chunk; older clients send it as "chunk"
    audio: str = Field(min_length=1, validation_alias=AliasChoices("audio", "chunk"))


class ClientText(BaseModel):
    type: Literal["text"]
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("text must not be blank")
        return value


ClientEvent = Annotated[Union[ClientAudio, ClientText], Field(discriminator="type")]
_client_event_adapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: Union[str, bytes]) -> Union[ClientAudio, ClientText]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedClientEvent(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedClientEvent("frame is not a JSON object")
    try:
        return _client_event_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedClientEvent(f"invalid {data.get('type')!r} frame: {e.error_count()} error(s)") from e


def _audio_commands(event: ClientAudio) -> List[Dict[str, Any]]:
    return [{"type": "input_audio_buffer.append", "audio": event.audio}]


def _text_commands(event: ClientText) -> List[Dict[str, Any]]:
    return [
        {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": event.text}],
            },
        },
        {"type": "response.create"},
    ]


CLIENT_TO_UPSTREAM: Dict[str, Callable[[Any], List[Dict[str, Any]]]] = {
    "audio": _audio_commands,
    "text": _text_commands,
}


def to_upstream(event: Union[ClientAudio, ClientText]) -> List[Dict[str, Any]]:
    return CLIENT_TO_UPSTREAM[event.type](event)


# =============================================================================
# BRIDGE -> CLIENT
# =============================================================================

def ready(session_id: str) -> Dict[str, Any]:
    return {"type": "ready", "sessionId": session_id}


def audio(chunk: str) -> Dict[str, Any]:
    return {"type": "audio", "audio": chunk}


def assistant_transcript(text: str) -> Dict[str, Any]:
    return {"type": "assistant_transcript", "text": text}


def user_transcript(text: str) -> Dict[str, Any]:
    return {"type": "user_transcript", "text": text}


def sale_made(headline: str, message: str) -> Dict[str, Any]:
    return {"type": "sale_made", "headline": headline, "message": message}


def sale_denied(headline: str, message: str) -> Dict[str, Any]:
    return {"type": "sale_denied", "headline": headline, "message": message}


def error(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


CLIENT_ERROR_UPSTREAM_CONNECT = "Connection to the AI engine failed"
CLIENT_ERROR_UPSTREAM_REPORTED = "The AI engine reported an error"
CLIENT_ERROR_INIT = "Failed to initialize session"
