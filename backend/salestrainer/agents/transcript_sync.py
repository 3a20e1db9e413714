# backend/salestrainer/agents/transcript_sync.py
from typing import Awaitable, Callable, List


class TranscriptSynchronizer:
    """
    Holds assistant transcript fragments back while the trainee is speaking.

    A window opens on human speech start and closes when that utterance is
    finalized; fragments that arrive in between are released as one
    aggregated event, in arrival order.
    """

    def __init__(self, emit: Callable[[str], Awaitable[None]]):
        self._emit = emit
        self._buffer: List[str] = []
        self._window_open = False

    @property
    def window_open(self) -> bool:
        return self._window_open

    @property
    def pending(self) -> str:
        return "".join(self._buffer)

    def on_human_speech_started(self) -> None:
        # A new speech start supersedes anything left over from a stale window
        self._window_open = True
        self._buffer = []

    async def on_assistant_fragment(self, text: str) -> None:
        if not text:
            return
        if self._window_open:
            self._buffer.append(text)
            return
        await self._emit(text)

    async def on_human_utterance_finalized(self) -> None:
        self._window_open = False
        if not self._buffer:
            return
        aggregated = "".join(self._buffer)
        self._buffer = []
        await self._emit(aggregated)

    def reset(self) -> None:
        self._window_open = False
        self._buffer = []
