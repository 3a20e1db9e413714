from __future__ import annotations
import json
from typing import Any, AsyncGenerator, Dict, Optional
import websockets
from salestrainer.config import settings
from salestrainer.exceptions import UpstreamConnectionError
from salestrainer.utils.logger import logger


class OpenAIRealtimeService:
    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None):
        self.url = url or settings.OPENAI_REALTIME_URL
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.ws: Optional[Any] = None

    @property
    def connected(self) -> bool:
        return self.ws is not None

    async def connect(self):
        """Establish WebSocket connection to OpenAI Realtime API"""
        if not self.api_key:
            raise UpstreamConnectionError("OPENAI_API_KEY is not configured")
        try:
            self.ws = await websockets.connect(
                self.url,
                additional_headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                max_size=2**24,
            )
            logger.info("[REALTIME] Connected to OpenAI Realtime")
        except Exception as e:
            logger.error(f"[REALTIME] Connection failed: {e}")
            raise UpstreamConnectionError(str(e)) from e

    async def send(self, command: Dict[str, Any]):
        """Send one JSON command to the upstream session"""
        if not self.ws:
            raise UpstreamConnectionError("WebSocket not connected. Call connect() first.")

        try:
            await self.ws.send(json.dumps(command))
        except Exception as e:
            logger.error(f"[REALTIME] Failed to send {command.get('type')}: {e}")
            raise UpstreamConnectionError(str(e)) from e

    async def configure(self, instructions: str, voice: Optional[str] = None):
        """Send session.update: audio+text, pcm16 both ways, whisper transcription and server VAD"""
        await self.send({
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": instructions,
                "voice": voice or settings.OPENAI_REALTIME_VOICE,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {
                    "model": settings.OPENAI_TRANSCRIBE_MODEL
                },
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.5,
                    "prefix_padding_ms": 300,
                    "silence_duration_ms": 500,
                },
            }
        })
        logger.info(f"[REALTIME] Session configured voice={voice or settings.OPENAI_REALTIME_VOICE}")

    async def request_response(self, instructions: Optional[str] = None):
        """
        Ask the model to speak. With instructions, they override the session
        prompt for this one response (used for the scripted greeting).
        """
        response: Dict[str, Any] = {"modalities": ["text", "audio"]}
        if instructions:
            response["instructions"] = instructions
        await self.send({"type": "response.create", "response": response})
        if instructions:
            logger.info(f"[REALTIME] Requested response with instructions: {instructions[:100]}...")

    async def events(self) -> AsyncGenerator[dict, None]:
        """Async generator that yields events from the OpenAI Realtime API"""
        if not self.ws:
            raise UpstreamConnectionError("WebSocket not connected")

        try:
            async for msg in self.ws:
                try:
                    yield json.loads(msg)
                except json.JSONDecodeError:
                    logger.warning("[REALTIME] Dropped non-JSON upstream frame")
        except websockets.exceptions.ConnectionClosedOK:
            logger.info("[REALTIME] Connection closed")
        except websockets.exceptions.ConnectionClosedError as e:
            logger.error(f"[REALTIME] Connection dropped: {e}")
            raise UpstreamConnectionError(str(e)) from e

    async def close(self):
        """Close the WebSocket connection gracefully"""
        if self.ws:
            try:
                await self.ws.close()
                logger.info("[REALTIME] Connection closed successfully")
            except Exception as e:
                logger.warning(f"[REALTIME] Error during close: {e}")
            finally:
                self.ws = None
