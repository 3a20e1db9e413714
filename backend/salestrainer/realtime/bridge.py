# backend/salestrainer/realtime/bridge.py
"""
Connection Bridge: one trainee websocket paired with one OpenAI Realtime
session for the lifetime of a training conversation.

Two relay loops run side by side (client -> upstream, upstream -> client)
and the first one to finish ends the pairing. Upstream events are handled
strictly in arrival order, so messages and phase moves are persisted in
that order too. Outcome decisions run as background tasks per finalized
utterance, which keeps audio flowing while the classifier thinks; the
gate's compare-and-set commit makes overlapping decisions safe.

All per-session state lives on the bridge instance.
"""
import asyncio
from typing import Any, Callable, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from salestrainer.agents.modes import strategy_for
from salestrainer.agents.outcome_gate import GateDecision, OutcomeDecisionGate
from salestrainer.agents.phase_machine import PhaseMachine
from salestrainer.agents.prompts import build_instructions, greeting_for, greeting_instructions
from salestrainer.agents.states import Phase, Role, SessionOutcome
from salestrainer.agents.transcript_sync import TranscriptSynchronizer
from salestrainer.exceptions import MalformedClientEvent, PersistenceError, UpstreamConnectionError
from salestrainer.realtime import protocol
from salestrainer.realtime.protocol import UpstreamEvent, UpstreamKind
from salestrainer.services.config_provider import ConfigProvider, SessionConfig
from salestrainer.services.openai_realtime_service import OpenAIRealtimeService
from salestrainer.services.outcome_classifier import OutcomeClassifier
from salestrainer.services.session_lifecycle import SessionLifecycleManager
from salestrainer.services.session_store import SessionRef
from salestrainer.utils.helpers import truncate_text
from salestrainer.utils.logger import logger


class ConnectionBridge:
    def __init__(
        self,
        client: Any,
        *,
        config_provider: Optional[ConfigProvider] = None,
        lifecycle: Optional[SessionLifecycleManager] = None,
        classifier: Optional[OutcomeClassifier] = None,
        upstream_factory: Optional[Callable[[], Any]] = None,
        registry: Optional["BridgeRegistry"] = None,
    ):
        self.client = client
        self._config_provider = config_provider or ConfigProvider()
        self.lifecycle = lifecycle or SessionLifecycleManager()
        self.store = self.lifecycle.store
        self.classifier = classifier or OutcomeClassifier()
        self._upstream_factory = upstream_factory or OpenAIRealtimeService
        self._registry = registry

        self.config: Optional[SessionConfig] = None
        self.ref: Optional[SessionRef] = None
        self.upstream: Optional[Any] = None
        self.phases: Optional[PhaseMachine] = None
        self.gate: Optional[OutcomeDecisionGate] = None
        self.sync = TranscriptSynchronizer(self._emit_assistant_text)

        self._ready_sent = False
        self._greeted = False
        self._greeting_pending = False
        self._terminal = False
        self._client_closed = False
        self._gate_tasks: Set[asyncio.Task] = set()

    @property
    def session_token(self) -> Optional[str]:
        return self.ref.token if self.ref else None

    @property
    def terminal(self) -> bool:
        return self._terminal

    @property
    def phase(self) -> Optional[Phase]:
        return self.phases.phase if self.phases else None

    # -------------------------
    # Lifecycle
    # -------------------------

    async def run(self) -> None:
        if self._registry is not None:
            self._registry.add(self)
        try:
            if not await self._open_session():
                return
            if not await self._open_upstream():
                return
            await self._relay()
        finally:
            await self._teardown()
            if self._registry is not None:
                self._registry.discard(self)

    async def _open_session(self) -> bool:
        try:
            self.config = await self._config_provider.load_session_config()
            self.ref = await self.lifecycle.start(self.config)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(f"[BRIDGE] Session init failed: {e}")
            await self._send(protocol.error(protocol.CLIENT_ERROR_INIT))
            return False

        strategy = strategy_for(self.config)
        self.phases = PhaseMachine(strategy, session_token=self.ref.token)
        self.gate = OutcomeDecisionGate(self.ref, strategy, self.lifecycle, self.classifier, self.store)
        logger.info(f"[BRIDGE] Session {self.ref.token} opened mode={self.config.mode.value}")
        return True

    async def _open_upstream(self) -> bool:
        self.upstream = self._upstream_factory()
        try:
            await self.upstream.connect()
            await self.upstream.configure(build_instructions(self.config), self.config.voice)
        except UpstreamConnectionError as e:
            logger.error(f"[BRIDGE] {self.session_token} upstream unavailable: {e}")
            await self._send(protocol.error(protocol.CLIENT_ERROR_UPSTREAM_CONNECT))
            return False
        return True

    async def _relay(self) -> None:
        client_task = asyncio.create_task(self._client_to_upstream())
        upstream_task = asyncio.create_task(self._upstream_to_client())
        done, pending = await asyncio.wait({client_task, upstream_task}, return_when=asyncio.FIRST_COMPLETED)

        if upstream_task in done and self._terminal and client_task in pending:
            # Outcome committed and upstream closed: hold the client until it leaves
            await asyncio.wait({client_task})
            done, pending = {client_task, upstream_task}, set()

        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for t in done:
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"[BRIDGE] {self.session_token} relay loop failed: {t.exception()!r}")

    async def _teardown(self) -> None:
        if self.ref is not None and not self._terminal:
            await self.lifecycle.abandon(self.ref)
        # In-flight decisions may finish, but they can no longer commit
        if self.gate is not None:
            self.gate.close()

        if self.upstream is not None:
            await self.upstream.close()

        if not self._client_closed:
            self._client_closed = True
            try:
                await self.client.close()
            except Exception as e:
                logger.debug(f"[BRIDGE] Client already closed: {e}")
        logger.info(f"[BRIDGE] Session {self.session_token} torn down")

    async def shutdown(self) -> None:
        """Server shutdown: closing both sockets ends both relay loops."""
        if self.upstream is not None:
            await self.upstream.close()
        if not self._client_closed:
            self._client_closed = True
            try:
                await self.client.close(code=1001)
            except Exception as e:
                logger.debug(f"[BRIDGE] Client close on shutdown failed: {e}")

    async def drain(self) -> None:
        """Wait for every outstanding outcome decision."""
        while self._gate_tasks:
            await asyncio.gather(*list(self._gate_tasks), return_exceptions=True)

    # -------------------------
    # Outbound
    # -------------------------

    async def _send(self, event: Dict[str, Any], force: bool = False) -> bool:
        if self._client_closed or (self._terminal and not force):
            return False
        try:
            await self.client.send_json(event)
            return True
        except Exception as e:
            logger.warning(f"[BRIDGE] {self.session_token} client send failed ({event.get('type')}): {e}")
            self._client_closed = True
            return False

    async def _emit_assistant_text(self, text: str) -> None:
        await self._send(protocol.assistant_transcript(text))

    # -------------------------
    # Client -> upstream
    # -------------------------

    async def _client_to_upstream(self) -> None:
        assert self.upstream is not None

        while True:
            message = await self.client.receive()
            if message.get("type") == "websocket.disconnect":
                logger.info(f"[BRIDGE] Client disconnected session={self.session_token}")
                self._client_closed = True
                return

            if self._terminal:
                continue

            try:
                event = protocol.parse_client_event(self._frame_text(message))
            except MalformedClientEvent as e:
                logger.warning(f"[BRIDGE] {self.session_token} ignored client frame: {e}")
                continue

            try:
                for command in protocol.to_upstream(event):
                    await self.upstream.send(command)
            except UpstreamConnectionError as e:
                logger.error(f"[BRIDGE] {self.session_token} upstream send failed: {e}")
                await self._send(protocol.error(protocol.CLIENT_ERROR_UPSTREAM_CONNECT))
                return

    @staticmethod
    def _frame_text(message: Dict[str, Any]) -> str:
        """Text payload of one ASGI receive message. Binary frames are not part of the protocol."""
        text = message.get("text")
        if text is None:
            if message.get("bytes") is not None:
                raise MalformedClientEvent(f"binary frame ({len(message['bytes'])} bytes)")
            raise MalformedClientEvent(f"unexpected message type {message.get('type')!r}")
        return text

    # -------------------------
    # Upstream -> client
    # -------------------------

    async def _upstream_to_client(self) -> None:
        assert self.upstream is not None

        try:
            async for raw_event in self.upstream.events():
                await self._handle_upstream(protocol.decode_upstream(raw_event))
        except UpstreamConnectionError as e:
            if not self._terminal:
                logger.error(f"[BRIDGE] {self.session_token} upstream failed: {e}")
                await self._send(protocol.error(protocol.CLIENT_ERROR_UPSTREAM_CONNECT))
            return
        logger.info(f"[BRIDGE] Upstream closed session={self.session_token}")

    async def _handle_upstream(self, event: UpstreamEvent) -> None:
        if self._terminal:
            return

        kind = event.kind
        if kind == UpstreamKind.SESSION_READY:
            await self._on_session_ready()
        elif kind == UpstreamKind.AUDIO_DELTA:
            if event.audio:
                await self._send(protocol.audio(event.audio))
        elif kind == UpstreamKind.ASSISTANT_DELTA:
            await self.sync.on_assistant_fragment(event.text)
        elif kind == UpstreamKind.SPEECH_STARTED:
            self.sync.on_human_speech_started()
        elif kind == UpstreamKind.ASSISTANT_FINAL:
            await self._on_assistant_final(event.text)
        elif kind == UpstreamKind.USER_FINAL:
            await self._on_user_final(event.text)
        elif kind == UpstreamKind.ERROR:
            logger.error(f"[REALTIME] {self.session_token} engine error: {event.error}")
            await self._send(protocol.error(protocol.CLIENT_ERROR_UPSTREAM_REPORTED))
        elif kind in (UpstreamKind.SPEECH_STOPPED, UpstreamKind.RESPONSE_DONE):
            logger.debug(f"[REALTIME] {self.session_token} {event.type}")

    async def _on_session_ready(self) -> None:
        if not self._ready_sent:
            self._ready_sent = True
            await self._send(protocol.ready(self.ref.token))

        if self._greeted:
            return
        self._greeted = True

        greeting = greeting_for(self.config)
        self._greeting_pending = await self._append(Role.ASSISTANT, greeting)
        try:
            await self.upstream.request_response(greeting_instructions(greeting))
        except UpstreamConnectionError as e:
            logger.error(f"[BRIDGE] {self.session_token} greeting request failed: {e}")
            await self._send(protocol.error(protocol.CLIENT_ERROR_UPSTREAM_CONNECT))

    async def _on_assistant_final(self, text: str) -> None:
        if not text:
            return
        if self._greeting_pending and self.phases.phase == Phase.GREETING:
            # Spoken greeting; already stored when it was requested
            self._greeting_pending = False
            return
        self._greeting_pending = False

        await self._append(Role.ASSISTANT, text)
        await self._advance(Role.ASSISTANT, text)
        self._schedule_decision(Role.ASSISTANT, text)

    async def _on_user_final(self, text: str) -> None:
        if text:
            await self._send(protocol.user_transcript(text))
            await self._append(Role.USER, text)
            await self._advance(Role.USER, text)
            self._schedule_decision(Role.USER, text)
        await self.sync.on_human_utterance_finalized()

    # -------------------------
    # Persistence + phase
    # -------------------------

    async def _append(self, role: Role, text: str) -> bool:
        try:
            await self.store.append_message(self.ref, role, text, self.phases.phase)
            return True
        except PersistenceError as e:
            logger.error(f"[BRIDGE] {self.session_token} message not stored: {e}")
            return False

    async def _advance(self, role: Role, text: str) -> None:
        user_messages = 0
        if role == Role.USER:
            try:
                user_messages = await self.store.count_user_messages(self.ref)
            except PersistenceError as e:
                logger.error(f"[BRIDGE] {self.session_token} could not count messages: {e}")

        moved = self.phases.on_utterance(role, text, user_messages)
        if moved is None:
            return
        try:
            await self.store.update_phase(self.ref, moved)
        except PersistenceError as e:
            logger.error(f"[BRIDGE] {self.session_token} phase {moved.value} not stored: {e}")

    # -------------------------
    # Outcome decisions
    # -------------------------

    def _schedule_decision(self, role: Role, text: str) -> None:
        if self.gate is None or self.gate.closed:
            return
        task = asyncio.create_task(self._decide(role, text, self.phases.phase))
        self._gate_tasks.add(task)
        task.add_done_callback(self._gate_tasks.discard)

    async def _decide(self, role: Role, text: str, phase: Phase) -> None:
        try:
            decision = await self.gate.evaluate(role, text, phase)
        except Exception as e:
            logger.exception(f"[GATE] {self.session_token} evaluation failed for {truncate_text(text, 60)!r}: {e}")
            return
        if decision.committed:
            await self._on_committed(decision)

    async def _on_committed(self, decision: GateDecision) -> None:
        self._enter_terminal(decision.outcome)

        if decision.outcome == SessionOutcome.SALE_MADE:
            event = protocol.sale_made(decision.headline, decision.message)
        else:
            event = protocol.sale_denied(decision.headline, decision.message)
        await self._send(event, force=True)

        # Conversation is over; the trainee's socket stays open for the popup
        if self.upstream is not None:
            await self.upstream.close()

    async def on_external_commit(self, outcome: SessionOutcome) -> None:
        """
        The outcome was committed outside this bridge (REST end). Stop the
        conversation the same way a gate commit does; an abandoned session
        also drops the trainee socket since there is no popup to show.
        """
        if self._terminal:
            return
        logger.info(f"[BRIDGE] Session {self.session_token} ended externally outcome={outcome.value}")
        self._enter_terminal(outcome)

        if outcome == SessionOutcome.ABANDONED:
            if not self._client_closed:
                self._client_closed = True
                try:
                    await self.client.close()
                except Exception as e:
                    logger.debug(f"[BRIDGE] Client already closed: {e}")
        else:
            headline, message = self.phases.strategy.notice_for(outcome)
            if outcome == SessionOutcome.SALE_MADE:
                event = protocol.sale_made(headline, message)
            else:
                event = protocol.sale_denied(headline, message)
            await self._send(event, force=True)

        if self.upstream is not None:
            await self.upstream.close()

    def _enter_terminal(self, outcome: SessionOutcome) -> None:
        self._terminal = True
        # Decisions still in flight can no longer commit
        if self.gate is not None:
            self.gate.close()
        if self.phases is not None and outcome != SessionOutcome.ABANDONED:
            self.phases.complete()
        self.sync.reset()


class BridgeRegistry:
    """Live bridges of this process, for health reporting and shutdown."""

    def __init__(self):
        self._bridges: Set[ConnectionBridge] = set()

    def add(self, bridge: ConnectionBridge) -> None:
        self._bridges.add(bridge)

    def discard(self, bridge: ConnectionBridge) -> None:
        self._bridges.discard(bridge)

    def find(self, token: str) -> Optional[ConnectionBridge]:
        for bridge in self._bridges:
            if bridge.session_token == token:
                return bridge
        return None

    def __len__(self) -> int:
        return len(self._bridges)

    async def close_all(self) -> int:
        bridges = list(self._bridges)
        for bridge in bridges:
            try:
                await bridge.shutdown()
            except Exception as e:
                logger.error(f"[BRIDGE] Shutdown of {bridge.session_token} failed: {e}")
        return len(bridges)
