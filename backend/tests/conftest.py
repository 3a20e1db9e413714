import asyncio
import json
import os
import tempfile

# Environment must be in place before salestrainer.config is imported
_TMP = tempfile.mkdtemp(prefix="salestrainer-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["LOG_DIR"] = os.path.join(_TMP, "logs")
os.environ["OPENAI_API_KEY"] = ""
os.environ["ENVIRONMENT"] = "test"

import pytest

from salestrainer.agents.states import Difficulty, SalesMode, VerdictOutcome
from salestrainer.database import Base, engine, init_db
from salestrainer.exceptions import UpstreamConnectionError
from salestrainer.services.config_provider import SessionConfig
from salestrainer.services.outcome_classifier import ClassifierVerdict


@pytest.fixture(autouse=True)
def fresh_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


class FakeClient:
    """Stands in for the trainee's FastAPI WebSocket."""

    def __init__(self):
        self.sent = []
        self.inbox = asyncio.Queue()
        self.closed = False
        self.close_code = None

    async def send_json(self, data):
        if self.closed:
            raise RuntimeError("client socket closed")
        self.sent.append(data)

    async def receive(self):
        item = await self.inbox.get()
        if item is None:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def close(self, code: int = 1000):
        if not self.closed:
            self.closed = True
            self.close_code = code
            # The peer answers a server close with a disconnect
            self.inbox.put_nowait(None)

    def push(self, frame):
        self.inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def push_bytes(self, data: bytes):
        self.inbox.put_nowait(data)

    def disconnect(self):
        self.inbox.put_nowait(None)

    def of_type(self, event_type: str):
        return [e for e in self.sent if e.get("type") == event_type]


class FakeUpstream:
    """Stands in for OpenAIRealtimeService; tests emit raw engine events into it."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.commands = []
        self.instructions = None
        self.voice = None
        self.connected = False
        self.configured = False
        self.closed = False
        self.queue = asyncio.Queue()
        self.idle = asyncio.Event()

    async def connect(self):
        if self.fail_connect:
            raise UpstreamConnectionError("connection refused")
        self.connected = True

    async def configure(self, instructions, voice=None):
        self.instructions = instructions
        self.voice = voice
        self.configured = True

    async def send(self, command):
        self.commands.append(command)

    async def request_response(self, instructions=None):
        self.commands.append({"type": "response.create", "instructions": instructions})

    async def events(self):
        while True:
            if self.queue.empty():
                self.idle.set()
            item = await self.queue.get()
            self.idle.clear()
            if item is None:
                self.idle.set()
                return
            if isinstance(item, Exception):
                self.idle.set()
                raise item
            yield item

    async def close(self):
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    def emit(self, event_type: str, **fields):
        self.queue.put_nowait({"type": event_type, **fields})

    def fail(self, exc: Exception):
        self.queue.put_nowait(exc)

    async def settle(self):
        """Wait until every emitted event has been fully handled by the bridge."""
        await asyncio.sleep(0)
        for _ in range(1000):
            if self.queue.empty() and self.idle.is_set():
                return
            await asyncio.sleep(0.005)
        raise AssertionError("upstream events were not consumed")


def verdict(outcome: VerdictOutcome, confidence: float, **extra) -> ClassifierVerdict:
    return ClassifierVerdict(outcome=outcome, confidence=confidence, reasoning="test", **extra)


def seller_config(**overrides) -> SessionConfig:
    return SessionConfig(mode=SalesMode.AI_IS_SELLER, **overrides)


def customer_config(difficulty: Difficulty = Difficulty.MEDIUM, **overrides) -> SessionConfig:
    return SessionConfig(mode=SalesMode.AI_IS_CUSTOMER, difficulty=difficulty, **overrides)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_upstream():
    return FakeUpstream()
