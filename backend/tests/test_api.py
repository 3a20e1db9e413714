"""
REST and websocket surface tests via FastAPI's TestClient.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from salestrainer.agents.states import SalesMode
from salestrainer.api.chat import get_classifier, get_upstream_factory
from salestrainer.main import app
from salestrainer.services.outcome_classifier import OutcomeClassifier
from salestrainer.services.session_store import SessionStore

from conftest import FakeUpstream


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def new_session():
    return asyncio.run(SessionStore().create_session(SalesMode.AI_IS_SELLER, None))


class TestHealth:

    def test_healthz(self, client):
        body = client.get("/healthz").json()
        assert body["status"] == "ok"
        assert body["service"] == "sell-me-a-pen"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["database"]["status"] == "healthy"
        assert body["active_sessions"] == 0
        assert body["config"]["openai_configured"] is False

    def test_openai_unconfigured(self, client):
        assert client.get("/api/health/openai").json()["status"] == "unconfigured"


class TestConfigEndpoints:

    def test_defaults(self, client):
        body = client.get("/api/config").json()
        assert body["success"] is True
        assert body["config"]["sales_mode"] == "ai_sells"
        assert body["config"]["trigger_phrase"] == "sell me a pen"
        assert len(body["voices"]) == 8

    def test_update_and_read_back(self, client):
        response = client.post("/api/config", json={"sales_mode": "user_sells", "difficulty": "expert", "selected_voice": "Sage"})
        assert response.status_code == 200
        assert response.json()["updated"] == ["difficulty", "sales_mode", "selected_voice"]

        config = client.get("/api/config").json()["config"]
        assert config["sales_mode"] == "user_sells"
        assert config["difficulty"] == "expert"
        assert config["selected_voice"] == "sage"

    @pytest.mark.parametrize("payload", [
        {"selected_voice": "robot"},
        {"sales_mode": "both"},
        {"difficulty": "impossible"},
    ])
    def test_rejects_invalid_values(self, client, payload):
        assert client.post("/api/config", json=payload).status_code == 422


class TestSessionEndpoints:

    def test_unknown_session(self, client):
        assert client.get("/api/session/missing").status_code == 404
        assert client.post("/api/session/missing/end").status_code == 404

    def test_end_is_write_once(self, client):
        ref = new_session()

        first = client.post(f"/api/session/{ref.token}/end").json()
        assert first == {"success": True, "committed": True, "outcome": "abandoned"}

        second = client.post(f"/api/session/{ref.token}/end", json={"outcome": "sale_made"}).json()
        assert second["committed"] is False

        session = client.get(f"/api/session/{ref.token}").json()["session"]
        assert session["outcome"] == "abandoned"
        assert session["ended_at"] is not None

    def test_undetermined_is_not_an_end(self, client):
        ref = new_session()
        response = client.post(f"/api/session/{ref.token}/end", json={"outcome": "undetermined"})
        assert response.status_code == 422


class TestChatSocket:

    def test_ready_handshake(self, client):
        def factory():
            upstream = FakeUpstream()
            upstream.emit("session.created")
            return upstream

        app.dependency_overrides[get_upstream_factory] = lambda: factory
        app.dependency_overrides[get_classifier] = lambda: OutcomeClassifier(client=object())

        with client.websocket_connect("/ws/chat") as ws:
            ready = ws.receive_json()
            assert ready["type"] == "ready"
            token = ready["sessionId"]

        session = client.get(f"/api/session/{token}").json()["session"]
        assert session["mode"] == "ai_sells"
        assert session["outcome"] == "abandoned"

    def test_upstream_unavailable(self, client):
        app.dependency_overrides[get_upstream_factory] = lambda: (lambda: FakeUpstream(fail_connect=True))

        with client.websocket_connect("/ws/chat") as ws:
            assert ws.receive_json() == {"type": "error", "message": "Connection to the AI engine failed"}

    def test_binary_frame_does_not_end_session(self, client):
        upstreams = []

        def factory():
            upstream = FakeUpstream()
            upstream.emit("session.created")
            upstreams.append(upstream)
            return upstream

        app.dependency_overrides[get_upstream_factory] = lambda: factory
        app.dependency_overrides[get_classifier] = lambda: OutcomeClassifier(client=object())

        with client.websocket_connect("/ws/chat") as ws:
            token = ws.receive_json()["sessionId"]
            ws.send_bytes(b"\x00\x01garbage")
            ws.send_json({"type": "text", "text": "hello there"})
            for _ in range(200):
                if any(c["type"] == "conversation.item.create" for c in upstreams[0].commands):
                    break
                time.sleep(0.01)

            created = [c for c in upstreams[0].commands if c["type"] == "conversation.item.create"]
            assert created[0]["item"]["content"][0]["text"] == "hello there"
            assert client.get(f"/api/session/{token}").json()["session"]["outcome"] == "undetermined"

    def test_rest_end_reaches_open_socket(self, client):
        upstreams = []

        def factory():
            upstream = FakeUpstream()
            upstream.emit("session.created")
            upstreams.append(upstream)
            return upstream

        app.dependency_overrides[get_upstream_factory] = lambda: factory
        app.dependency_overrides[get_classifier] = lambda: OutcomeClassifier(client=object())

        with client.websocket_connect("/ws/chat") as ws:
            token = ws.receive_json()["sessionId"]
            body = client.post(f"/api/session/{token}/end", json={"outcome": "no_sale"}).json()
            assert body == {"success": True, "committed": True, "outcome": "no_sale"}
            assert ws.receive_json() == {
                "type": "sale_denied",
                "headline": "NO SALE",
                "message": "The customer declined. Better luck next time!",
            }

        assert upstreams[0].closed
        assert client.get(f"/api/session/{token}").json()["session"]["outcome"] == "no_sale"
