"""End-to-end tests for the FastAPI app: WebSocket events and HTTP routes."""

import pytest
from fastapi.testclient import TestClient

from main import create_app
from services.realtime.errors import ErrorCode
from utils.app_config import AppConfig


@pytest.fixture
def config():
    return AppConfig(invite_base_url="https://stories.example")


@pytest.fixture
def client(config, generator):
    app = create_app(config, generator=generator)
    with TestClient(app) as test_client:
        yield test_client


def send(ws, event, data=None):
    ws.send_json({"event": event, "data": data or {}})
    return ws.receive_json()


def create(ws, title="Test", user="alice"):
    reply = send(ws, "session:create", {"title": title, "userName": user})
    assert reply["event"] == "session:created"
    return reply["data"]["id"]


class TestHealth:
    """Health endpoint."""

    def test_health_reports_state(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "sessions": 0, "ai_available": True, "persistence": False}


class TestWebSocket:
    """JSON event frames over /ws."""

    def test_create_add_and_fan_out(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            session_id = create(alice)
            joined = send(bob, "session:join", {"sessionId": session_id, "userName": "bob"})
            assert joined["event"] == "session:updated"
            assert joined["data"]["segments"] == []
            assert alice.receive_json()["event"] == "participant:joined"

            alice.send_json(
                {"event": "segment:add", "data": {"sessionId": session_id, "content": "A", "requestId": "r1"}}
            )
            assert alice.receive_json()["event"] == "segment:added"
            ack = alice.receive_json()
            assert ack == {"event": "segment:acknowledged", "data": {"segmentId": ack["data"]["segmentId"], "requestId": "r1"}}

            added = bob.receive_json()
            assert added["event"] == "segment:added"
            assert added["data"]["content"] == "A"
            assert added["data"]["contributorType"] == "user"

    def test_non_json_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            reply = ws.receive_json()
            assert reply["event"] == "error"
            assert reply["data"]["code"] == ErrorCode.INVALID_PAYLOAD

    def test_frame_without_event(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"data": {}})
            assert ws.receive_json()["data"]["code"] == ErrorCode.INVALID_PAYLOAD

    def test_unknown_event(self, client):
        with client.websocket_connect("/ws") as ws:
            reply = send(ws, "session:delete", {"sessionId": "x"})
            assert reply["data"]["code"] == ErrorCode.INVALID_EVENT

    def test_invite_uses_configured_base_url(self, client):
        with client.websocket_connect("/ws") as ws:
            session_id = create(ws)
            reply = send(ws, "invite:generate", {"sessionId": session_id})
            assert reply["data"]["inviteLink"].startswith("https://stories.example/join/")


class TestHttpRoutes:
    """Session, export and invite lookups over HTTP."""

    def test_get_session_and_export(self, client):
        with client.websocket_connect("/ws") as ws:
            session_id = create(ws, title="Lantern")
            ws.send_json({"event": "segment:add", "data": {"sessionId": session_id, "content": "The wick caught."}})
            ws.receive_json()
            ws.receive_json()

        session = client.get(f"/sessions/{session_id}").json()
        assert session["title"] == "Lantern"
        assert [s["content"] for s in session["segments"]] == ["The wick caught."]

        text = client.get(f"/sessions/{session_id}/export", params={"format": "text"})
        assert text.status_code == 200
        assert text.headers["content-type"].startswith("text/plain")
        assert f'filename="story-{session_id}.txt"' in text.headers["content-disposition"]
        assert "Lantern" in text.text and "The wick caught." in text.text

        html = client.get(f"/sessions/{session_id}/export", params={"format": "html"})
        assert html.headers["content-type"].startswith("text/html")

    def test_presence_lists_connected_participants(self, client):
        with client.websocket_connect("/ws") as ws:
            session_id = create(ws)
            ws.send_json({"event": "segment:add", "data": {"sessionId": session_id, "content": "A dark door creaked."}})
            ws.receive_json()
            ws.receive_json()
            presence = client.get(f"/sessions/{session_id}/presence").json()
        assert presence["sessionId"] == session_id
        assert len(presence["activeParticipants"]) == 1
        assert presence["currentMood"] == ["dark"]
        assert client.get("/sessions/missing/presence").status_code == 404

    def test_unknown_session_is_404(self, client):
        assert client.get("/sessions/missing").status_code == 404
        assert client.get("/sessions/missing/export").status_code == 404

    def test_bad_export_format_is_400(self, client):
        with client.websocket_connect("/ws") as ws:
            session_id = create(ws)
        assert client.get(f"/sessions/{session_id}/export", params={"format": "pdf"}).status_code == 400

    def test_invite_resolution(self, client):
        with client.websocket_connect("/ws") as ws:
            session_id = create(ws)
            link = send(ws, "invite:generate", {"sessionId": session_id})["data"]["inviteLink"]
        token = link.rsplit("/", 1)[-1]
        assert client.get(f"/invites/{token}").json() == {"sessionId": session_id}
        assert client.get("/invites/unknown").status_code == 404


class TestPersistence:
    """Sessions survive a restart when DATABASE_DIR is configured."""

    def test_sessions_are_restored_on_startup(self, tmp_path, generator):
        config = AppConfig(database_dir=str(tmp_path / "db"))
        with TestClient(create_app(config, generator=generator)) as first:
            assert first.get("/health").json()["persistence"] is True
            with first.websocket_connect("/ws") as ws:
                session_id = create(ws, title="Durable")
                ws.send_json({"event": "segment:add", "data": {"sessionId": session_id, "content": "Still here."}})
                ws.receive_json()
                ws.receive_json()

        with TestClient(create_app(config, generator=generator)) as second:
            session = second.get(f"/sessions/{session_id}").json()
            assert session["title"] == "Durable"
            assert [p["name"] for p in session["participants"]] == ["alice"]
            assert [s["content"] for s in session["segments"]] == ["Still here."]
