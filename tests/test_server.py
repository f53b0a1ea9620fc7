"""
Tests for the HTTP/WebSocket control surface
"""

import json

import pytest
from fastapi.testclient import TestClient

from wa_gateway.config import GatewayConfig
from wa_gateway.server import GatewayServer, build_controller

from conftest import FakeFactory, fast_lifecycle


@pytest.fixture
def gateway(tmp_path, monkeypatch):
    for name in ("PORT", "WEBHOOK_URL", "WEBHOOK_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    config = GatewayConfig(working_dir=tmp_path, lifecycle=fast_lifecycle())
    factory = FakeFactory()
    controller = build_controller(config, factory=factory)
    server = GatewayServer(controller)

    with TestClient(server.app) as client:
        yield client, controller, factory


def receive_until(ws, event):
    """Read frames until one named `event` arrives"""
    while True:
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame


class TestStatusRoutes:
    """Test liveness, status and QR routes"""

    def test_health(self, gateway):
        client, _, _ = gateway
        body = client.get("/api/health").json()

        assert body["status"] == "ok"
        assert body["uptime"] >= 0
        assert "timestamp" in body

    def test_initial_status(self, gateway):
        client, _, _ = gateway
        body = client.get("/api/status").json()

        assert body == {
            "state": "disconnected",
            "authenticated": False,
            "ready": False,
            "qr": None,
            "clientInfo": None,
            "pushname": None,
            "currentSession": None,
        }

    def test_no_qr(self, gateway):
        client, _, _ = gateway
        response = client.get("/api/qr")

        assert response.status_code == 404
        assert response.json()["detail"] == "No QR code available"


class TestSessionRoutes:
    """Test session management routes"""

    def test_list_sessions(self, gateway):
        client, _, _ = gateway
        body = client.get("/api/sessions").json()

        assert [s["id"] for s in body["sessions"]] == ["default"]
        assert body["currentSession"] is None

    def test_create_session(self, gateway):
        client, controller, _ = gateway
        response = client.post("/api/sessions", json={"name": "Work"})

        assert response.status_code == 200
        session = response.json()["session"]
        assert session["name"] == "Work"
        assert session["id"] in controller.registry

    def test_create_session_requires_name(self, gateway):
        client, _, _ = gateway
        assert client.post("/api/sessions", json={}).status_code == 400

    def test_select_and_clear(self, gateway):
        client, controller, factory = gateway

        response = client.post("/api/sessions/default/select")
        assert response.status_code == 200
        assert response.json()["sessionId"] == "default"
        assert len(factory.created) == 1
        assert client.get("/api/status").json()["currentSession"] == "default"

        health = client.get("/api/sessions/health").json()
        assert health["currentSession"] == "default"
        assert health["healthCheckActive"] is True
        assert health["thresholds"]["stuckThresholdMs"] == 30000

        # The active session cannot be deleted
        assert client.delete("/api/sessions/default").status_code == 400

        response = client.post("/api/sessions/default/clear", json={"forceDisconnect": True})
        assert response.status_code == 200
        assert response.json()["message"] == "Session auth data cleared successfully"
        assert factory.latest.destroyed is True
        assert controller.current_session is None

    def test_clear_active_without_force_disconnect(self, gateway):
        client, _, _ = gateway
        client.post("/api/sessions/default/select")

        response = client.post("/api/sessions/default/clear", json={"forceDisconnect": False})
        assert response.status_code == 400

        client.post("/api/sessions/default/force-clear")

    def test_force_clear(self, gateway):
        client, controller, factory = gateway
        client.post("/api/sessions/default/select")

        response = client.post("/api/sessions/default/force-clear")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert factory.latest.destroyed is True
        assert controller.current_session is None

    @pytest.mark.parametrize("method,path", [
        ("post", "/api/sessions/missing/select"),
        ("post", "/api/sessions/switch/missing"),
        ("post", "/api/sessions/missing/clear"),
        ("post", "/api/sessions/missing/force-clear"),
        ("delete", "/api/sessions/missing"),
    ])
    def test_unknown_session(self, gateway, method, path):
        client, _, _ = gateway
        response = getattr(client, method)(path)

        assert response.status_code == 404
        assert response.json()["detail"] == "Session not found"

    def test_delete_inactive_session(self, gateway):
        client, controller, _ = gateway
        session_id = client.post("/api/sessions", json={"name": "Temp"}).json()["session"]["id"]

        response = client.delete(f"/api/sessions/{session_id}")

        assert response.status_code == 200
        assert session_id not in controller.registry

    def test_logout_without_client(self, gateway):
        client, _, _ = gateway
        response = client.post("/api/logout")

        assert response.status_code == 400
        assert response.json()["detail"] == "Client not initialized"


class TestWebhookRoutes:
    """Test webhook settings routes"""

    def test_save_and_read(self, gateway, tmp_path):
        client, _, _ = gateway
        assert client.get("/api/webhook-config").json() == {"url": "", "token": "", "enabled": False}

        response = client.post("/api/webhook-config", json={
            "url": "http://hooks.example/in",
            "token": "abc",
            "enabled": True,
        })

        assert response.status_code == 200
        assert client.get("/api/webhook-config").json()["url"] == "http://hooks.example/in"
        saved = json.loads((tmp_path / "data" / "webhook-config.json").read_text())
        assert saved["token"] == "abc"

    def test_webhook_test_without_url(self, gateway):
        client, _, _ = gateway
        assert client.post("/api/webhook-test").status_code == 400


class TestWebSocket:
    """Test the live event socket"""

    def test_state_on_connect(self, gateway):
        client, _, _ = gateway

        with client.websocket_connect("/ws") as ws:
            frame = ws.receive_json()

        assert frame["event"] == "state"
        assert frame["data"]["state"] == "disconnected"
        assert frame["data"]["currentSession"] is None
        assert [s["id"] for s in frame["data"]["sessions"]] == ["default"]

    def test_create_session_action(self, gateway):
        client, _, _ = gateway

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "createSession", "name": "From UI"})

            updated = receive_until(ws, "sessions-updated")
            created = receive_until(ws, "sessionCreated")

        assert [s["name"] for s in updated["data"]["sessions"]] == ["Default Session", "From UI"]
        assert created["data"]["session"]["name"] == "From UI"

    def test_select_unknown_session(self, gateway):
        client, _, _ = gateway

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "selectSession", "sessionId": "missing"})
            frame = ws.receive_json()

        assert frame == {"event": "session-init-failed", "data": {"message": "Session not found"}}

    def test_unknown_action(self, gateway):
        client, _, _ = gateway

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "reboot"})
            frame = ws.receive_json()

        assert frame["event"] == "error"
        assert "reboot" in frame["data"]["message"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
