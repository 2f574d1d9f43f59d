"""HTTP + WebSocket surface of the service (FastAPI TestClient).

- GET  /api/health
- POST /api/auth/otp, POST /api/auth/verify, GET /api/auth/me
- POST /api/assistant/converse
- WS   /api/ws: auth, join_room, send_message, leave_room, errors
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from auth.dispatch import RecordingCodeDispatcher
from config.settings import DEMO_FALLBACK_TEXT
from gateway.contracts import SUPPORTED_CLIENT_MESSAGES, SUPPORTED_SERVER_MESSAGES, WS_PROTOCOL_VERSION
from schemas.ws_messages import WSMessageType
from server import app

PHONE = "0501234567"


@pytest.fixture
def client():
    with TestClient(app) as c:
        c.app.state.challenge.dispatcher = RecordingCodeDispatcher()
        yield c


def _login(client, phone=PHONE, role="user"):
    assert client.post("/api/auth/otp", json={"phone": phone}).status_code == 200
    code = client.app.state.challenge.dispatcher.last_code(phone)
    resp = client.post("/api/auth/verify", json={"phone": phone, "code": code, "role": role, "language": "en"})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestHealth:

    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["env"] == "dev"
        assert data["ws_protocol"] == WS_PROTOCOL_VERSION
        assert data["assistant"]["demo_mode"] is True
        assert data["relay_connections"] == 0


class TestAuthEndpoints:

    def test_otp_and_verify(self, client):
        data = _login(client, role="professional")
        assert data["created"] is True
        assert data["user"]["id"] == "u_0501234567"
        assert data["user"]["role"] == "professional"
        assert data["user"]["language"] == "en"
        assert data["token"]

    def test_second_login_reuses_profile(self, client):
        first = _login(client)
        second = _login(client, role="professional")
        assert second["created"] is False
        assert second["user"]["id"] == first["user"]["id"]

    def test_short_phone_is_400(self, client):
        resp = client.post("/api/auth/otp", json={"phone": "12345"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_IDENTIFIER"

    def test_wrong_code_is_400(self, client):
        client.post("/api/auth/otp", json={"phone": PHONE})
        code = client.app.state.challenge.dispatcher.last_code(PHONE)
        wrong = "0" * len(code) if code != "0" * len(code) else "1" * len(code)
        resp = client.post("/api/auth/verify", json={"phone": PHONE, "code": wrong})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid code", "code": "INVALID_CODE"}

    def test_rate_limited_is_429(self, client):
        for _ in range(5):
            assert client.post("/api/auth/otp", json={"phone": PHONE}).status_code == 200
        resp = client.post("/api/auth/otp", json={"phone": PHONE})
        assert resp.status_code == 429
        assert resp.json()["code"] == "RATE_LIMITED"

    def test_me(self, client):
        token = _login(client)["token"]
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == "u_0501234567"

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Bearer junk"}).status_code == 401


class TestConverse:

    def test_demo_reply(self, client):
        resp = client.post("/api/assistant/converse", json={
            "turns": [{"role": "user", "text": "leak under sink"}],
        })
        assert resp.status_code == 200
        assert resp.json() == {"reply": DEMO_FALLBACK_TEXT, "outcome": "fallback"}

    def test_bad_image_is_400(self, client):
        resp = client.post("/api/assistant/converse", json={
            "turns": [{"role": "user", "text": "what is this"}],
            "image": "not-a-data-url",
        })
        assert resp.status_code == 400

    def test_empty_turns_rejected(self, client):
        assert client.post("/api/assistant/converse", json={"turns": []}).status_code == 422


def _auth(ws, token):
    ws.send_json({"type": "auth", "payload": {"token": token}})
    return ws.receive_json()


class TestRelaySocket:

    def test_contract_registry_matches_enum(self):
        values = {t.value for t in WSMessageType}
        assert SUPPORTED_CLIENT_MESSAGES | SUPPORTED_SERVER_MESSAGES == values
        assert not SUPPORTED_CLIENT_MESSAGES & SUPPORTED_SERVER_MESSAGES

    def test_auth_join_and_fan_out(self, client):
        user_token = _login(client)["token"]
        pro_token = _login(client, phone="0529999999", role="professional")["token"]

        with client.websocket_connect("/api/ws") as user_ws, client.websocket_connect("/api/ws") as pro_ws:
            ok = _auth(user_ws, user_token)
            assert ok["type"] == "auth_ok"
            assert ok["payload"]["user_id"] == "u_0501234567"
            assert _auth(pro_ws, pro_token)["payload"]["role"] == "professional"

            user_ws.send_json({"type": "join_room", "payload": {"roomId": "r1"}})
            assert user_ws.receive_json()["payload"] == {"roomId": "r1", "members": 1}
            pro_ws.send_json({"type": "join_room", "payload": {"roomId": "r1"}})
            assert pro_ws.receive_json()["payload"]["members"] == 2

            message = {"roomId": "r1", "id": "m1", "sender_id": "u_0529999999", "sender_role": "pro", "text": "hi"}
            pro_ws.send_json({"type": "send_message", "payload": message})

            received = user_ws.receive_json()
            assert received["type"] == "receive_message"
            assert received["payload"] == message
            # sender gets its own echo
            assert pro_ws.receive_json()["payload"]["id"] == "m1"

            pro_ws.send_json({"type": "leave_room", "payload": {"roomId": "r1"}})
            left = pro_ws.receive_json()
            assert left["type"] == "left"
            assert left["payload"]["members"] == 1

    def test_first_message_must_be_auth(self, client):
        with client.websocket_connect("/api/ws") as ws:
            ws.send_json({"type": "join_room", "payload": {"roomId": "r1"}})
            reply = ws.receive_json()
            assert reply["type"] == "auth_fail"
            assert reply["payload"]["code"] == "PROTOCOL_ERROR"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_invalid_token_rejected(self, client):
        with client.websocket_connect("/api/ws") as ws:
            reply = _auth(ws, "not-a-token")
            assert reply["type"] == "auth_fail"
            assert reply["payload"]["code"] == "AUTH_ERROR"

    def test_protocol_errors_keep_connection(self, client):
        token = _login(client)["token"]
        with client.websocket_connect("/api/ws") as ws:
            _auth(ws, token)

            ws.send_text("{not json")
            assert ws.receive_json()["payload"]["code"] == "INVALID_JSON"

            ws.send_json({"type": "send_message", "payload": {"text": "no room"}})
            assert ws.receive_json()["payload"]["code"] == "MISSING_ROOM"

            ws.send_json({"type": "dance", "payload": {}})
            assert ws.receive_json()["payload"]["code"] == "UNKNOWN_MSG_TYPE"

            ws.send_json({"type": "join_room", "payload": {"roomId": "r1"}})
            assert ws.receive_json()["type"] == "joined"

    def test_disconnect_drops_memberships(self, client):
        token = _login(client)["token"]
        with client.websocket_connect("/api/ws") as ws:
            _auth(ws, token)
            ws.send_json({"type": "join_room", "payload": {"roomId": "r1"}})
            ws.receive_json()
            assert client.app.state.relay.room_count() == 1
        assert client.get("/api/health").json()["relay_rooms"] == 0
