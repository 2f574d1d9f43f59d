"""WebSocket server — relay gateway.

Protocol:
  1. Client connects
  2. Client sends AUTH with the session token from /api/auth/verify
  3. Server validates, sends AUTH_OK
  4. Client sends JOIN_ROOM {roomId} / LEAVE_ROOM {roomId}
  5. Client sends SEND_MESSAGE {roomId, ...message}; every member of the
     room (sender included) gets RECEIVE_MESSAGE {...message}

Messages are not stored here. Disconnect drops all room memberships.
"""
import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from auth.tokens import validate_token
from config.settings import get_settings
from core.exceptions import AuthError
from observability.audit_log import log_audit_event
from relay.hub import RelayConnection, RoomRelay
from schemas.audit import AuditEventType
from schemas.ws_messages import (
    WSMessageType,
    WSEnvelope,
    AuthPayload,
    AuthOkPayload,
    AuthFailPayload,
    RoomPayload,
    SendMessagePayload,
    JoinedPayload,
    ErrorPayload,
)

logger = logging.getLogger(__name__)


def _make_envelope(msg_type: WSMessageType, payload: dict) -> str:
    """Create a JSON string envelope for sending."""
    envelope = WSEnvelope(type=msg_type, payload=payload)
    return envelope.model_dump_json()


async def _send(ws: WebSocket, msg_type: WSMessageType, payload_model: BaseModel) -> None:
    """Send a typed message to the client."""
    data = _make_envelope(msg_type, payload_model.model_dump(mode="json", by_alias=True))
    await ws.send_text(data)


class WebSocketConnection(RelayConnection):
    """Relay connection backed by a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket, user_id: str):
        super().__init__(user_id=user_id)
        self.websocket = websocket

    async def deliver(self, message: dict) -> None:
        await self.websocket.send_text(_make_envelope(WSMessageType.RECEIVE_MESSAGE, message))


async def handle_ws_connection(websocket: WebSocket, relay: RoomRelay) -> None:
    """Main WebSocket handler for the chat relay."""
    await websocket.accept()
    connection: WebSocketConnection | None = None

    try:
        # ---- Phase 1: Authentication ----
        try:
            raw = await asyncio.wait_for(
                websocket.receive_text(), timeout=get_settings().WS_AUTH_TIMEOUT_S,
            )
        except asyncio.TimeoutError:
            await websocket.close(code=4008, reason="Auth timeout")
            logger.warning("WS auth timeout: no AUTH received")
            return

        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            msg = {}
        if not isinstance(msg, dict):
            msg = {}

        if msg.get("type") != WSMessageType.AUTH.value:
            await _send(websocket, WSMessageType.AUTH_FAIL, AuthFailPayload(
                reason="First message must be AUTH",
                code="PROTOCOL_ERROR",
            ))
            await websocket.close(code=4001, reason="Protocol error")
            return

        try:
            payload = msg.get("payload")
            auth_payload = AuthPayload(**(payload if isinstance(payload, dict) else {}))
            claims = validate_token(auth_payload.token)
        except (AuthError, ValidationError) as e:
            reason = e.message if isinstance(e, AuthError) else "Missing token"
            await _send(websocket, WSMessageType.AUTH_FAIL, AuthFailPayload(
                reason=reason,
                code="AUTH_ERROR",
            ))
            await log_audit_event(AuditEventType.AUTH_FAILURE, details={"reason": reason, "channel": "ws"})
            await websocket.close(code=4003, reason="Auth failed")
            return

        connection = WebSocketConnection(websocket, user_id=claims.user_id)
        await _send(websocket, WSMessageType.AUTH_OK, AuthOkPayload(
            user_id=claims.user_id,
            role=claims.role,
            connection_id=connection.connection_id,
        ))
        await log_audit_event(
            AuditEventType.RELAY_CONNECTED,
            user_id=claims.user_id,
            details={"conn": connection.connection_id},
        )
        logger.info("WS authenticated: user=%s conn=%s", claims.user_id, connection.connection_id[:8])

        # ---- Phase 2: Message Loop ----
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await _send(websocket, WSMessageType.ERROR, ErrorPayload(
                    message="Invalid JSON", code="INVALID_JSON",
                ))
                continue

            msg_type = msg.get("type") if isinstance(msg, dict) else None
            payload = msg.get("payload") if isinstance(msg, dict) else None
            if not isinstance(payload, dict):
                payload = {}

            if msg_type == WSMessageType.JOIN_ROOM.value:
                await _handle_join(websocket, relay, connection, payload)

            elif msg_type == WSMessageType.LEAVE_ROOM.value:
                await _handle_leave(websocket, relay, connection, payload)

            elif msg_type == WSMessageType.SEND_MESSAGE.value:
                await _handle_send_message(websocket, relay, connection, payload)

            else:
                await _send(websocket, WSMessageType.ERROR, ErrorPayload(
                    message=f"Unknown message type: {msg_type}",
                    code="UNKNOWN_MSG_TYPE",
                ))

    except WebSocketDisconnect:
        logger.info("WS disconnected: conn=%s", connection.connection_id[:8] if connection else None)
    except Exception as e:
        logger.error("WS error: conn=%s error=%s", connection.connection_id[:8] if connection else None, str(e), exc_info=True)
    finally:
        if connection is not None:
            relay.disconnect(connection)
            await log_audit_event(
                AuditEventType.RELAY_DISCONNECTED,
                user_id=connection.user_id,
                details={"conn": connection.connection_id},
            )


async def _missing_room(ws: WebSocket) -> None:
    await _send(ws, WSMessageType.ERROR, ErrorPayload(
        message="roomId is required",
        code="MISSING_ROOM",
    ))


async def _handle_join(ws: WebSocket, relay: RoomRelay, conn: WebSocketConnection, payload: dict) -> None:
    try:
        req = RoomPayload(**payload)
    except ValidationError:
        await _missing_room(ws)
        return
    members = relay.join(conn, req.room_id)
    await _send(ws, WSMessageType.JOINED, JoinedPayload(room_id=req.room_id, members=members))


async def _handle_leave(ws: WebSocket, relay: RoomRelay, conn: WebSocketConnection, payload: dict) -> None:
    try:
        req = RoomPayload(**payload)
    except ValidationError:
        await _missing_room(ws)
        return
    relay.leave(conn, req.room_id)
    await _send(ws, WSMessageType.LEFT, JoinedPayload(room_id=req.room_id, members=len(relay.members(req.room_id))))


async def _handle_send_message(ws: WebSocket, relay: RoomRelay, conn: WebSocketConnection, payload: dict) -> None:
    """Broadcast the payload as-is to the room. Only roomId is required."""
    try:
        req = SendMessagePayload(**payload)
    except ValidationError:
        await _missing_room(ws)
        return
    await relay.publish(req.room_id, payload, sender=conn)
