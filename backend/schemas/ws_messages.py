"""WebSocket message schemas — canonical relay contract between clients and BE.

Version: v1
All WS communication flows through these typed envelopes.
Wire field names follow the web client (roomId), Python code uses room_id.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid


# ---- Enums ----

class WSMessageType(str, Enum):
    # Client → Server
    AUTH = "auth"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"

    # Server → Client
    AUTH_OK = "auth_ok"
    AUTH_FAIL = "auth_fail"
    JOINED = "joined"
    LEFT = "left"
    RECEIVE_MESSAGE = "receive_message"
    ERROR = "error"


# ---- Base Envelope ----

class WSEnvelope(BaseModel):
    """Every WS message is wrapped in this envelope."""
    type: WSMessageType
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict = Field(default_factory=dict)


# =====================================================
#  Client → Server Payloads
# =====================================================

class AuthPayload(BaseModel):
    token: str


class RoomPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)


class SendMessagePayload(BaseModel):
    """A chat message addressed to a room. Extra message fields pass through."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    room_id: str = Field(alias="roomId", min_length=1)


# =====================================================
#  Server → Client Payloads
# =====================================================

class AuthOkPayload(BaseModel):
    user_id: str
    role: str
    connection_id: str
    server_ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuthFailPayload(BaseModel):
    reason: str
    code: str = "AUTH_FAIL"


class JoinedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(serialization_alias="roomId")
    members: int


class ErrorPayload(BaseModel):
    message: str
    code: str = "ERROR"
    detail: Optional[str] = None
