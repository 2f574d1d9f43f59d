"""Client-side links to the relay.

LocalRelayLink talks to an in-process RoomRelay (embedded mode and tests).
WebSocketRelayLink speaks the /api/ws protocol with the `websockets` package.
Both hand incoming room messages to a callback.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

import websockets

from core.exceptions import AuthError, RelayError
from relay.hub import QueueConnection, RoomRelay

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict], Union[None, Awaitable[None]]]


async def _dispatch(handler: MessageHandler, message: dict) -> None:
    result = handler(message)
    if asyncio.iscoroutine(result):
        await result


class RelayLink(ABC):
    """What the chat orchestrator needs from the relay."""

    @abstractmethod
    async def join(self, room_id: str) -> None:
        ...

    @abstractmethod
    async def publish(self, room_id: str, message: dict) -> None:
        ...

    @abstractmethod
    async def listen(self, handler: MessageHandler) -> None:
        """Feed incoming room messages to handler until closed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class LocalRelayLink(RelayLink):
    """In-process link: one QueueConnection on a shared RoomRelay."""

    def __init__(self, relay: RoomRelay, user_id: str = ""):
        self.relay = relay
        self.connection = QueueConnection(user_id=user_id)

    async def join(self, room_id: str) -> None:
        self.relay.join(self.connection, room_id)

    async def publish(self, room_id: str, message: dict) -> None:
        await self.relay.publish(room_id, {**message, "roomId": room_id}, sender=self.connection)

    async def listen(self, handler: MessageHandler) -> None:
        while True:
            message = await self.connection.receive()
            await _dispatch(handler, message)

    async def close(self) -> None:
        self.relay.disconnect(self.connection)


class WebSocketRelayLink(RelayLink):
    """Remote link over the relay WebSocket protocol."""

    def __init__(self, url: str, token: str, connect_timeout: float = 10.0):
        self.url = url
        self.token = token
        self.connect_timeout = connect_timeout
        self._ws = None
        self._handler: Optional[MessageHandler] = None

    async def connect(self) -> None:
        self._ws = await asyncio.wait_for(websockets.connect(self.url), timeout=self.connect_timeout)
        await self._ws.send(json.dumps({"type": "auth", "payload": {"token": self.token}}))
        reply = json.loads(await asyncio.wait_for(self._ws.recv(), timeout=self.connect_timeout))
        if reply.get("type") != "auth_ok":
            reason = reply.get("payload", {}).get("reason", "auth rejected")
            await self._ws.close()
            self._ws = None
            raise AuthError(f"Relay auth failed: {reason}")
        logger.info("[RelayLink] connected user=%s", reply["payload"].get("user_id"))

    def _require_ws(self):
        if self._ws is None:
            raise RelayError("Relay link is not connected")
        return self._ws

    async def join(self, room_id: str) -> None:
        await self._require_ws().send(json.dumps({"type": "join_room", "payload": {"roomId": room_id}}))

    async def publish(self, room_id: str, message: dict) -> None:
        payload = {**message, "roomId": room_id}
        await self._require_ws().send(json.dumps({"type": "send_message", "payload": payload}))

    async def listen(self, handler: MessageHandler) -> None:
        ws = self._require_ws()
        async for raw in ws:
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("[RelayLink] invalid JSON from relay")
                continue
            msg_type = msg.get("type")
            if msg_type == "receive_message":
                await _dispatch(handler, msg.get("payload", {}))
            elif msg_type == "error":
                logger.warning("[RelayLink] relay error: %s", msg.get("payload"))

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
