"""Real-Time Relay — room-based publish/subscribe.

Delivery contract:
  - at-most-once, best effort: no ack, no retry, no persistence
  - every member of the room receives a publish, the sender included
  - FIFO per publisher: deliveries are awaited in order and each
    connection serializes its own sends
  - a connection whose delivery fails is disconnected; other members
    are unaffected

The membership table is owned here. Other components only call the
methods below.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class RelayConnection(ABC):
    """One client connection as seen by the relay."""

    def __init__(self, connection_id: Optional[str] = None, user_id: str = ""):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id = user_id

    @abstractmethod
    async def deliver(self, message: dict) -> None:
        """Push a relayed message to the client."""
        ...


class QueueConnection(RelayConnection):
    """In-process connection backed by an asyncio.Queue."""

    def __init__(self, connection_id: Optional[str] = None, user_id: str = ""):
        super().__init__(connection_id, user_id)
        self.queue: asyncio.Queue = asyncio.Queue()

    async def deliver(self, message: dict) -> None:
        await self.queue.put(message)

    async def receive(self, timeout: Optional[float] = None) -> dict:
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def drain(self) -> List[dict]:
        items = []
        while not self.queue.empty():
            items.append(self.queue.get_nowait())
        return items


class RoomRelay:
    """Room membership table plus fan-out."""

    def __init__(self):
        self._connections: Dict[str, RelayConnection] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}

    # ---- Membership ----

    def join(self, connection: RelayConnection, room_id: str) -> int:
        """Add connection to room. Idempotent. Returns the member count."""
        cid = connection.connection_id
        self._connections[cid] = connection
        self._send_locks.setdefault(cid, asyncio.Lock())
        self._rooms.setdefault(room_id, set()).add(cid)
        self._memberships.setdefault(cid, set()).add(room_id)
        logger.info("[Relay] join room=%s conn=%s members=%d", room_id, cid[:8], len(self._rooms[room_id]))
        return len(self._rooms[room_id])

    def leave(self, connection: RelayConnection, room_id: str) -> bool:
        cid = connection.connection_id
        members = self._rooms.get(room_id)
        if not members or cid not in members:
            return False
        members.discard(cid)
        if not members:
            del self._rooms[room_id]
        self._memberships.get(cid, set()).discard(room_id)
        logger.info("[Relay] leave room=%s conn=%s", room_id, cid[:8])
        return True

    def disconnect(self, connection: RelayConnection) -> None:
        """Silently drop every membership of the connection."""
        cid = connection.connection_id
        for room_id in self._memberships.pop(cid, set()):
            members = self._rooms.get(room_id)
            if members is not None:
                members.discard(cid)
                if not members:
                    del self._rooms[room_id]
        self._connections.pop(cid, None)
        self._send_locks.pop(cid, None)
        logger.info("[Relay] disconnect conn=%s", cid[:8])

    def members(self, room_id: str) -> List[str]:
        return sorted(self._rooms.get(room_id, ()))

    def rooms_of(self, connection: RelayConnection) -> Set[str]:
        return set(self._memberships.get(connection.connection_id, ()))

    def room_count(self) -> int:
        return len(self._rooms)

    def connection_count(self) -> int:
        return len(self._connections)

    # ---- Fan-out ----

    async def publish(
        self,
        room_id: str,
        message: dict,
        sender: Optional[RelayConnection] = None,
    ) -> int:
        """Deliver message to every member of room_id. Returns deliveries made."""
        targets = [self._connections[cid] for cid in self.members(room_id) if cid in self._connections]
        delivered = 0
        for conn in targets:
            lock = self._send_locks.get(conn.connection_id)
            if lock is None:
                continue  # disconnected mid fan-out
            try:
                async with lock:
                    await conn.deliver(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "[Relay] delivery failed room=%s conn=%s error=%s — dropping connection",
                    room_id, conn.connection_id[:8], str(e),
                )
                self.disconnect(conn)

        logger.debug(
            "[Relay] publish room=%s from=%s delivered=%d",
            room_id, sender.connection_id[:8] if sender else "-", delivered,
        )
        return delivered
