"""Room relay: membership, fan-out and failure isolation."""
import asyncio

import pytest

from relay.client import LocalRelayLink
from relay.hub import QueueConnection, RelayConnection, RoomRelay

pytestmark = pytest.mark.asyncio


class BrokenConnection(RelayConnection):
    async def deliver(self, message: dict) -> None:
        raise ConnectionError("socket closed")


@pytest.fixture
def relay():
    return RoomRelay()


class TestFanOut:

    async def test_publish_reaches_room_members_only(self, relay):
        a, b = QueueConnection(user_id="a"), QueueConnection(user_id="b")
        relay.join(a, "r1")
        relay.join(b, "r1")

        await relay.publish("r1", {"id": "m1", "text": "hi"}, sender=a)
        assert b.drain() == [{"id": "m1", "text": "hi"}]

        await relay.publish("r2", {"id": "m2"}, sender=a)
        assert b.drain() == []

    async def test_sender_receives_own_message(self, relay):
        a = QueueConnection()
        relay.join(a, "r1")
        assert await relay.publish("r1", {"id": "m1"}, sender=a) == 1
        assert a.drain() == [{"id": "m1"}]

    async def test_fifo_per_publisher(self, relay):
        a, b = QueueConnection(), QueueConnection()
        relay.join(a, "r1")
        relay.join(b, "r1")
        for i in range(10):
            await relay.publish("r1", {"seq": i}, sender=a)
        assert [m["seq"] for m in b.drain()] == list(range(10))

    async def test_concurrent_publishers_deliver_everything(self, relay):
        conns = [QueueConnection() for _ in range(3)]
        for c in conns:
            relay.join(c, "r1")
        await asyncio.gather(*[
            relay.publish("r1", {"from": i, "seq": n}, sender=c)
            for i, c in enumerate(conns)
            for n in range(5)
        ])
        received = conns[0].drain()
        assert len(received) == 15
        for i in range(3):
            assert [m["seq"] for m in received if m["from"] == i] == list(range(5))

    async def test_publish_to_empty_room(self, relay):
        assert await relay.publish("nobody", {"id": "m"}) == 0


class TestMembership:

    async def test_join_is_idempotent(self, relay):
        a = QueueConnection()
        assert relay.join(a, "r1") == 1
        assert relay.join(a, "r1") == 1
        await relay.publish("r1", {"id": "m"})
        assert len(a.drain()) == 1

    async def test_multiple_rooms(self, relay):
        a = QueueConnection()
        relay.join(a, "r1")
        relay.join(a, "r2")
        assert relay.rooms_of(a) == {"r1", "r2"}

    async def test_leave(self, relay):
        a, b = QueueConnection(), QueueConnection()
        relay.join(a, "r1")
        relay.join(b, "r1")
        assert relay.leave(b, "r1") is True
        assert relay.leave(b, "r1") is False
        await relay.publish("r1", {"id": "m"})
        assert b.drain() == []
        assert relay.members("r1") == [a.connection_id]

    async def test_disconnect_drops_all_memberships(self, relay):
        a = QueueConnection()
        relay.join(a, "r1")
        relay.join(a, "r2")
        relay.disconnect(a)
        assert relay.rooms_of(a) == set()
        assert relay.room_count() == 0
        assert relay.connection_count() == 0
        assert await relay.publish("r1", {"id": "m"}) == 0

    async def test_failed_delivery_drops_only_that_connection(self, relay):
        good, broken = QueueConnection(), BrokenConnection()
        relay.join(good, "r1")
        relay.join(broken, "r1")

        assert await relay.publish("r1", {"id": "m1"}) == 1
        assert good.drain() == [{"id": "m1"}]
        assert relay.members("r1") == [good.connection_id]


class TestLocalLink:

    async def test_link_publishes_with_room_and_listens(self, relay):
        alice, bob = LocalRelayLink(relay, "u_a"), LocalRelayLink(relay, "u_b")
        await alice.join("r1")
        await bob.join("r1")

        received = []
        listener = asyncio.create_task(bob.listen(received.append))
        await alice.publish("r1", {"id": "m1", "text": "hello"})
        for _ in range(20):
            if received:
                break
            await asyncio.sleep(0)
        listener.cancel()

        assert received == [{"id": "m1", "text": "hello", "roomId": "r1"}]
        await alice.close()
        assert relay.members("r1") == [bob.connection.connection_id]
