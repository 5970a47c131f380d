"""
Unit tests for kova_server.hub module.

Connections are FakeConnection instances that record every JSON message
written to them. subscribers() doubles as a barrier: it is answered only
after every earlier message in the inbox has been handled.
"""

import pytest

from kova_server.hub import StatusHub, Subscriber
from tests.unit.fakes import FakeConnection


def status(value: str) -> dict:
    return {"type": "deployment_status", "status": value}


@pytest.fixture
async def hub():
    hub = StatusHub(send_timeout=0.1)
    await hub.start()
    yield hub
    await hub.stop()


class TestRegistry:
    """Test suite for register/unregister."""

    @pytest.mark.asyncio
    async def test_register(self, hub):
        subscriber = Subscriber(FakeConnection(), "p1")

        await hub.register(subscriber)

        assert await hub.subscribers("p1") == [subscriber]
        assert await hub.subscribers("p2") == []

    @pytest.mark.asyncio
    async def test_register_twice_keeps_one_entry(self, hub):
        subscriber = Subscriber(FakeConnection(), "p1")

        await hub.register(subscriber)
        await hub.register(subscriber)

        assert await hub.subscribers("p1") == [subscriber]

    @pytest.mark.asyncio
    async def test_unregister(self, hub):
        first = Subscriber(FakeConnection(), "p1")
        second = Subscriber(FakeConnection(), "p1")
        await hub.register(first)
        await hub.register(second)

        await hub.unregister(first)

        assert await hub.subscribers("p1") == [second]

    @pytest.mark.asyncio
    async def test_unregister_absent_subscriber_is_noop(self, hub):
        registered = Subscriber(FakeConnection(), "p1")
        await hub.register(registered)

        await hub.unregister(Subscriber(FakeConnection(), "p1"))
        await hub.unregister(Subscriber(FakeConnection(), "p9"))

        assert await hub.subscribers("p1") == [registered]

    @pytest.mark.asyncio
    async def test_initial_payload(self, hub):
        connection = FakeConnection()

        await hub.register(Subscriber(connection, "p1"), initial=status("building"))
        await hub.subscribers("p1")

        assert connection.messages == [status("building")]

    @pytest.mark.asyncio
    async def test_initial_payload_failure_drops_subscriber(self, hub):
        await hub.register(
            Subscriber(FakeConnection(fail=True), "p1"), initial=status("pending")
        )

        assert await hub.subscribers("p1") == []

    @pytest.mark.asyncio
    async def test_subscribers_requires_running_hub(self):
        hub = StatusHub()

        with pytest.raises(RuntimeError, match="not running"):
            await hub.subscribers("p1")


class TestBroadcast:
    """Test suite for broadcast delivery."""

    @pytest.mark.asyncio
    async def test_delivered_only_to_project_subscribers(self, hub):
        p1_a, p1_b, p2 = FakeConnection(), FakeConnection(), FakeConnection()
        await hub.register(Subscriber(p1_a, "p1"))
        await hub.register(Subscriber(p1_b, "p1"))
        await hub.register(Subscriber(p2, "p2"))

        await hub.broadcast("p1", status("building"))
        await hub.subscribers("p1")

        assert p1_a.messages == [status("building")]
        assert p1_b.messages == [status("building")]
        assert p2.messages == []

    @pytest.mark.asyncio
    async def test_order_preserved(self, hub):
        connection = FakeConnection()
        await hub.register(Subscriber(connection, "p1"), initial=status("pending"))

        for value in ("building", "deploying", "deployed"):
            await hub.broadcast("p1", status(value))
        await hub.subscribers("p1")

        assert [m["status"] for m in connection.messages] == [
            "pending",
            "building",
            "deploying",
            "deployed",
        ]

    @pytest.mark.asyncio
    async def test_no_subscribers(self, hub):
        await hub.broadcast("nobody", status("failed"))
        assert await hub.subscribers("nobody") == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_removed(self, hub):
        """Test a write error drops that subscriber and others still receive."""
        healthy = FakeConnection()
        broken = Subscriber(FakeConnection(fail=True), "p1")
        await hub.register(broken)
        await hub.register(Subscriber(healthy, "p1"))

        await hub.broadcast("p1", status("building"))
        remaining = await hub.subscribers("p1")

        assert broken not in remaining
        assert len(remaining) == 1
        assert healthy.messages == [status("building")]

        await hub.broadcast("p1", status("deployed"))
        await hub.subscribers("p1")
        assert healthy.messages == [status("building"), status("deployed")]

    @pytest.mark.asyncio
    async def test_slow_subscriber_times_out(self, hub):
        """Test a write past send_timeout drops the subscriber and closes it."""
        slow = Subscriber(FakeConnection(delay=1.0), "p1")
        fast = FakeConnection()
        await hub.register(slow)
        await hub.register(Subscriber(fast, "p1"))

        await hub.broadcast("p1", status("building"))
        remaining = await hub.subscribers("p1")

        assert slow not in remaining
        assert slow.connection.closed is True
        assert slow.connection.messages == []
        assert fast.messages == [status("building")]
        assert fast.closed is False

    @pytest.mark.asyncio
    async def test_failed_write_closes_connection(self, hub):
        broken = FakeConnection(fail=True)
        await hub.register(Subscriber(broken, "p1"))

        await hub.broadcast("p1", status("building"))
        await hub.subscribers("p1")

        assert broken.closed is True

    @pytest.mark.asyncio
    async def test_slow_initial_payload_closes_connection(self, hub):
        slow = FakeConnection(delay=1.0)

        await hub.register(Subscriber(slow, "p1"), initial=status("pending"))

        assert await hub.subscribers("p1") == []
        assert slow.closed is True

    @pytest.mark.asyncio
    async def test_unserializable_payload_skipped(self, hub):
        connection = FakeConnection()
        await hub.register(Subscriber(connection, "p1"))

        await hub.broadcast("p1", {"status": object()})
        await hub.broadcast("p1", status("failed"))
        await hub.subscribers("p1")

        assert connection.messages == [status("failed")]


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_closes_connections(self):
        hub = StatusHub()
        await hub.start()
        connections = [FakeConnection(), FakeConnection()]
        await hub.register(Subscriber(connections[0], "p1"))
        await hub.register(Subscriber(connections[1], "p2"))

        await hub.stop()

        assert all(c.closed for c in connections)
        assert hub.is_running is False

    @pytest.mark.asyncio
    async def test_operations_after_stop_are_dropped(self):
        hub = StatusHub()
        await hub.start()
        await hub.stop()
        connection = FakeConnection()

        await hub.register(Subscriber(connection, "p1"))
        await hub.broadcast("p1", status("building"))
        await hub.stop()

        assert connection.messages == []
