"""Tests for the session registry and connection lifecycle."""
import asyncio

import pytest

from app.auth.tokens import Identity
from app.realtime.events import PresenceStatus, entity_topic, identity_topic
from app.realtime.registry import (
    Connection,
    ConnectionLimitError,
    PresenceTransition,
    SessionRegistry,
)


def make_connection(connection_id: str, user_id: str = "alice") -> Connection:
    return Connection(connection_id, Identity(id=user_id))


class FakeTransport:
    """Records frames; optionally fails on the nth send."""

    def __init__(self, fail_on: int = 0) -> None:
        self.sent = []
        self.fail_on = fail_on

    async def send_json(self, frame):
        if self.fail_on and len(self.sent) + 1 == self.fail_on:
            raise RuntimeError("socket closed")
        self.sent.append(frame)


class TestAdmit:
    """Tests for SessionRegistry.admit."""

    def test_first_connection_goes_online(self):
        registry = SessionRegistry()
        transition = registry.admit(make_connection("c1"))

        assert transition == PresenceTransition("alice", PresenceStatus.ONLINE)
        assert registry.is_online("alice")
        assert registry.session_count("alice") == 1

    def test_second_connection_has_no_transition(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))

        assert registry.admit(make_connection("c2")) is None
        assert registry.session_count("alice") == 2

    def test_admit_joins_identity_topic(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))

        assert registry.rooms.members_of(identity_topic("alice")) == {"c1"}
        assert registry.rooms.topics_of("c1") == {identity_topic("alice")}

    def test_duplicate_admit_raises(self):
        registry = SessionRegistry()
        connection = make_connection("c1")
        registry.admit(connection)

        with pytest.raises(ValueError):
            registry.admit(connection)

    def test_closed_connection_rejected(self):
        registry = SessionRegistry()
        connection = make_connection("c1")
        connection.close()

        with pytest.raises(ValueError):
            registry.admit(connection)
        assert not registry.is_online("alice")

    def test_connection_limit(self):
        registry = SessionRegistry(max_connections_per_identity=2)
        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2"))

        with pytest.raises(ConnectionLimitError):
            registry.admit(make_connection("c3"))
        assert registry.session_count("alice") == 2
        assert registry.get("c3") is None

        # Other identities are unaffected
        registry.admit(make_connection("c4", "bob"))
        assert registry.is_online("bob")


class TestRemove:
    """Tests for SessionRegistry.remove."""

    def test_last_connection_goes_offline(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2"))

        assert registry.remove("c1") is None
        assert registry.is_online("alice")

        transition = registry.remove("c2")
        assert transition == PresenceTransition("alice", PresenceStatus.OFFLINE)
        assert not registry.is_online("alice")
        assert "alice" not in registry.list_online()

    def test_remove_is_idempotent(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))

        assert registry.remove("c1") is not None
        assert registry.remove("c1") is None
        assert registry.remove("never-admitted") is None
        assert len(registry) == 0

    def test_remove_cleans_every_topic(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2", "bob"))
        registry.rooms.join("c1", entity_topic("t1"))
        registry.rooms.join("c1", entity_topic("t2"))
        registry.rooms.join("c2", entity_topic("t1"))

        registry.remove("c1")

        assert registry.rooms.topics_of("c1") == set()
        assert registry.rooms.members_of(entity_topic("t1")) == {"c2"}
        assert registry.rooms.members_of(entity_topic("t2")) == set()
        assert registry.rooms.members_of(identity_topic("alice")) == set()

    def test_remove_closes_connection(self):
        registry = SessionRegistry()
        connection = make_connection("c1")
        registry.admit(connection)

        registry.remove("c1")

        assert not connection.is_open
        assert not connection.deliver({"event": "x", "data": {}})


class TestListeners:
    """Presence listeners observe transitions in order."""

    def test_listener_receives_transitions(self):
        registry = SessionRegistry()
        seen = []
        registry.add_listener(seen.append)

        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2"))
        registry.remove("c1")
        registry.remove("c2")

        assert seen == [
            PresenceTransition("alice", PresenceStatus.ONLINE),
            PresenceTransition("alice", PresenceStatus.OFFLINE),
        ]

    def test_failing_listener_does_not_break_admit(self):
        registry = SessionRegistry()
        seen = []

        def broken(transition):
            raise RuntimeError("boom")

        registry.add_listener(broken)
        registry.add_listener(seen.append)

        registry.admit(make_connection("c1"))

        assert registry.is_online("alice")
        assert len(seen) == 1

    def test_clear_emits_nothing(self):
        registry = SessionRegistry()
        seen = []
        registry.add_listener(seen.append)
        connection = make_connection("c1")
        registry.admit(connection)
        seen.clear()

        registry.clear()

        assert seen == []
        assert len(registry) == 0
        assert not connection.is_open
        assert registry.rooms.topic_count() == 0


class TestQueries:

    def test_resolve_skips_stale_ids(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2", "bob"))
        registry.get("c2").is_open = False

        resolved = registry.resolve({"c1", "c2", "gone"})

        assert [c.id for c in resolved] == ["c1"]

    def test_connections_of(self):
        registry = SessionRegistry()
        registry.admit(make_connection("c1"))
        registry.admit(make_connection("c2"))
        registry.admit(make_connection("c3", "bob"))

        assert {c.id for c in registry.connections_of("alice")} == {"c1", "c2"}
        assert registry.connections_of("nobody") == []
        assert registry.list_online() == {"alice", "bob"}


class TestConnectionWriter:
    """Tests for Connection delivery and its writer task."""

    def test_deliver_and_drain_preserve_order(self):
        connection = make_connection("c1")
        for i in range(3):
            assert connection.deliver({"event": "task:updated", "data": {"n": i}})

        frames = connection.drain()

        assert [f["data"]["n"] for f in frames] == [0, 1, 2]
        assert connection.drain() == []

    @pytest.mark.asyncio
    async def test_writer_sends_in_order_until_closed(self):
        transport = FakeTransport()
        connection = Connection("c1", Identity(id="alice"), transport, asyncio.get_running_loop())
        writer = asyncio.create_task(connection.run_writer())

        for i in range(3):
            connection.deliver({"event": "task:updated", "data": {"n": i}})
        connection.close()
        await asyncio.wait_for(writer, timeout=1)

        assert [f["data"]["n"] for f in transport.sent] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_failed_send_marks_connection_closed(self):
        transport = FakeTransport(fail_on=2)
        connection = Connection("c1", Identity(id="alice"), transport, asyncio.get_running_loop())
        writer = asyncio.create_task(connection.run_writer())

        for i in range(3):
            connection.deliver({"event": "task:updated", "data": {"n": i}})
        await asyncio.wait_for(writer, timeout=1)

        assert len(transport.sent) == 1
        assert not connection.is_open
        assert not connection.deliver({"event": "task:updated", "data": {}})
