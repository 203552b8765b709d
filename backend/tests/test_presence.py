"""Tests for presence tracking."""
from app.auth.tokens import Identity
from app.realtime.events import PresenceStatus
from app.realtime.presence import PresenceTracker
from app.realtime.publisher import EventRouter
from app.realtime.registry import Connection, SessionRegistry


def presence_frames(connection):
    return [f["data"] for f in connection.drain() if f["event"] == "presence:changed"]


def make_tracker():
    registry = SessionRegistry()
    return registry, PresenceTracker(registry, EventRouter(registry))


class TestTransitions:

    def test_first_connection_broadcasts_online_including_itself(self):
        registry, tracker = make_tracker()
        watcher = Connection("w1", Identity(id="watcher"))
        registry.admit(watcher)
        watcher.drain()

        alice = Connection("a1", Identity(id="alice"))
        registry.admit(alice)

        assert presence_frames(watcher) == [{"userId": "alice", "status": "online"}]
        assert presence_frames(alice) == [{"userId": "alice", "status": "online"}]

    def test_second_tab_does_not_rebroadcast(self):
        registry, tracker = make_tracker()
        watcher = Connection("w1", Identity(id="watcher"))
        registry.admit(watcher)
        registry.admit(Connection("a1", Identity(id="alice")))
        watcher.drain()

        registry.admit(Connection("a2", Identity(id="alice")))
        registry.remove("a1")

        assert presence_frames(watcher) == []
        assert tracker.status_of("alice") == PresenceStatus.ONLINE

    def test_last_tab_closing_broadcasts_offline(self):
        registry, tracker = make_tracker()
        watcher = Connection("w1", Identity(id="watcher"))
        registry.admit(watcher)
        registry.admit(Connection("a1", Identity(id="alice")))
        registry.admit(Connection("a2", Identity(id="alice")))
        watcher.drain()

        registry.remove("a1")
        registry.remove("a2")

        assert presence_frames(watcher) == [{"userId": "alice", "status": "offline"}]
        assert tracker.status_of("alice") == PresenceStatus.OFFLINE
        assert "alice" not in tracker.snapshot()


class TestStatusOverlay:

    def test_update_broadcasts_to_others_not_origin(self):
        registry, tracker = make_tracker()
        a1 = Connection("a1", Identity(id="alice"))
        a2 = Connection("a2", Identity(id="alice"))
        bob = Connection("b1", Identity(id="bob"))
        for connection in (a1, a2, bob):
            registry.admit(connection)
        for connection in (a1, a2, bob):
            connection.drain()

        assert tracker.update_status("alice", PresenceStatus.AWAY, origin="a1")

        assert presence_frames(a1) == []
        assert presence_frames(a2) == [{"userId": "alice", "status": "away"}]
        assert presence_frames(bob) == [{"userId": "alice", "status": "away"}]
        assert tracker.status_of("alice") == PresenceStatus.AWAY
        assert tracker.snapshot() == {"alice": PresenceStatus.AWAY, "bob": PresenceStatus.ONLINE}

    def test_unchanged_status_is_not_rebroadcast(self):
        registry, tracker = make_tracker()
        bob = Connection("b1", Identity(id="bob"))
        registry.admit(bob)
        registry.admit(Connection("a1", Identity(id="alice")))
        bob.drain()

        assert tracker.update_status("alice", PresenceStatus.BUSY)
        assert not tracker.update_status("alice", PresenceStatus.BUSY)
        assert not tracker.update_status("bob", PresenceStatus.ONLINE)
        assert len(presence_frames(bob)) == 1

    def test_back_to_online_clears_overlay(self):
        registry, tracker = make_tracker()
        registry.admit(Connection("a1", Identity(id="alice")))
        tracker.update_status("alice", PresenceStatus.BUSY)

        assert tracker.update_status("alice", PresenceStatus.ONLINE)
        assert tracker.status_of("alice") == PresenceStatus.ONLINE

    def test_offline_identity_cannot_set_status(self):
        registry, tracker = make_tracker()
        assert not tracker.update_status("ghost", PresenceStatus.AWAY)
        assert tracker.status_of("ghost") == PresenceStatus.OFFLINE

    def test_offline_cannot_be_requested(self):
        registry, tracker = make_tracker()
        registry.admit(Connection("a1", Identity(id="alice")))

        assert not tracker.update_status("alice", PresenceStatus.OFFLINE)
        assert tracker.status_of("alice") == PresenceStatus.ONLINE

    def test_overlay_dropped_when_going_offline(self):
        registry, tracker = make_tracker()
        registry.admit(Connection("a1", Identity(id="alice")))
        tracker.update_status("alice", PresenceStatus.AWAY)

        registry.remove("a1")
        registry.admit(Connection("a2", Identity(id="alice")))

        assert tracker.status_of("alice") == PresenceStatus.ONLINE
