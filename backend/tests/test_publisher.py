"""Tests for the event router fan-out modes."""
from app.auth.tokens import Identity
from app.realtime.events import EventName, TaskDeletedPayload, entity_topic
from app.realtime.publisher import EventRouter
from app.realtime.registry import Connection, SessionRegistry


def setup_registry():
    """alice has two tabs (a1, a2); bob has one (b1)."""
    registry = SessionRegistry()
    connections = {
        "a1": Connection("a1", Identity(id="alice")),
        "a2": Connection("a2", Identity(id="alice")),
        "b1": Connection("b1", Identity(id="bob")),
    }
    for connection in connections.values():
        registry.admit(connection)
    return registry, EventRouter(registry), connections


def events_of(connection):
    return [frame["event"] for frame in connection.drain()]


class TestBroadcast:

    def test_reaches_every_open_connection(self):
        registry, router, conns = setup_registry()

        delivered = router.publish_broadcast(
            EventName.TASK_DELETED, {"taskId": "t1", "deletedBy": "alice"}, entity_id="t1"
        )

        assert delivered == 3
        for connection in conns.values():
            assert connection.drain() == [
                {"event": "task:deleted", "data": {"taskId": "t1", "deletedBy": "alice"}}
            ]

    def test_exclude_originator(self):
        registry, router, conns = setup_registry()

        delivered = router.publish_broadcast(
            EventName.TASK_DELETED, TaskDeletedPayload(taskId="t1", deletedBy="alice"), exclude="a1"
        )

        assert delivered == 2
        assert events_of(conns["a1"]) == []
        assert events_of(conns["a2"]) == ["task:deleted"]

    def test_removed_connection_gets_nothing(self):
        registry, router, conns = setup_registry()
        registry.remove("b1")

        assert router.publish_broadcast(EventName.TASK_CREATED, {"id": "t1"}) == 2
        assert events_of(conns["b1"]) == []

    def test_no_connections(self):
        router = EventRouter(SessionRegistry())
        assert router.publish_broadcast(EventName.TASK_CREATED, {"id": "t1"}) == 0


class TestTargeted:

    def test_identity_reaches_all_tabs_only(self):
        registry, router, conns = setup_registry()
        payload = {"type": "TASK_ASSIGNED", "notification": {"id": "n1"}, "task": {"id": "t1"}}

        delivered = router.publish_to_identity("alice", EventName.NOTIFICATION_NEW, payload)

        assert delivered == 2
        assert events_of(conns["a1"]) == ["notification:new"]
        assert events_of(conns["a2"]) == ["notification:new"]
        assert events_of(conns["b1"]) == []

    def test_offline_identity_is_dropped(self):
        registry, router, conns = setup_registry()
        payload = {"type": "TASK_ASSIGNED", "notification": {"id": "n1"}}

        assert router.publish_to_identity("carol", EventName.NOTIFICATION_NEW, payload) == 0
        assert router.publish_to_identity("", EventName.NOTIFICATION_NEW, payload) == 0
        assert all(connection.drain() == [] for connection in conns.values())

    def test_topic_members_only(self):
        registry, router, conns = setup_registry()
        registry.rooms.join("a2", entity_topic("t1"))
        registry.rooms.join("b1", entity_topic("t1"))

        delivered = router.publish_to_topic(
            entity_topic("t1"),
            EventName.TASK_USER_TYPING,
            {"taskId": "t1", "userId": "bob"},
            exclude="b1",
        )

        assert delivered == 1
        assert conns["a2"].drain() == [{
            "event": "task:userTyping",
            "data": {"taskId": "t1", "userId": "bob", "isTyping": True},
        }]
        assert events_of(conns["a1"]) == []
        assert events_of(conns["b1"]) == []


class TestFailures:

    def test_invalid_event_publishes_nothing(self):
        registry, router, conns = setup_registry()

        assert router.publish_broadcast("task:exploded", {"task": {}}) == 0
        assert router.publish_broadcast(EventName.TASK_DELETED, {"taskId": "t1"}) == 0
        assert all(connection.drain() == [] for connection in conns.values())

    def test_closed_connection_does_not_block_others(self):
        registry, router, conns = setup_registry()
        conns["a1"].is_open = False

        assert router.publish_broadcast(EventName.TASK_CREATED, {"id": "t1"}) == 2
        assert events_of(conns["a2"]) == ["task:created"]


class TestOrdering:

    def test_same_entity_events_arrive_in_publish_order(self):
        registry, router, conns = setup_registry()

        router.publish_broadcast(EventName.TASK_CREATED, {"id": "t1", "v": 0}, entity_id="t1")
        for version in (1, 2, 3):
            router.publish_broadcast(
                EventName.TASK_UPDATED,
                {"task": {"id": "t1", "v": version}, "changes": {}, "updatedBy": "alice"},
                entity_id="t1",
            )
        router.publish_broadcast(EventName.TASK_DELETED, {"taskId": "t1", "deletedBy": "alice"}, entity_id="t1")

        for connection in conns.values():
            frames = connection.drain()
            assert [f["event"] for f in frames] == [
                "task:created", "task:updated", "task:updated", "task:updated", "task:deleted",
            ]
            assert frames[0]["data"]["v"] == 0
            assert [f["data"]["task"]["v"] for f in frames[1:4]] == [1, 2, 3]
