"""Tests for topics, event envelopes and control message parsing."""
import pytest

from app.realtime.events import (
    ControlName,
    EventEnvelope,
    EventName,
    InvalidTopicError,
    PresenceStatus,
    TaskCreatedPayload,
    TopicKind,
    entity_topic,
    identity_topic,
    parse_control,
    parse_topic,
    validate_entity_id,
)


class TestTopics:

    def test_identity_topic(self):
        assert identity_topic("u1") == "identity:u1"
        with pytest.raises(InvalidTopicError):
            identity_topic("")

    def test_entity_topic_accepts_ints_and_strips(self):
        assert entity_topic(42) == "entity:42"
        assert entity_topic("  abc-1_2 ") == "entity:abc-1_2"

    @pytest.mark.parametrize("bad", ["", "   ", "a b", "a:b", "../x", True, None, 1.5, {"id": 1}])
    def test_entity_id_rejected(self, bad):
        with pytest.raises(InvalidTopicError):
            validate_entity_id(bad)

    def test_entity_id_length_limit(self):
        assert validate_entity_id("x" * 64) == "x" * 64
        with pytest.raises(InvalidTopicError):
            validate_entity_id("x" * 65)
        with pytest.raises(InvalidTopicError):
            validate_entity_id("x" * 11, max_length=10)

    def test_parse_topic(self):
        assert parse_topic("entity:t1") == (TopicKind.ENTITY, "t1")
        assert parse_topic("identity:u1") == (TopicKind.IDENTITY, "u1")
        for bad in ("entity", "room:1", "identity:"):
            with pytest.raises(InvalidTopicError):
                parse_topic(bad)


class TestEnvelope:

    def test_build_from_dict(self):
        envelope = EventEnvelope.build("task:created", {"id": "t1"}, entity_id="t1")

        assert envelope.event == EventName.TASK_CREATED
        assert isinstance(envelope.payload, TaskCreatedPayload)
        assert envelope.to_frame() == {"event": "task:created", "data": {"id": "t1"}}

    def test_task_created_is_the_bare_task(self):
        task = {
            "id": "t1", "title": "Plan", "status": "To Do", "priority": "High",
            "due_date": None, "assigned_to_id": "bob",
        }
        frame = EventEnvelope.build(EventName.TASK_CREATED, task).to_frame()

        assert frame["data"] == task
        assert "task" not in frame["data"]

    def test_task_created_requires_id(self):
        with pytest.raises(ValueError):
            EventEnvelope.build(EventName.TASK_CREATED, {"task": {"id": "t1"}})

    def test_build_unknown_event(self):
        with pytest.raises(ValueError):
            EventEnvelope.build("task:exploded", {})

    def test_build_wrong_payload(self):
        with pytest.raises(ValueError):
            EventEnvelope.build(EventName.TASK_DELETED, {"taskId": "t1"})

    def test_presence_frame_serializes_enum(self):
        frame = EventEnvelope.build(
            EventName.PRESENCE_CHANGED, {"userId": "u1", "status": PresenceStatus.AWAY}
        ).to_frame()
        assert frame == {"event": "presence:changed", "data": {"userId": "u1", "status": "away"}}

    def test_task_updated_changes(self):
        frame = EventEnvelope.build(EventName.TASK_UPDATED, {
            "task": {"id": "t1"},
            "changes": {"status": {"old": "To Do", "new": "Review"}},
            "updatedBy": "u1",
        }).to_frame()
        assert frame["data"]["changes"] == {"status": {"old": "To Do", "new": "Review"}}


class TestParseControl:

    def test_join(self):
        name, data = parse_control({"event": "task:join", "data": {"taskId": "t1"}})
        assert name == ControlName.TASK_JOIN
        assert data.taskId == "t1"

    def test_shorthand_data(self):
        name, data = parse_control({"event": "task:leave", "data": "t1"})
        assert name == ControlName.TASK_LEAVE
        assert data.taskId == "t1"

        name, data = parse_control({"event": "presence:update", "data": "busy"})
        assert data.status == PresenceStatus.BUSY

    def test_typing_defaults(self):
        _, data = parse_control({"event": "task:typing", "data": {"taskId": 7}})
        assert data.taskId == 7
        assert data.isTyping is True

    @pytest.mark.parametrize("frame", [
        "task:join",
        ["task:join"],
        {"event": "task:explode", "data": {}},
        {"data": {"taskId": "t1"}},
        {"event": "task:join"},
        {"event": "task:join", "data": {}},
        {"event": "task:typing", "data": "t1"},
        {"event": "presence:update", "data": {"status": "offline"}},
        {"event": "presence:update", "data": {"status": "sleeping"}},
    ])
    def test_malformed(self, frame):
        with pytest.raises(ValueError):
            parse_control(frame)
