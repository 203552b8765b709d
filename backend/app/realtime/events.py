"""Event vocabulary for the realtime layer.

Everything that crosses the WebSocket is described here:
    - Topics: ``identity:{id}`` (personal channel) and ``entity:{id}`` (task room)
    - Outbound events: a closed set of names, each with its payload model
    - Inbound control messages: a closed set of names, each with its data model

Wire frames in both directions have the shape ``{"event": name, "data": payload}``.
"""
import re
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Topics
# =============================================================================

TOPIC_SEPARATOR = ":"

# Task ids are opaque but must be safe to embed in a topic key.
ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")

DEFAULT_MAX_ENTITY_ID_LENGTH = 64


class TopicKind(str, Enum):
    """Kind of routing key.

    Attributes:
        IDENTITY: Personal channel, auto-joined at admission.
        ENTITY: Task-scoped channel, joined/left on client request.
    """
    IDENTITY = "identity"
    ENTITY = "entity"


class InvalidTopicError(ValueError):
    """Raised for malformed topic strings or entity ids."""


def identity_topic(identity_id: str) -> str:
    if not identity_id:
        raise InvalidTopicError("Identity id must not be empty")
    return f"{TopicKind.IDENTITY.value}{TOPIC_SEPARATOR}{identity_id}"


def validate_entity_id(
    entity_id: Any,
    max_length: int = DEFAULT_MAX_ENTITY_ID_LENGTH,
) -> str:
    """Return ``entity_id`` as a clean string or raise InvalidTopicError."""
    if isinstance(entity_id, int) and not isinstance(entity_id, bool):
        entity_id = str(entity_id)
    if not isinstance(entity_id, str):
        raise InvalidTopicError(f"Entity id must be a string, got {type(entity_id).__name__}")
    entity_id = entity_id.strip()
    if not entity_id or len(entity_id) > max_length:
        raise InvalidTopicError(f"Entity id length out of range: {len(entity_id)}")
    if not ENTITY_ID_PATTERN.match(entity_id):
        raise InvalidTopicError(f"Entity id contains invalid characters: {entity_id!r}")
    return entity_id


def entity_topic(entity_id: Any, max_length: int = DEFAULT_MAX_ENTITY_ID_LENGTH) -> str:
    entity_id = validate_entity_id(entity_id, max_length)
    return f"{TopicKind.ENTITY.value}{TOPIC_SEPARATOR}{entity_id}"


def parse_topic(topic: str) -> Tuple[TopicKind, str]:
    """Split a topic into its kind and id.

    Raises:
        InvalidTopicError: Unknown kind or empty id.
    """
    if not isinstance(topic, str) or TOPIC_SEPARATOR not in topic:
        raise InvalidTopicError(f"Malformed topic: {topic!r}")
    kind_value, _, key = topic.partition(TOPIC_SEPARATOR)
    try:
        kind = TopicKind(kind_value)
    except ValueError:
        raise InvalidTopicError(f"Unknown topic kind: {kind_value!r}")
    if not key:
        raise InvalidTopicError(f"Topic has no id: {topic!r}")
    return kind, key


# =============================================================================
# Outbound events
# =============================================================================


class EventName(str, Enum):
    """Events the server pushes to clients."""
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    NOTIFICATION_NEW = "notification:new"
    PRESENCE_CHANGED = "presence:changed"
    TASK_USER_TYPING = "task:userTyping"


class PresenceStatus(str, Enum):
    """Presence as seen by other users.

    ``away`` and ``busy`` are overlays on an online identity; ``offline`` is
    only ever derived from the session registry.
    """
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class FieldChange(BaseModel):
    old: Any = None
    new: Any = None


class TaskCreatedPayload(BaseModel):
    """``task:created`` carries the task record itself, not a wrapper.

    Only ``id`` is required; every other column of the record is passed
    through as-is.
    """
    model_config = ConfigDict(extra="allow")

    id: str


class TaskUpdatedPayload(BaseModel):
    task: Dict[str, Any]
    changes: Dict[str, FieldChange] = Field(default_factory=dict)
    updatedBy: str


class TaskDeletedPayload(BaseModel):
    taskId: str
    deletedBy: str


class NotificationPayload(BaseModel):
    type: str
    notification: Dict[str, Any]
    task: Optional[Dict[str, Any]] = None


class PresencePayload(BaseModel):
    userId: str
    status: PresenceStatus


class TypingPayload(BaseModel):
    taskId: str
    userId: str
    isTyping: bool = True


EVENT_PAYLOADS: Dict[EventName, Type[BaseModel]] = {
    EventName.TASK_CREATED: TaskCreatedPayload,
    EventName.TASK_UPDATED: TaskUpdatedPayload,
    EventName.TASK_DELETED: TaskDeletedPayload,
    EventName.NOTIFICATION_NEW: NotificationPayload,
    EventName.PRESENCE_CHANGED: PresencePayload,
    EventName.TASK_USER_TYPING: TypingPayload,
}


class EventEnvelope(BaseModel):
    """Immutable unit of realtime delivery.

    Attributes:
        event: Event name (closed set).
        payload: Validated payload model for ``event``.
        entity_id: Entity the event concerns, if any (ordering key).
        ts: Creation time in seconds since epoch.
    """
    model_config = ConfigDict(frozen=True)

    event: EventName
    payload: BaseModel
    entity_id: Optional[str] = None
    ts: float = Field(default_factory=time.time)

    @classmethod
    def build(
        cls,
        event: Union[EventName, str],
        payload: Union[BaseModel, Dict[str, Any]],
        entity_id: Optional[str] = None,
    ) -> "EventEnvelope":
        """Create an envelope, validating ``payload`` against the event's model.

        Raises:
            ValueError: Unknown event name or a payload of the wrong shape
                (pydantic's ValidationError is a ValueError).
        """
        name = EventName(event)
        model = EVENT_PAYLOADS[name]
        if isinstance(payload, model):
            validated = payload
        elif isinstance(payload, BaseModel):
            validated = model.model_validate(payload.model_dump())
        else:
            validated = model.model_validate(payload)
        return cls(event=name, payload=validated, entity_id=entity_id)

    def to_frame(self) -> Dict[str, Any]:
        """Render the JSON frame sent on the wire."""
        return {"event": self.event.value, "data": self.payload.model_dump(mode="json")}


# =============================================================================
# Inbound control messages
# =============================================================================


class ControlName(str, Enum):
    """Messages clients may send over the socket."""
    TASK_JOIN = "task:join"
    TASK_LEAVE = "task:leave"
    TASK_TYPING = "task:typing"
    PRESENCE_UPDATE = "presence:update"


class TaskRoomRequest(BaseModel):
    """Data for ``task:join`` / ``task:leave``."""
    taskId: Any


class TypingRequest(BaseModel):
    """Data for ``task:typing``."""
    taskId: Any
    isTyping: bool = True


class PresenceUpdateRequest(BaseModel):
    """Data for ``presence:update``; ``offline`` cannot be requested."""
    status: PresenceStatus

    @field_validator("status")
    @classmethod
    def _not_offline(cls, value: PresenceStatus) -> PresenceStatus:
        if value == PresenceStatus.OFFLINE:
            raise ValueError("offline is derived from connection state")
        return value


CONTROL_MODELS: Dict[ControlName, Type[BaseModel]] = {
    ControlName.TASK_JOIN: TaskRoomRequest,
    ControlName.TASK_LEAVE: TaskRoomRequest,
    ControlName.TASK_TYPING: TypingRequest,
    ControlName.PRESENCE_UPDATE: PresenceUpdateRequest,
}

# Bare (non-object) data is shorthand for the model's single key field.
_SHORTHAND_FIELDS: Dict[ControlName, str] = {
    ControlName.TASK_JOIN: "taskId",
    ControlName.TASK_LEAVE: "taskId",
    ControlName.PRESENCE_UPDATE: "status",
}


def parse_control(frame: Any) -> Tuple[ControlName, BaseModel]:
    """Parse an inbound frame into a control name and its validated data.

    Raises:
        ValueError: Frame is not an object, the name is not a control
            message, or the data does not match its model.
    """
    if not isinstance(frame, dict):
        raise ValueError("Control frame must be a JSON object")
    name = ControlName(frame.get("event"))
    data = frame.get("data")
    if not isinstance(data, dict):
        field = _SHORTHAND_FIELDS.get(name)
        if field is None or data is None:
            raise ValueError(f"{name.value} requires an object payload")
        data = {field: data}
    return name, CONTROL_MODELS[name].model_validate(data)
