"""Composition root for the realtime layer.

``RealtimeHub`` wires the session registry, membership manager, event router
and presence tracker together and dispatches inbound control messages:

    task:join {taskId}           -> join entity:{taskId}
    task:leave {taskId}          -> leave entity:{taskId}
    task:typing {taskId, isTyping} -> task:userTyping to the task room
    presence:update {status}     -> presence overlay + presence:changed

Unknown or malformed control messages are logged and ignored; they never
close the connection.

Note:
    The module-level ``hub`` is shared by the WebSocket endpoint and the REST
    routers, mirroring a single-process pub/sub deployment.
"""
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from app.config import RealtimeSettings

from .events import (
    DEFAULT_MAX_ENTITY_ID_LENGTH,
    ControlName,
    EventName,
    InvalidTopicError,
    PresenceUpdateRequest,
    TaskRoomRequest,
    TypingPayload,
    TypingRequest,
    entity_topic,
    parse_control,
    validate_entity_id,
)
from .membership import RoomMembershipManager
from .presence import PresenceTracker
from .publisher import EventRouter
from .registry import Connection, PresenceTransition, SessionRegistry

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Owns every piece of shared realtime state for the process."""

    registry: SessionRegistry
    rooms: RoomMembershipManager
    events: EventRouter
    presence: PresenceTracker

    def __init__(self, settings: Optional[RealtimeSettings] = None) -> None:
        self._build(settings or RealtimeSettings())

    def _build(self, settings: RealtimeSettings) -> None:
        self.max_entity_id_length = settings.max_entity_id_length or DEFAULT_MAX_ENTITY_ID_LENGTH
        self.registry = SessionRegistry(
            max_connections_per_identity=settings.max_connections_per_identity,
            max_topics_per_connection=settings.max_topics_per_connection,
        )
        self.rooms = self.registry.rooms
        self.events = EventRouter(self.registry)
        self.presence = PresenceTracker(self.registry, self.events)
        self._handlers: Dict[ControlName, Callable[[Connection, Any], None]] = {
            ControlName.TASK_JOIN: self._on_join,
            ControlName.TASK_LEAVE: self._on_leave,
            ControlName.TASK_TYPING: self._on_typing,
            ControlName.PRESENCE_UPDATE: self._on_presence_update,
        }

    def reset(self, settings: Optional[RealtimeSettings] = None) -> None:
        """Drop all connections and rebuild with fresh state (startup, tests)."""
        self.registry.clear()
        self._build(settings or RealtimeSettings())

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self, connection: Connection) -> Optional[PresenceTransition]:
        return self.registry.admit(connection)

    def disconnect(self, connection_id: str) -> Optional[PresenceTransition]:
        return self.registry.remove(connection_id)

    # =========================================================================
    # Control messages
    # =========================================================================

    def handle_control(self, connection: Connection, frame: Any) -> bool:
        """Dispatch one inbound frame from ``connection``.

        Returns:
            True if the frame was a recognised, well-formed control message.
        """
        try:
            name, data = parse_control(frame)
        except ValueError as e:
            event = frame.get("event") if isinstance(frame, dict) else None
            logger.warning(
                "[Hub] Ignoring control message %r from %s: %s",
                event, connection.id, str(e).splitlines()[0],
            )
            return False

        try:
            self._handlers[name](connection, data)
        except InvalidTopicError as e:
            logger.debug("[Hub] Ignoring %s from %s: %s", name.value, connection.id, e)
            return False
        return True

    def _task_topic(self, data: BaseModel) -> str:
        return entity_topic(data.taskId, self.max_entity_id_length)

    def _on_join(self, connection: Connection, data: TaskRoomRequest) -> None:
        topic = self._task_topic(data)
        if self.rooms.join(connection.id, topic):
            logger.info("[Hub] User %s joined task room %s", connection.identity_id, topic)

    def _on_leave(self, connection: Connection, data: TaskRoomRequest) -> None:
        topic = self._task_topic(data)
        if self.rooms.leave(connection.id, topic):
            logger.info("[Hub] User %s left task room %s", connection.identity_id, topic)

    def _on_typing(self, connection: Connection, data: TypingRequest) -> None:
        task_id = validate_entity_id(data.taskId, self.max_entity_id_length)
        self.events.publish_to_topic(
            entity_topic(task_id, self.max_entity_id_length),
            EventName.TASK_USER_TYPING,
            TypingPayload(taskId=task_id, userId=connection.identity_id, isTyping=data.isTyping),
            entity_id=task_id,
            exclude=connection.id,
        )

    def _on_presence_update(self, connection: Connection, data: PresenceUpdateRequest) -> None:
        self.presence.update_status(connection.identity_id, data.status, origin=connection.id)


# Global singleton instance used by the WebSocket endpoint and REST routers
hub = RealtimeHub()
