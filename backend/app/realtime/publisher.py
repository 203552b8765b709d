"""Event router: the write path from REST mutations into realtime delivery.

Three fan-out modes:
    - publish_broadcast: every open connection (task created/updated/deleted,
      presence changes)
    - publish_to_identity: connections on ``identity:{id}`` (personal
      notifications)
    - publish_to_topic: members of an arbitrary topic (typing indicators)

Delivery is at-most-once and fire-and-forget: targets are resolved and frames
queued under the registry lock, then each connection's writer sends them.
Nothing here raises to the caller; a publish can never fail the mutation that
triggered it. Callers publish in commit order, and since every publish is
queued atomically, each connection observes events for the same entity in
that order.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import BaseModel

from .events import EventEnvelope, EventName, identity_topic
from .registry import Connection, SessionRegistry

logger = logging.getLogger(__name__)

Payload = Union[BaseModel, Dict[str, Any]]


class EventRouter:
    """Resolves targets from registry/membership state and queues frames."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def publish_broadcast(
        self,
        event: Union[EventName, str],
        payload: Payload,
        *,
        entity_id: Optional[str] = None,
        exclude: Optional[str] = None,
    ) -> int:
        """Deliver to every open connection regardless of topic.

        Args:
            event: Event name.
            payload: Payload model or dict matching the event's model.
            entity_id: Entity the event concerns.
            exclude: Connection id to skip (the originator).

        Returns:
            Number of connections the event was queued for.
        """
        envelope = self._envelope(event, payload, entity_id)
        if envelope is None:
            return 0
        with self._registry.lock:
            delivered = self._deliver(envelope, self._registry.open_connections(), exclude)
        logger.debug("[Router] %s broadcast to %d connection(s)", envelope.event.value, delivered)
        return delivered

    def publish_to_identity(
        self,
        identity_id: str,
        event: Union[EventName, str],
        payload: Payload,
        *,
        entity_id: Optional[str] = None,
    ) -> int:
        """Deliver to the connections subscribed to ``identity:{identity_id}``.

        Identities with no open connection get nothing; no queuing happens
        and the persisted record stays the durable copy.
        """
        if not identity_id:
            return 0
        return self.publish_to_topic(
            identity_topic(identity_id), event, payload, entity_id=entity_id,
        )

    def publish_to_topic(
        self,
        topic: str,
        event: Union[EventName, str],
        payload: Payload,
        *,
        entity_id: Optional[str] = None,
        exclude: Optional[str] = None,
    ) -> int:
        """Deliver to ``members_of(topic)``."""
        envelope = self._envelope(event, payload, entity_id)
        if envelope is None:
            return 0
        with self._registry.lock:
            targets = self._registry.resolve(self._registry.rooms.members_of(topic))
            delivered = self._deliver(envelope, targets, exclude)
        if delivered == 0:
            logger.debug("[Router] %s to %s dropped: no subscribers", envelope.event.value, topic)
        else:
            logger.debug("[Router] %s to %s: %d connection(s)", envelope.event.value, topic, delivered)
        return delivered

    @staticmethod
    def _envelope(
        event: Union[EventName, str],
        payload: Payload,
        entity_id: Optional[str],
    ) -> Optional[EventEnvelope]:
        try:
            return EventEnvelope.build(event, payload, entity_id)
        except (KeyError, ValueError) as e:
            logger.error("[Router] Refusing to publish %r: %s", event, e)
            return None

    @staticmethod
    def _deliver(
        envelope: EventEnvelope,
        targets: Iterable[Connection],
        exclude: Optional[str],
    ) -> int:
        frame = envelope.to_frame()
        delivered = 0
        for connection in targets:
            if connection.id == exclude:
                continue
            if connection.deliver(frame):
                delivered += 1
        return delivered
