"""Topic membership for realtime connections.

Maps topics (``identity:{id}``, ``entity:{id}``) to the set of connection ids
subscribed to them, plus the reverse index used to clean a connection out of
every topic in one pass when it closes.

All state is guarded by the owning registry's lock; the registry is also the
source of truth for whether a connection is still open.
"""
import logging
from typing import TYPE_CHECKING, Dict, Set

from .events import TOPIC_SEPARATOR, InvalidTopicError, TopicKind, parse_topic

if TYPE_CHECKING:
    from .registry import SessionRegistry

logger = logging.getLogger(__name__)


class RoomMembershipManager:
    """Topic -> connection ids, with a connection -> topics reverse index.

    Invariant: every id stored here belongs to a connection the registry
    still considers open. ``SessionRegistry.remove`` calls
    ``drop_connection`` under the same lock that removes the connection.
    """

    def __init__(self, registry: "SessionRegistry", max_topics_per_connection: int = 0) -> None:
        self._registry = registry
        self._lock = registry.lock
        # 0 = unlimited; only entity topics count against the limit
        self.max_topics_per_connection = max_topics_per_connection

        # topic -> connection ids
        self._members: Dict[str, Set[str]] = {}

        # connection id -> topics (for O(k) cleanup on close)
        self._topics: Dict[str, Set[str]] = {}

    def join(self, connection_id: str, topic: str) -> bool:
        """Subscribe a connection to a topic.

        Args:
            connection_id: An open connection.
            topic: Well-formed topic key.

        Returns:
            True if the connection was added, False if it was already a
            member, is not open, the topic is malformed, or the entity topic
            limit is reached.
        """
        try:
            kind, _ = parse_topic(topic)
        except InvalidTopicError as e:
            logger.debug("[Rooms] Ignoring join for %s: %s", connection_id, e)
            return False

        with self._lock:
            if not self._registry.is_open(connection_id):
                logger.debug("[Rooms] Ignoring join for closed connection %s", connection_id)
                return False

            topics = self._topics.setdefault(connection_id, set())
            if topic in topics:
                return False

            if kind == TopicKind.ENTITY and self.max_topics_per_connection > 0:
                entity_prefix = TopicKind.ENTITY.value + TOPIC_SEPARATOR
                entity_count = sum(1 for t in topics if t.startswith(entity_prefix))
                if entity_count >= self.max_topics_per_connection:
                    logger.warning(
                        "[Rooms] Connection %s reached the topic limit (%d); ignoring %s",
                        connection_id, self.max_topics_per_connection, topic,
                    )
                    return False

            topics.add(topic)
            self._members.setdefault(topic, set()).add(connection_id)

        logger.debug("[Rooms] %s joined %s", connection_id, topic)
        return True

    def leave(self, connection_id: str, topic: str) -> bool:
        """Unsubscribe a connection; no-op if it was not a member."""
        with self._lock:
            members = self._members.get(topic)
            if not members or connection_id not in members:
                return False
            self._discard(connection_id, topic)

        logger.debug("[Rooms] %s left %s", connection_id, topic)
        return True

    def members_of(self, topic: str) -> Set[str]:
        """Snapshot of the connection ids subscribed to ``topic``."""
        with self._lock:
            return set(self._members.get(topic, ()))

    def topics_of(self, connection_id: str) -> Set[str]:
        """Snapshot of the topics ``connection_id`` is subscribed to."""
        with self._lock:
            return set(self._topics.get(connection_id, ()))

    def topic_count(self) -> int:
        with self._lock:
            return len(self._members)

    def drop_connection(self, connection_id: str) -> Set[str]:
        """Remove a connection from every topic, including its identity topic.

        Returns:
            The topics the connection was removed from.
        """
        with self._lock:
            topics = self._topics.pop(connection_id, set())
            for topic in topics:
                members = self._members.get(topic)
                if members is None:
                    continue
                members.discard(connection_id)
                if not members:
                    del self._members[topic]
        return topics

    def clear(self) -> None:
        with self._lock:
            self._members.clear()
            self._topics.clear()

    def _discard(self, connection_id: str, topic: str) -> None:
        members = self._members.get(topic)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._members[topic]
        topics = self._topics.get(connection_id)
        if topics is not None:
            topics.discard(topic)
            if not topics:
                del self._topics[connection_id]
