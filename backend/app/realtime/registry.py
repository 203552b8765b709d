"""Session registry for realtime connections.

This module tracks which identities are connected and through which
transport connections. It is the single owner of connection lifecycle state:

    - Connection records, from authenticated admission until transport closure
    - Session sets: identity id -> open connection ids
    - Topic membership (via the embedded RoomMembershipManager)
    - Presence transitions (offline -> online on the first connection,
      online -> offline when the last one closes)

Thread Safety:
    Every structural mutation happens under one re-entrant lock shared with
    the membership manager. Presence listeners are invoked after the lock is
    released but before ``admit``/``remove`` return, so transitions are
    ordered relative to the call that caused them.

Delivery:
    Each Connection owns an outbound FIFO drained by a writer task running on
    the connection's event loop. ``Connection.deliver`` only enqueues, so a
    publish never blocks on I/O and frames reach a client in the order they
    were published.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from app.auth.tokens import Identity

from .events import PresenceStatus, identity_topic
from .membership import RoomMembershipManager

logger = logging.getLogger(__name__)

# Wakes the writer so it can exit after close()
_CLOSE = object()


class ConnectionLimitError(Exception):
    """Raised by ``admit`` when an identity already holds the maximum number of connections."""


@dataclass(frozen=True)
class PresenceTransition:
    """An identity crossing between offline and online."""
    identity_id: str
    status: PresenceStatus


class Connection:
    """One live transport session belonging to an identity.

    Attributes:
        id: Unique connection identifier.
        identity: Identity bound at admission (immutable afterwards).
        transport: The WebSocket (anything with ``async send_json``).
        loop: Event loop that owns the transport; None for detached
            connections whose frames are only ever drained.
        created_at: Unix timestamp of creation.
        is_open: Lifecycle flag; cleared on close or failed send.
    """

    def __init__(
        self,
        connection_id: str,
        identity: Identity,
        transport: Optional[WebSocket] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.id = connection_id
        self.identity = identity
        self.transport = transport
        self.loop = loop
        self.created_at = time.time()
        self.is_open = True
        self._outbox: asyncio.Queue = asyncio.Queue()

    @property
    def identity_id(self) -> str:
        return self.identity.id

    def deliver(self, frame: Dict[str, Any]) -> bool:
        """Queue a frame for the writer. Never blocks; safe from any thread.

        Returns:
            False if the connection is closed (the frame is dropped).
        """
        if not self.is_open:
            return False
        if self.loop is None:
            self._outbox.put_nowait(frame)
            return True
        try:
            self.loop.call_soon_threadsafe(self._outbox.put_nowait, frame)
        except RuntimeError:
            # Loop already closed: the transport is gone.
            self.is_open = False
            return False
        return True

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every frame still waiting to be written."""
        frames = []
        while True:
            try:
                frame = self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if frame is not _CLOSE:
                frames.append(frame)

    def close(self) -> None:
        """Mark the connection closed and let the writer exit."""
        if not self.is_open:
            return
        self.is_open = False
        if self.loop is None:
            self._outbox.put_nowait(_CLOSE)
            return
        try:
            self.loop.call_soon_threadsafe(self._outbox.put_nowait, _CLOSE)
        except RuntimeError:
            pass

    async def run_writer(self) -> None:
        """Send queued frames in order until closed or a send fails."""
        while True:
            frame = await self._outbox.get()
            if frame is _CLOSE:
                return
            if not await self._safe_send(frame):
                self.is_open = False
                dropped = self.drain()
                logger.debug(
                    "[Registry] Writer for %s stopped; %d queued frame(s) dropped",
                    self.id, len(dropped),
                )
                return

    async def _safe_send(self, frame: Dict[str, Any]) -> bool:
        """Send a frame with error handling.

        Returns:
            True if successful, False if the transport failed.
        """
        try:
            await self.transport.send_json(frame)
            return True
        except Exception as e:
            logger.debug("Failed to send to connection %s: %s", self.id, e)
            return False

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<Connection {self.id} identity={self.identity.id} {state}>"


TransitionListener = Callable[[PresenceTransition], None]


class SessionRegistry:
    """Identity -> open connections, and the owner of every Connection record.

    Invariant: an identity is online iff its session set is non-empty.
    """

    def __init__(
        self,
        max_connections_per_identity: int = 0,
        max_topics_per_connection: int = 0,
    ) -> None:
        self.lock = threading.RLock()
        self.max_connections_per_identity = max_connections_per_identity

        # connection id -> Connection
        self._connections: Dict[str, Connection] = {}

        # identity id -> open connection ids
        self._sessions: Dict[str, Set[str]] = {}

        self._listeners: List[TransitionListener] = []

        self.rooms = RoomMembershipManager(self, max_topics_per_connection)

    def add_listener(self, listener: TransitionListener) -> None:
        """Register a callback for presence transitions."""
        self._listeners.append(listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def admit(self, connection: Connection) -> Optional[PresenceTransition]:
        """Register an authenticated connection and subscribe it to its identity topic.

        Args:
            connection: A freshly created, open connection.

        Returns:
            An ``online`` transition if this is the identity's first open
            connection, otherwise None.

        Raises:
            ValueError: The connection id is already registered or closed.
            ConnectionLimitError: The identity is at its connection limit.
        """
        identity_id = connection.identity_id
        with self.lock:
            if connection.id in self._connections:
                raise ValueError(f"Connection {connection.id} is already admitted")
            if not connection.is_open:
                raise ValueError(f"Connection {connection.id} is closed")

            session = self._sessions.get(identity_id, set())
            limit = self.max_connections_per_identity
            if limit > 0 and len(session) >= limit:
                raise ConnectionLimitError(
                    f"Identity {identity_id} already has {len(session)} connection(s)"
                )

            first = not session
            self._connections[connection.id] = connection
            session.add(connection.id)
            self._sessions[identity_id] = session
            self.rooms.join(connection.id, identity_topic(identity_id))
            open_count = len(session)

        logger.info(
            "[Registry] Admitted %s for identity %s (%d open)",
            connection.id, identity_id, open_count,
        )

        if not first:
            return None
        transition = PresenceTransition(identity_id, PresenceStatus.ONLINE)
        self._notify(transition)
        return transition

    def remove(self, connection_id: str) -> Optional[PresenceTransition]:
        """Forget a connection and clean it out of every topic.

        Idempotent: removing an unknown or already-removed connection is a
        no-op.

        Returns:
            An ``offline`` transition if this was the identity's last open
            connection, otherwise None.
        """
        with self.lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None

            identity_id = connection.identity_id
            connection.close()
            topics = self.rooms.drop_connection(connection_id)

            session = self._sessions.get(identity_id)
            last = False
            if session is not None:
                session.discard(connection_id)
                if not session:
                    del self._sessions[identity_id]
                    last = True
            remaining = len(session) if session else 0

        logger.info(
            "[Registry] Removed %s for identity %s (%d topic(s) cleaned, %d open)",
            connection_id, identity_id, len(topics), remaining,
        )

        if not last:
            return None
        transition = PresenceTransition(identity_id, PresenceStatus.OFFLINE)
        self._notify(transition)
        return transition

    def clear(self) -> None:
        """Close and forget every connection without emitting transitions."""
        with self.lock:
            for connection in self._connections.values():
                connection.close()
            self._connections.clear()
            self._sessions.clear()
            self.rooms.clear()

    # =========================================================================
    # Queries
    # =========================================================================

    def is_online(self, identity_id: str) -> bool:
        with self.lock:
            return bool(self._sessions.get(identity_id))

    def list_online(self) -> Set[str]:
        """Snapshot of every identity with at least one open connection."""
        with self.lock:
            return set(self._sessions)

    def is_open(self, connection_id: str) -> bool:
        with self.lock:
            connection = self._connections.get(connection_id)
            return connection is not None and connection.is_open

    def get(self, connection_id: str) -> Optional[Connection]:
        with self.lock:
            return self._connections.get(connection_id)

    def resolve(self, connection_ids: Set[str]) -> List[Connection]:
        """Map ids to open Connection objects, skipping stale ids."""
        with self.lock:
            return [
                self._connections[cid] for cid in connection_ids
                if cid in self._connections and self._connections[cid].is_open
            ]

    def open_connections(self) -> List[Connection]:
        with self.lock:
            return [c for c in self._connections.values() if c.is_open]

    def connections_of(self, identity_id: str) -> List[Connection]:
        with self.lock:
            return [self._connections[cid] for cid in self._sessions.get(identity_id, ())]

    def session_count(self, identity_id: str) -> int:
        with self.lock:
            return len(self._sessions.get(identity_id, ()))

    def __len__(self) -> int:
        with self.lock:
            return len(self._connections)

    # =========================================================================
    # Internal
    # =========================================================================

    def _notify(self, transition: PresenceTransition) -> None:
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                logger.exception(
                    "[Registry] Presence listener failed for %s -> %s",
                    transition.identity_id, transition.status.value,
                )
