"""Presence derived from the session registry.

offline -> (first connection admitted) -> online -> (last connection removed) -> offline

Clients may overlay ``away`` or ``busy`` on an online identity with a
``presence:update`` control message; the overlay never changes the
registry's online/offline answer and is dropped when the identity goes
offline. Nothing is persisted: after a restart everyone is offline until
they reconnect.
"""
import logging
from typing import Dict, Optional

from .events import EventName, PresencePayload, PresenceStatus
from .publisher import EventRouter
from .registry import PresenceTransition, SessionRegistry

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Keeps away/busy overlays and broadcasts ``presence:changed``."""

    def __init__(self, registry: SessionRegistry, router: EventRouter) -> None:
        self._registry = registry
        self._router = router

        # identity id -> away/busy (absent = plain online)
        self._overlays: Dict[str, PresenceStatus] = {}

        registry.add_listener(self.on_transition)

    def on_transition(self, transition: PresenceTransition) -> None:
        """Registry listener: broadcast online/offline crossings."""
        with self._registry.lock:
            self._overlays.pop(transition.identity_id, None)
        logger.info(
            "[Presence] %s is now %s", transition.identity_id, transition.status.value,
        )
        self._router.publish_broadcast(
            EventName.PRESENCE_CHANGED,
            PresencePayload(userId=transition.identity_id, status=transition.status),
        )

    def update_status(
        self,
        identity_id: str,
        status: PresenceStatus,
        *,
        origin: Optional[str] = None,
    ) -> bool:
        """Apply a client-requested status (online, away or busy).

        Args:
            identity_id: The requesting identity.
            status: Requested status; ``online`` clears an overlay.
            origin: Connection that sent the request; it is not echoed back.

        Returns:
            True if the effective status changed and was broadcast.
        """
        if status == PresenceStatus.OFFLINE:
            logger.warning("[Presence] %s cannot set itself offline", identity_id)
            return False

        with self._registry.lock:
            if not self._registry.is_online(identity_id):
                return False
            previous = self._overlays.get(identity_id, PresenceStatus.ONLINE)
            if previous == status:
                return False
            if status == PresenceStatus.ONLINE:
                self._overlays.pop(identity_id, None)
            else:
                self._overlays[identity_id] = status

        logger.info("[Presence] %s set status %s", identity_id, status.value)
        self._router.publish_broadcast(
            EventName.PRESENCE_CHANGED,
            PresencePayload(userId=identity_id, status=status),
            exclude=origin,
        )
        return True

    def status_of(self, identity_id: str) -> PresenceStatus:
        with self._registry.lock:
            if not self._registry.is_online(identity_id):
                return PresenceStatus.OFFLINE
            return self._overlays.get(identity_id, PresenceStatus.ONLINE)

    def snapshot(self) -> Dict[str, PresenceStatus]:
        """Status of every online identity."""
        with self._registry.lock:
            return {
                identity_id: self._overlays.get(identity_id, PresenceStatus.ONLINE)
                for identity_id in self._registry.list_online()
            }

    def clear(self) -> None:
        with self._registry.lock:
            self._overlays.clear()
