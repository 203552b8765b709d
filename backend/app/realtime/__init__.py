"""Realtime event distribution (WebSocket).

Components:
    - SessionRegistry: identity -> open connections, connection lifecycle
    - RoomMembershipManager: topic -> subscribed connections
    - ConnectionAuthenticator: handshake token verification
    - EventRouter: publish API used by REST mutation handlers
    - PresenceTracker: online/offline/away state derived from the registry
"""
