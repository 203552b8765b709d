"""Handshake authentication for realtime connections.

A connection must present a bearer token before it is admitted. The token is
read, in order, from:
    1. the ``token`` query parameter (the dedicated handshake field)
    2. an ``Authorization: Bearer <token>`` header
    3. the ``token`` cookie

Verification reuses the REST layer's ``verify_token``. Any failure raises
UnauthorizedError before a Connection record exists.
"""
import logging
from typing import Callable, Optional

from fastapi import WebSocket

from app.auth.tokens import Identity, extract_bearer_token, verify_token
from app.config import AppSettings
from app.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class ConnectionAuthenticator:
    """Extracts and verifies the credential presented at handshake time."""

    def __init__(
        self,
        verifier: Callable[[str], Identity] = verify_token,
        query_param: str = "token",
        cookie_name: str = "token",
    ) -> None:
        self._verifier = verifier
        self.query_param = query_param
        self.cookie_name = cookie_name

    @classmethod
    def from_config(cls, config: AppSettings) -> "ConnectionAuthenticator":
        return cls(
            query_param=config.auth.token_query_param,
            cookie_name=config.auth.token_cookie,
        )

    def extract_token(self, websocket: WebSocket) -> Optional[str]:
        token = websocket.query_params.get(self.query_param)
        if token:
            return token
        token = extract_bearer_token(websocket.headers.get("authorization"))
        if token:
            return token
        return websocket.cookies.get(self.cookie_name) or None

    def authenticate(self, websocket: WebSocket) -> Identity:
        """Return the identity to bind to this connection.

        Raises:
            UnauthorizedError: No credential, or the verifier rejected it.
        """
        token = self.extract_token(websocket)
        if not token:
            raise UnauthorizedError("Authentication required")
        identity = self._verifier(token)
        logger.debug("[Auth] Handshake verified for identity %s", identity.id)
        return identity
