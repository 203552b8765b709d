"""JWT issue/verify helpers shared by the REST layer and the WebSocket handshake."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ConfigDict

from app.config import get_config
from app.errors import UnauthorizedError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class Identity(BaseModel):
    """Authenticated user bound to a request or a realtime connection.

    Attributes:
        id: Stable user identifier (the token subject).
        email: Email claim carried by the token.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""


def create_access_token(
    user_id: str,
    email: str,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a signed access token for ``user_id``.

    Args:
        user_id: Token subject.
        email: Email claim.
        expires_minutes: Lifetime override; defaults to ``auth.token_expire_minutes``.

    Returns:
        Encoded JWT string.
    """
    config = get_config()
    lifetime = expires_minutes if expires_minutes is not None else config.auth.token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=lifetime)
    claims = {"sub": user_id, "email": email, "exp": expire}
    return jwt.encode(
        claims,
        config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )


def verify_token(token: str) -> Identity:
    """Verify a token and return the identity it carries.

    Raises:
        UnauthorizedError: The token is expired, malformed, or lacks a subject.
    """
    config = get_config()
    try:
        payload = jwt.decode(
            token,
            config.secrets.jwt.secret_key,
            algorithms=[config.secrets.jwt.algorithm],
        )
    except ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except JWTError as e:
        logger.debug("JWT decode error: %s", e)
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise UnauthorizedError("Token verification failed")
    return Identity(id=str(user_id), email=str(payload.get("email") or ""))


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token part of an ``Authorization: Bearer <token>`` value."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None
