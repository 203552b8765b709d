"""FastAPI dependencies for authenticated REST endpoints."""
from fastapi import Request

from app.config import get_config
from app.errors import UnauthorizedError

from .tokens import Identity, extract_bearer_token, verify_token


async def get_current_identity(request: Request) -> Identity:
    """Resolve the caller from the Authorization header or the token cookie."""
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        token = request.cookies.get(get_config().auth.token_cookie)
    if not token:
        raise UnauthorizedError("Authentication required")
    return verify_token(token)
