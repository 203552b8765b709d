"""Application error hierarchy and FastAPI exception handlers.

Services raise these; routers let them propagate and the handler registered
in ``app.main`` turns them into ``{"error": ...}`` JSON responses.
"""
import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors


class BadRequestError(AppError):
    status_code = 400

    def __init__(self, message: str = "Bad Request", errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message, errors=errors)


class UnauthorizedError(AppError):
    """Missing, invalid or expired credentials.

    Also the authentication failure raised at WebSocket handshake time; the
    realtime endpoint converts it into a policy-violation close instead of
    an HTTP response.
    """
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409

    def __init__(self, message: str = "Resource already exists") -> None:
        super().__init__(message)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[%s %s] %s", request.method, request.url.path, exc.message)
    else:
        logger.info("[%s %s] %s (%d)", request.method, request.url.path, exc.message, exc.status_code)

    body: Dict[str, object] = {"error": exc.message}
    if exc.errors:
        body["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(body, status_code=exc.status_code, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
