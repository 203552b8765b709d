"""Account endpoints: register, login, logout, profile and the user list.

Register and login return ``{"user", "token"}`` and also set the token
cookie, so browsers can authenticate both REST calls and the ``/ws``
handshake without handling the token themselves.
"""
import logging

import duckdb
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.config import get_config
from app.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError

from .dependencies import get_current_identity
from .schemas import ChangePasswordRequest, LoginRequest, RegisterRequest, UpdateProfileRequest
from .tokens import Identity, create_access_token
from .users import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _service() -> UserService:
    return UserService.get_instance()


def _with_token(user: dict, status_code: int = 200) -> JSONResponse:
    """Issue a token for ``user`` and return it in the body and as a cookie."""
    auth = get_config().auth
    token = create_access_token(user["id"], user["email"])
    response = JSONResponse({"user": user, "token": token}, status_code=status_code)
    response.set_cookie(
        auth.token_cookie,
        token,
        max_age=auth.token_expire_minutes * 60,
        httponly=True,
        secure=auth.cookie_secure,
        samesite="lax",
        path="/",
    )
    return response


def _get_user_or_404(user_id: str) -> dict:
    user = _service().get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.post("/register", status_code=201)
async def register(body: RegisterRequest) -> JSONResponse:
    """Create an account and sign it in.

    Raises:
        ConflictError: The email is already registered.
    """
    if _service().get_by_email(body.email) is not None:
        raise ConflictError("Email already registered")
    try:
        user = _service().create(email=body.email, name=body.name, password=body.password)
    except duckdb.ConstraintException:
        raise ConflictError("Email already registered")
    logger.info("[auth] Registered %s", user["id"])
    return _with_token(user, status_code=201)


@router.post("/login")
async def login(body: LoginRequest) -> JSONResponse:
    user = _service().authenticate(body.email, body.password)
    if user is None:
        logger.info("[auth] Failed login for %s", body.email)
        raise UnauthorizedError("Invalid email or password")
    logger.info("[auth] Login %s", user["id"])
    return _with_token(user)


@router.post("/logout")
async def logout(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Clear the token cookie. Bearer tokens stay valid until they expire."""
    response = JSONResponse({"message": "Logout successful"})
    response.delete_cookie(get_config().auth.token_cookie, path="/")
    logger.info("[auth] Logout %s", identity.id)
    return response


@router.get("/me")
async def me(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    return JSONResponse(_get_user_or_404(identity.id))


@router.patch("/profile")
async def update_profile(
    body: UpdateProfileRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    updates = body.model_dump(exclude_unset=True)
    # A name can be changed but not removed
    if updates.get("name", "") is None:
        del updates["name"]
    user = _service().update_profile(identity.id, updates)
    if user is None:
        raise NotFoundError("User not found")
    return JSONResponse(user)


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Replace the caller's password after checking the current one.

    Raises:
        NotFoundError: The token's user no longer exists.
        BadRequestError: ``current_password`` does not match.
    """
    _get_user_or_404(identity.id)
    if not _service().check_password(identity.id, body.current_password):
        raise BadRequestError("Current password is incorrect")
    _service().set_password(identity.id, body.new_password)
    logger.info("[auth] Password changed for %s", identity.id)
    return JSONResponse({"message": "Password changed successfully"})


@router.get("/users")
async def list_users(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Every account, for choosing an assignee."""
    return JSONResponse(_service().list_users())
