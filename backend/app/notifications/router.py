"""Notifications router: the caller's own notification inbox.

Notifications are written by the tasks router before the matching
``notification:new`` realtime event is pushed, so a client that was offline
can always catch up here.
"""
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response

from app.auth.dependencies import get_current_identity
from app.auth.tokens import Identity
from app.errors import NotFoundError

from .service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def _service() -> NotificationService:
    return NotificationService.get_instance()


@router.get("")
async def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """List the caller's notifications, newest first."""
    return JSONResponse(_service().list_for_user(identity.id, limit))


@router.get("/unread-count")
async def unread_count(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    return JSONResponse({"count": _service().unread_count(identity.id)})


@router.patch("/read-all")
async def mark_all_read(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    count = _service().mark_all_read(identity.id)
    logger.info("[notifications] Marked %d as read for %s", count, identity.id)
    return JSONResponse({"updatedCount": count})


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Mark one notification as read.

    Raises:
        NotFoundError: No such notification for the caller.
    """
    notification = _service().mark_read(notification_id, identity.id)
    if notification is None:
        raise NotFoundError("Notification not found")
    return JSONResponse(notification)


@router.delete("")
async def delete_all_notifications(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    count = _service().delete_all(identity.id)
    logger.info("[notifications] Deleted %d for %s", count, identity.id)
    return JSONResponse({"deletedCount": count})


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    identity: Identity = Depends(get_current_identity),
) -> Response:
    if not _service().delete(notification_id, identity.id):
        raise NotFoundError("Notification not found")
    logger.info("[notifications] Deleted %s for %s", notification_id, identity.id)
    return Response(status_code=204)
