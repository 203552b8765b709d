"""Realtime router providing the WebSocket endpoint and presence queries.

This module provides:
    - WebSocket /ws: authenticated event stream for one browser tab/device
    - GET /realtime/presence: online identities and their status
    - GET /realtime/presence/{user_id}: status of a single identity

Protocol:
    1. Client connects with a token (``?token=``, Bearer header or cookie).
       Missing/invalid/expired tokens close the handshake with 1008 before
       anything is registered.
    2. The connection is admitted and subscribed to ``identity:{userId}``.
       If it is the user's first connection, every open connection (itself
       included) receives ``presence:changed {userId, status: "online"}``.
    3. Client sends control frames ``{"event": ..., "data": ...}``:
       task:join, task:leave, task:typing, presence:update.
    4. Server pushes ``{"event": ..., "data": ...}`` frames published by the
       REST layer or by other clients.
    5. On disconnect the connection is removed from every topic; when the
       user's last connection closes, ``presence:changed offline`` is
       broadcast.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from app.auth.dependencies import get_current_identity
from app.auth.tokens import Identity
from app.config import get_config
from app.errors import UnauthorizedError

from .authenticator import ConnectionAuthenticator
from .hub import hub
from .registry import Connection, ConnectionLimitError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _receive_frame(websocket: WebSocket) -> Any:
    """Wait for the next text frame and decode it.

    Raises:
        WebSocketDisconnect: The client went away.
        ValueError: The frame is binary, not valid JSON or nested too deeply
            for the decoder.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
    text = message.get("text")
    if text is None:
        raise ValueError("Binary frames are not supported")
    try:
        return json.loads(text)
    except RecursionError:
        raise ValueError("Frame is nested too deeply")


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one realtime connection.

    Args:
        websocket: The WebSocket connection (not yet accepted).
    """
    authenticator = ConnectionAuthenticator.from_config(get_config())
    try:
        identity = authenticator.authenticate(websocket)
    except UnauthorizedError as e:
        logger.warning("[WS] Rejected connection from %s: %s", websocket.client, e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    connection = Connection(
        connection_id=str(uuid.uuid4()),
        identity=identity,
        transport=websocket,
        loop=asyncio.get_running_loop(),
    )

    # Admit before accepting so the connection is routable as soon as the
    # client sees the handshake complete; frames queue until the writer starts.
    try:
        hub.connect(connection)
    except ConnectionLimitError as e:
        logger.warning("[WS] Rejected connection for %s: %s", identity.id, e)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Too many connections")
        return

    logger.info(f"[WS] User connected: {identity.id} (connection {connection.id})")
    writer = None
    try:
        await websocket.accept()
        writer = asyncio.create_task(connection.run_writer())

        while True:
            try:
                frame = await _receive_frame(websocket)
            except ValueError as e:
                logger.warning("[WS] Ignoring undecodable frame from %s: %s", connection.id, e)
                continue
            hub.handle_control(connection, frame)

    except WebSocketDisconnect as e:
        logger.info(f"[WS] User disconnected: {identity.id} (connection {connection.id}, code {e.code})")
    finally:
        hub.disconnect(connection.id)
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass


@router.get("/realtime/presence")
async def list_presence(identity: Identity = Depends(get_current_identity)) -> Dict[str, List[dict]]:
    """List every online identity with its presence status and open connection count."""
    snapshot = hub.presence.snapshot()
    return {
        "online": [
            {
                "userId": user_id,
                "status": presence.value,
                "connections": hub.registry.session_count(user_id),
            }
            for user_id, presence in sorted(snapshot.items())
        ]
    }


@router.get("/realtime/presence/{user_id}")
async def get_presence(user_id: str, identity: Identity = Depends(get_current_identity)) -> dict:
    """Presence status of a single identity (``offline`` if not connected)."""
    return {"userId": user_id, "status": hub.presence.status_of(user_id).value}
