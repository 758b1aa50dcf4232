"""Relay WebSocket endpoint.

This module provides:
    - WebSocket /ws/connect?userId=<id>: Presence and typing relay

Protocol Flow:
    1. Client connects with ``userId`` → missing/blank id is denied with
       HTTP 400 before the upgrade
    2. Server accepts, registers the connection and bumps the user's lastActiveAt
       → Server sends: {type: "connection_established", userId, connectionId, timestamp}
    3. Client sends: {type: "join_conversation" | "leave_conversation", conversationId}
    4. Client sends: {type: "typing_start" | "typing_stop", conversationId}
       → Other members receive: {type: "user_typing_start" | "user_typing_stop", userId, conversationId, timestamp}
    5. Client sends: {type: "ping"} → Server sends: {type: "pong", userId, timestamp}
    6. On close → connection removed from the registry (memberships are kept)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket
from fastapi.responses import PlainTextResponse

from app.auth.middleware import get_identity

from .dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)

DEFAULT_WS_PATH = "/ws/connect"


async def _deny(websocket: WebSocket, status_code: int, detail: str) -> None:
    """Reject a handshake before upgrading.

    Falls back to a policy-violation close when the server does not support
    the WebSocket denial response extension.
    """
    try:
        await websocket.send_denial_response(PlainTextResponse(detail, status_code=status_code))
    except RuntimeError:
        await websocket.close(code=1008, reason=detail)


async def websocket_connect(
    websocket: WebSocket,
    userId: Optional[str] = Query(None, description="Connecting user's ID"),
) -> None:
    """WebSocket endpoint serving one relay connection until it closes."""
    user_id = (userId or "").strip()
    if not user_id:
        logger.warning("[WS] Rejecting connection request without userId")
        await _deny(websocket, 400, "User ID is required.")
        return

    # A verified identity must match the requested user id.
    identity = get_identity(websocket)
    if identity is not None and identity.user_id != user_id:
        logger.warning(
            f"[WS] Rejecting connection for user {user_id}: token belongs to {identity.user_id}"
        )
        await _deny(websocket, 403, "Token does not match userId.")
        return

    logger.info(f"[WS] WebSocket connection request for user {user_id}")
    dispatcher: MessageDispatcher = websocket.app.state.dispatcher

    await websocket.accept()
    # Ids never created through /api/users are ignored by touch().
    websocket.app.state.user_directory.touch(user_id)
    await dispatcher.handle_connection(user_id, websocket)


def create_router(ws_path: str = DEFAULT_WS_PATH) -> APIRouter:
    """Build the relay router with the WebSocket mounted at ``ws_path``."""
    router = APIRouter(tags=["realtime"])
    router.add_api_websocket_route(ws_path, websocket_connect)
    return router
