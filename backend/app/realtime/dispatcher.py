"""Per-connection read loop and inbound envelope dispatch.

Protocol Message Types (client -> server):
    - join_conversation: Add the sender to ``conversationId``
    - leave_conversation: Remove the sender from ``conversationId``
    - typing_start / typing_stop: Relay a typing indicator to the other
      members of ``conversationId``
    - ping: Reply to the sender with ``pong``

Types are matched case-insensitively. Unknown types, envelopes missing a
required field, and frames that fail to decode are dropped without closing
the connection or replying with an error.
"""
import logging
from typing import Optional

from fastapi import WebSocket
from pydantic import ValidationError

from .envelopes import InboundEnvelope, InboundType, OutboundType, Pong, UserTyping, decode_inbound
from .membership import ConversationMembershipIndex
from .registry import Connection, ConnectionRegistry, ConnectionState

logger = logging.getLogger(__name__)

# Frames larger than this are dropped unread.
DEFAULT_MAX_MESSAGE_BYTES = 4096

_CONVERSATION_SCOPED = {
    InboundType.JOIN_CONVERSATION.value,
    InboundType.LEAVE_CONVERSATION.value,
    InboundType.TYPING_START.value,
    InboundType.TYPING_STOP.value,
}


class MessageDispatcher:
    """Runs the read loop for each connection and routes its envelopes."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        membership: ConversationMembershipIndex,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
    ) -> None:
        self.registry = registry
        self.membership = membership
        self.max_message_bytes = max_message_bytes

    async def handle_connection(self, user_id: str, websocket: WebSocket) -> None:
        """Serve one accepted WebSocket until it closes.

        The connection is always removed from the registry when the loop
        exits, whether the peer closed, the transport failed, or the task was
        cancelled.
        """
        connection = await self.registry.add_connection(user_id, websocket)
        try:
            await self._read_loop(connection)
        except Exception as e:
            logger.error(f"[WS] WebSocket error for user {user_id}: {e}", exc_info=True)
        finally:
            connection.mark_closed()
            await self.registry.remove_connection(user_id, connection.connection_id)

    async def _read_loop(self, connection: Connection) -> None:
        websocket = connection.websocket
        while connection.state != ConnectionState.CLOSED:
            message = await websocket.receive()
            message_type = message.get("type")

            if message_type == "websocket.disconnect":
                connection.state = ConnectionState.CLOSING
                logger.info(
                    f"[WS] User {connection.user_id} closed connection "
                    f"(code={message.get('code')})"
                )
                return

            text = message.get("text")
            if text is None:
                if message.get("bytes") is not None:
                    logger.debug(f"[WS] Ignoring binary frame from user {connection.user_id}")
                continue

            await self.handle_text(connection.user_id, text)

    async def handle_text(self, user_id: str, text: str) -> None:
        """Decode one text frame and dispatch it; protocol errors are dropped."""
        if len(text.encode("utf-8")) > self.max_message_bytes:
            logger.warning(
                f"[WS] Dropping oversized frame ({len(text)} chars) from user {user_id}"
            )
            return

        try:
            envelope = decode_inbound(text)
        except ValidationError as e:
            logger.warning(
                f"[WS] Error handling message from user {user_id}: {text[:100]!r} "
                f"({e.error_count()} validation error(s))"
            )
            return

        await self.dispatch(user_id, envelope)

    async def dispatch(self, user_id: str, envelope: InboundEnvelope) -> None:
        """Route a decoded envelope by its type."""
        message_type = envelope.type
        conversation_id: Optional[str] = envelope.conversationId
        logger.debug("[WS] User %s sent: type=%s", user_id, message_type or "?")

        if message_type in _CONVERSATION_SCOPED and not conversation_id:
            logger.debug(f"[WS] Ignoring {message_type} without conversationId from user {user_id}")
            return

        # --- Handle JOIN_CONVERSATION ---
        if message_type == InboundType.JOIN_CONVERSATION:
            self.membership.join(user_id, conversation_id)
            return

        # --- Handle LEAVE_CONVERSATION ---
        if message_type == InboundType.LEAVE_CONVERSATION:
            self.membership.leave(user_id, conversation_id)
            return

        # --- Handle TYPING indicators (sender excluded) ---
        if message_type in (InboundType.TYPING_START, InboundType.TYPING_STOP):
            outbound_type = (
                OutboundType.USER_TYPING_START
                if message_type == InboundType.TYPING_START
                else OutboundType.USER_TYPING_STOP
            )
            await self.membership.send_to_conversation(
                conversation_id,
                UserTyping(type=outbound_type, userId=user_id, conversationId=conversation_id),
                exclude_user_id=user_id,
            )
            return

        # --- Handle PING ---
        if message_type == InboundType.PING:
            await self.registry.send_to_user(user_id, Pong(userId=user_id))
            return

        logger.debug(f"[WS] Ignoring unknown message type {message_type!r} from user {user_id}")
