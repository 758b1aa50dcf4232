"""Connection registry for the presence relay.

This module owns the mapping from user identity to its live WebSocket
connection. It is the server-side authority for "who is online".

Key features:
    - One active connection per user (a newer connection evicts the older one)
    - Per-connection send lock so concurrent deliveries never interleave
    - Best-effort delivery: write failures are logged, never raised
    - Concurrent broadcast with asyncio.gather()

Concurrency:
    The registry is shared by every connection's read loop. Each mutation
    performs its lookup and update without an ``await`` in between, so it is
    atomic on the event loop without a registry-wide lock. Sends to a single
    connection are serialized by that connection's own lock.
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Dict, List, Optional, Union

from fastapi import WebSocket

from .envelopes import ConnectionEstablished, Disconnection, OutboundEnvelope

logger = logging.getLogger(__name__)

# Close code and reason used when a newer connection for the same user
# replaces an existing one. Normal closure keeps the old client from
# reconnecting and fighting the new one.
SUPERSEDED_CLOSE_CODE = 1000
SUPERSEDED_CLOSE_REASON = "Superseded by a newer connection"
REMOVED_CLOSE_REASON = "Connection removed"

Envelope = Union[OutboundEnvelope, dict]


class ConnectionState(str, Enum):
    """Liveness of a registered connection."""
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """A registered WebSocket plus its identity and liveness state.

    Attributes:
        connection_id: Backend-generated identifier (UUID4 string).
        user_id: The user this connection belongs to.
        websocket: The underlying accepted WebSocket.
        state: Current liveness state.
    """

    def __init__(self, user_id: str, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or str(uuid.uuid4())
        self.user_id = user_id
        self.websocket = websocket
        self.state = ConnectionState.OPEN
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    async def send(self, envelope: Envelope) -> bool:
        """Write one envelope to the socket.

        Returns:
            True if the frame was written, False if the connection is not
            open or the write failed.
        """
        payload = envelope.to_wire() if isinstance(envelope, OutboundEnvelope) else envelope
        async with self._send_lock:
            if not self.is_open:
                return False
            try:
                await self.websocket.send_json(payload)
                return True
            except Exception as e:
                logger.warning(
                    f"[Registry] Failed to send to user {self.user_id} "
                    f"(connection {self.connection_id}): {e}"
                )
                return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket from the server side (best effort)."""
        async with self._send_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING
            try:
                await self.websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"[Registry] Close failed for connection {self.connection_id}: {e}")

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED


class ConnectionRegistry:
    """Maps user identities to their single live connection."""

    def __init__(self) -> None:
        # connection_id -> Connection
        self._connections: Dict[str, Connection] = {}

        # user_id -> connection_id
        self._user_connections: Dict[str, str] = {}

    async def add_connection(self, user_id: str, websocket: WebSocket) -> Connection:
        """Register an accepted WebSocket for a user.

        Any connection previously registered for ``user_id`` is unmapped and
        closed with normal closure. The new connection then receives a
        ``connection_established`` envelope.

        Args:
            user_id: Identity the connection belongs to.
            websocket: The accepted WebSocket.

        Returns:
            The registered Connection.
        """
        connection = Connection(user_id, websocket)

        previous_id = self._user_connections.get(user_id)
        previous = self._connections.pop(previous_id, None) if previous_id else None
        self._connections[connection.connection_id] = connection
        self._user_connections[user_id] = connection.connection_id

        logger.info(f"[Registry] User {user_id} connected with connection ID {connection.connection_id}")

        if previous is not None:
            logger.info(
                f"[Registry] Evicting superseded connection {previous.connection_id} for user {user_id}"
            )
            await previous.close(code=SUPERSEDED_CLOSE_CODE, reason=SUPERSEDED_CLOSE_REASON)

        await connection.send(
            ConnectionEstablished(userId=user_id, connectionId=connection.connection_id)
        )
        return connection

    async def remove_connection(self, user_id: str, connection_id: Optional[str] = None) -> None:
        """Unregister and close a user's connection. Idempotent.

        Args:
            user_id: The user whose connection is going away.
            connection_id: When given, only act if this is still the user's
                current connection; a superseded connection is just discarded.
        """
        current_id = self._user_connections.get(user_id)

        if connection_id is not None and current_id != connection_id:
            stale = self._connections.pop(connection_id, None)
            if stale is not None:
                stale.mark_closed()
                logger.debug(f"[Registry] Discarded stale connection {connection_id} for user {user_id}")
            return

        if current_id is None:
            return

        self._user_connections.pop(user_id, None)
        connection = self._connections.pop(current_id, None)
        if connection is not None:
            # No-op when the read loop already saw the peer close.
            await connection.close(code=1000, reason=REMOVED_CLOSE_REASON)
            connection.mark_closed()

        logger.info(f"[Registry] User {user_id} disconnected with connection ID {current_id}")

        # The mapping is already gone, so this only reaches the user if a new
        # connection was registered in the meantime.
        await self.send_to_user(user_id, Disconnection(userId=user_id))

    async def send_to_user(self, user_id: str, envelope: Envelope) -> bool:
        """Deliver an envelope to one user's connection.

        Returns:
            True if written, False if the user is offline or the write failed.
        """
        connection = self.get_connection(user_id)
        if connection is None:
            return False
        return await connection.send(envelope)

    async def broadcast(self, envelope: Envelope) -> int:
        """Deliver an envelope to every registered connection concurrently.

        Returns:
            Number of connections the envelope was written to.
        """
        connections = list(self._connections.values())
        if not connections:
            return 0

        results = await asyncio.gather(
            *[conn.send(envelope) for conn in connections],
            return_exceptions=True
        )
        return sum(1 for result in results if result is True)

    def get_connection(self, user_id: str) -> Optional[Connection]:
        connection_id = self._user_connections.get(user_id)
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def is_connected(self, user_id: str) -> bool:
        return self.get_connection(user_id) is not None

    def connected_users(self) -> List[str]:
        return list(self._user_connections.keys())

    @property
    def connection_count(self) -> int:
        return len(self._connections)
