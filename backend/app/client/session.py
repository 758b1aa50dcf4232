"""Reconnecting client session for the presence relay.

A :class:`ClientSession` owns one logical connection to the relay and keeps it
alive across transient network failures.

Key features:
    - Single-flight connect: concurrent ``connect`` calls share one attempt
    - Bounded connect attempts (``connect_timeout``)
    - Capped exponential backoff: ``delay = reconnect_interval * 2 ** (attempt - 1)``
    - Heartbeat pings while the connection is open
    - Synchronous, exception-isolated event delivery (see :mod:`.events`)

State machine::

    idle -> connecting -> open -> closing -> idle
                 \\________________________/
                  reconnect scheduled (parallel flag)

Events:
    - connected: ``{"userId"}`` after the socket opens
    - disconnected: ``{"userId", "code", "reason"}`` after the socket closes
    - reconnecting: ``{"attempt", "delay"}`` when a retry is scheduled
    - max_reconnects_reached: retry limit exhausted (terminal until ``connect``)
    - error: ``{"type": "connection_error" | "connection_timeout" | "parse_error", "error"}``
    - message: every decoded inbound envelope, then again under its ``type``

Usage:
    session = ClientSession(get_config().client)
    session.on("user_typing_start", lambda msg: print(msg["userId"], "is typing"))
    await session.connect("alice")
    await session.join_conversation("general")
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from app.config import ClientSettings
from app.realtime.envelopes import InboundEnvelope, InboundType

from .events import EventEmitter, Listener

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

Connector = Callable[[str], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]
OutboundMessage = Union[InboundEnvelope, Dict[str, Any]]


class SessionState(str, Enum):
    """Lifecycle of the physical connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class SessionConnectError(Exception):
    """A connect attempt failed."""


class ConnectTimeoutError(SessionConnectError):
    """A connect attempt did not open within ``connect_timeout``."""


def reconnect_delay(attempt: int, base_interval: float) -> float:
    """Backoff delay in seconds before reconnect ``attempt`` (1-based)."""
    return base_interval * 2 ** (attempt - 1)


async def _websockets_connector(url: str) -> Any:
    return await websockets.connect(url)


class ClientSession:
    """One durable logical connection to the relay."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        connector: Optional[Connector] = None,
        backoff_sleep: Optional[Sleeper] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.events = EventEmitter()
        self.reconnect_attempts = 0

        self._connector = connector or _websockets_connector
        self._backoff_sleep = backoff_sleep or asyncio.sleep

        self._ws: Any = None
        self._user_id: Optional[str] = None
        self._state = SessionState.IDLE

        self._connect_task: Optional[asyncio.Future] = None
        self._reconnect_task: Optional[asyncio.Future] = None
        self._reader_task: Optional[asyncio.Future] = None
        self._heartbeat_task: Optional[asyncio.Future] = None
        # Strong references for fire-and-forget tasks.
        self._background: Set[asyncio.Future] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.OPEN and self._ws is not None

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    # =========================================================================
    # Event subscription
    # =========================================================================

    def on(self, event: str, listener: Listener) -> Listener:
        return self.events.on(event, listener)

    def off(self, event: str, listener: Optional[Listener] = None) -> None:
        self.events.off(event, listener)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, user_id: str) -> None:
        """Open the connection for ``user_id``.

        Cancels any scheduled automatic reconnect and restores the full
        reconnect allowance. If a connect is already in flight, waits for that
        attempt instead of opening a second socket.

        Raises:
            ConnectTimeoutError: The socket did not open within connect_timeout.
            SessionConnectError: The attempt failed or was cancelled by disconnect().
        """
        self._cancel_reconnect()
        self.reconnect_attempts = 0
        await self._connect(user_id)

    async def _connect(self, user_id: str) -> None:
        task = self._connect_task
        if task is None or task.done():
            if self.is_connected and self._user_id == user_id:
                return
            task = asyncio.ensure_future(self._open(user_id))
            self._connect_task = task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise SessionConnectError("Connection attempt cancelled by disconnect()") from None
            raise

    async def _open(self, user_id: str) -> None:
        if self._ws is not None:
            await self._drop_transport()

        self._user_id = user_id
        self._state = SessionState.CONNECTING
        url = self._build_url(user_id)
        logger.info(f"[Session] Connecting to WebSocket: {url}")

        try:
            ws = await asyncio.wait_for(
                self._open_transport(url), timeout=self.settings.connect_timeout
            )
        except asyncio.TimeoutError as e:
            self._state = SessionState.IDLE
            logger.error(f"[Session] Connection timeout after {self.settings.connect_timeout}s")
            self.events.emit("error", {"type": "connection_timeout", "error": e})
            self._schedule_reconnect()
            raise ConnectTimeoutError(
                f"WebSocket connection timeout after {self.settings.connect_timeout}s"
            ) from e
        except Exception as e:
            self._state = SessionState.IDLE
            logger.error(f"[Session] WebSocket connection failed: {e}")
            self.events.emit("error", {"type": "connection_error", "error": e})
            self._schedule_reconnect()
            raise SessionConnectError(f"WebSocket connection failed: {e}") from e

        if self._user_id != user_id:
            # disconnect() ran after the socket opened but before we resumed.
            await self._close_quietly(ws, reason="User disconnected")
            raise SessionConnectError("Connection attempt cancelled by disconnect()")

        self._ws = ws
        self._state = SessionState.OPEN
        self.reconnect_attempts = 0
        self._reader_task = asyncio.ensure_future(self._read_loop(ws))
        if self.settings.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.ensure_future(self._heartbeat_loop(ws))

        logger.info(f"[Session] WebSocket connected for user: {user_id}")
        self.events.emit("connected", {"userId": user_id})

    async def _open_transport(self, url: str) -> Any:
        """Run the connector, closing its socket if the attempt is cancelled."""
        attempt = asyncio.ensure_future(self._connector(url))
        try:
            return await asyncio.shield(attempt)
        except asyncio.CancelledError:
            if not attempt.cancel() and not attempt.cancelled() and attempt.exception() is None:
                await self._close_quietly(attempt.result(), reason="Connection attempt cancelled")
            raise

    async def disconnect(self) -> None:
        """Close the connection on purpose and stop automatic reconnects."""
        self.reconnect_attempts = self.settings.max_reconnect_attempts
        self._cancel_reconnect()
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        user_id, self._user_id = self._user_id, None
        ws = self._ws
        if ws is not None:
            self._state = SessionState.CLOSING
            await self._drop_transport(reason="User disconnected")
            self.events.emit(
                "disconnected",
                {"userId": user_id, "code": NORMAL_CLOSURE, "reason": "User disconnected"},
            )

        self._state = SessionState.IDLE
        logger.info("[Session] WebSocket manually disconnected")

    async def _drop_transport(self, reason: str = "") -> None:
        """Close and forget the current socket without touching retry state."""
        ws, self._ws = self._ws, None
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._heartbeat_task = None
        self._reader_task = None
        if ws is not None:
            await self._close_quietly(ws, reason=reason)

    async def _close_quietly(self, ws: Any, reason: str = "") -> None:
        try:
            await ws.close(code=NORMAL_CLOSURE, reason=reason)
        except Exception as e:
            logger.debug(f"[Session] Error closing WebSocket: {e}")

    def _build_url(self, user_id: str) -> str:
        base = self.settings.url.rstrip("/")
        return f"{base}{self.settings.ws_path}?{urlencode({'userId': user_id})}"

    # =========================================================================
    # Reconnect / backoff
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        if not self._user_id or self.reconnect_scheduled:
            return

        max_attempts = self.settings.max_reconnect_attempts
        if self.reconnect_attempts < max_attempts:
            self.reconnect_attempts += 1
            delay = reconnect_delay(self.reconnect_attempts, self.settings.reconnect_interval)
            logger.info(
                f"[Session] Reconnecting in {delay:.1f}s "
                f"(attempt {self.reconnect_attempts}/{max_attempts})"
            )
            self.events.emit("reconnecting", {"attempt": self.reconnect_attempts, "delay": delay})
            self._reconnect_task = asyncio.ensure_future(self._reconnect_after(delay))
        else:
            logger.error("[Session] Max reconnection attempts reached")
            self.events.emit("max_reconnects_reached")

    async def _reconnect_after(self, delay: float) -> None:
        await self._backoff_sleep(delay)
        self._reconnect_task = None
        user_id = self._user_id
        if not user_id:
            return
        try:
            await self._connect(user_id)
        except SessionConnectError as e:
            logger.error(f"[Session] Reconnection failed: {e}")

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # =========================================================================
    # Read loop / heartbeat
    # =========================================================================

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"[Session] WebSocket error: {e}")
            self.events.emit("error", {"type": "connection_error", "error": e})

        # Replaced or closed on purpose: nothing left to do.
        if ws is not self._ws:
            return

        code = getattr(ws, "close_code", None) or ABNORMAL_CLOSURE
        reason = getattr(ws, "close_reason", None) or ""
        self._on_closed(code, reason)

    def _on_closed(self, code: int, reason: str) -> None:
        self._ws = None
        self._state = SessionState.IDLE
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._reader_task = None

        logger.info(f"[Session] WebSocket disconnected: {code} {reason}")
        self.events.emit("disconnected", {"userId": self._user_id, "code": code, "reason": reason})

        if code != NORMAL_CLOSURE:
            self._schedule_reconnect()

    def _handle_frame(self, raw: Union[str, bytes]) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"[Session] Error parsing WebSocket message: {e}")
            self.events.emit("error", {"type": "parse_error", "error": e})
            return
        if not isinstance(message, dict):
            self.events.emit("error", {"type": "parse_error", "error": ValueError("not an object")})
            return

        logger.debug("[Session] WebSocket message received: type=%s", message.get("type"))
        self.events.emit("message", message)
        message_type = message.get("type")
        if isinstance(message_type, str) and message_type:
            self.events.emit(message_type, message)

    async def _heartbeat_loop(self, ws: Any) -> None:
        interval = self.settings.heartbeat_interval
        while self._ws is ws:
            await asyncio.sleep(interval)
            if self._ws is not ws:
                return
            await self.ping()

    # =========================================================================
    # Host environment signals
    # =========================================================================

    def notify_visible(self) -> Optional[asyncio.Future]:
        """Host regained foreground: reconnect if we should be connected."""
        if self._user_id and not self.is_connected:
            logger.info("[Session] Became visible, reconnecting...")
            return self._spawn(self._reconnect_now(self._user_id))
        return None

    def notify_shutdown(self) -> asyncio.Future:
        """Host is shutting down: best-effort disconnect."""
        return self._spawn(self.disconnect())

    async def _reconnect_now(self, user_id: str) -> None:
        try:
            await self._connect(user_id)
        except SessionConnectError as e:
            logger.error(f"[Session] Reconnection failed: {e}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def __aenter__(self) -> "ClientSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # =========================================================================
    # Outbound envelopes
    # =========================================================================

    async def send(self, envelope: OutboundMessage) -> bool:
        """Send one envelope if the socket is open. Never queues.

        Returns:
            True if the socket was open and the frame was written.
        """
        if isinstance(envelope, InboundEnvelope):
            payload = envelope.model_dump(exclude_none=True)
        else:
            payload = envelope

        ws = self._ws
        if ws is None or self._state != SessionState.OPEN:
            logger.warning(f"[Session] WebSocket not connected, message not sent: {payload}")
            return False
        try:
            await ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            logger.warning(f"[Session] WebSocket closed while sending: {e}")
            return False
        logger.debug("[Session] WebSocket message sent: type=%s", payload.get("type"))
        return True

    async def join_conversation(self, conversation_id: str) -> bool:
        return await self.send(
            InboundEnvelope(type=InboundType.JOIN_CONVERSATION.value, conversationId=conversation_id)
        )

    async def leave_conversation(self, conversation_id: str) -> bool:
        return await self.send(
            InboundEnvelope(type=InboundType.LEAVE_CONVERSATION.value, conversationId=conversation_id)
        )

    async def start_typing(self, conversation_id: str) -> bool:
        return await self.send(
            InboundEnvelope(type=InboundType.TYPING_START.value, conversationId=conversation_id)
        )

    async def stop_typing(self, conversation_id: str) -> bool:
        return await self.send(
            InboundEnvelope(type=InboundType.TYPING_STOP.value, conversationId=conversation_id)
        )

    async def ping(self) -> bool:
        return await self.send(InboundEnvelope(type=InboundType.PING.value))
