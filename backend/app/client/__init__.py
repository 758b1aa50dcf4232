"""Client-side session manager for the presence relay."""

from .events import EventEmitter
from .session import (
    ClientSession,
    ConnectTimeoutError,
    SessionConnectError,
    SessionState,
    reconnect_delay,
)

__all__ = [
    "ClientSession",
    "ConnectTimeoutError",
    "EventEmitter",
    "SessionConnectError",
    "SessionState",
    "reconnect_delay",
]
