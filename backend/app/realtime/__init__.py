"""Real-time relay core: connection registry, membership index, dispatcher."""

from .dispatcher import MessageDispatcher
from .membership import ConversationMembershipIndex
from .registry import Connection, ConnectionRegistry, ConnectionState

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "ConversationMembershipIndex",
    "MessageDispatcher",
]
