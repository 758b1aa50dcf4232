"""Wire envelopes exchanged over relay WebSocket connections.

Inbound envelopes are produced by clients and decoded by the dispatcher.
Outbound envelopes are produced by the server and always carry a UTC
``timestamp``. Field names follow the JSON wire format (camelCase).
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboundType(str, Enum):
    """Envelope types a client may send."""
    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    PING = "ping"


class OutboundType(str, Enum):
    """Envelope types the server emits."""
    CONNECTION_ESTABLISHED = "connection_established"
    DISCONNECTION = "disconnection"
    USER_TYPING_START = "user_typing_start"
    USER_TYPING_STOP = "user_typing_stop"
    PONG = "pong"


class InboundEnvelope(BaseModel):
    """Client-to-server envelope.

    Attributes:
        type: Tag selecting the operation; matched case-insensitively.
        conversationId: Target conversation for conversation-scoped types.
        content: Optional free text (unused by the relay core).
        data: Optional opaque payload (unused by the relay core).
    """
    type: str = Field(default="", description="Envelope type tag")
    conversationId: Optional[str] = Field(default=None, description="Conversation ID")
    content: Optional[str] = Field(default=None, description="Optional text content")
    data: Optional[Any] = Field(default=None, description="Opaque payload")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).lower()


class OutboundEnvelope(BaseModel):
    """Server-to-client envelope base."""
    type: OutboundType
    userId: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_wire(self) -> dict:
        """Return the JSON-ready dict sent over the socket."""
        return self.model_dump(mode="json", exclude_none=True)


class ConnectionEstablished(OutboundEnvelope):
    type: OutboundType = OutboundType.CONNECTION_ESTABLISHED
    connectionId: str


class Disconnection(OutboundEnvelope):
    type: OutboundType = OutboundType.DISCONNECTION


class UserTyping(OutboundEnvelope):
    """Typing indicator relayed to the other members of a conversation."""
    type: OutboundType = OutboundType.USER_TYPING_START
    conversationId: str


class Pong(OutboundEnvelope):
    type: OutboundType = OutboundType.PONG


def decode_inbound(raw: str) -> InboundEnvelope:
    """Decode one text frame.

    Raises:
        pydantic.ValidationError: If the frame is not a JSON object or a
            field has the wrong type.
    """
    return InboundEnvelope.model_validate_json(raw)
