"""Pydantic schemas for the user directory."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserStatus(str, Enum):
    """Presence status shown next to a user."""
    ONLINE = "online"
    IDLE = "idle"
    DND = "dnd"
    OFFLINE = "offline"
    MOBILE = "mobile"


class User(BaseModel):
    """Full user record held by the directory."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    username: str
    avatar: Optional[str] = None
    status: UserStatus = UserStatus.ONLINE
    createdAt: datetime = Field(default_factory=_utcnow)
    lastActiveAt: datetime = Field(default_factory=_utcnow)


class CreateUserRequest(BaseModel):
    """Request body for creating a user."""
    name: str = Field(default="")
    username: str = Field(default="")
    avatar: Optional[str] = None


class UserResponse(BaseModel):
    """Public view of a user."""
    id: str
    name: str
    username: str
    avatar: Optional[str] = None
    status: UserStatus
    lastActiveAt: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            username=user.username,
            avatar=user.avatar,
            status=user.status,
            lastActiveAt=user.lastActiveAt,
        )


class CreateUserResponse(BaseModel):
    """Response for a newly created user, including its bearer token."""
    id: str
    name: str
    username: str
    avatar: Optional[str] = None
    status: UserStatus
    token: str
    createdAt: datetime


class UpdateStatusRequest(BaseModel):
    status: UserStatus
