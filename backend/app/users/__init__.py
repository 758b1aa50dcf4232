"""User directory module (in-memory store + thin HTTP layer)."""

from .schemas import User, UserResponse, UserStatus
from .service import UserDirectory, UsernameTakenError
from .router import router

__all__ = [
    "User",
    "UserResponse",
    "UserStatus",
    "UserDirectory",
    "UsernameTakenError",
    "router",
]
