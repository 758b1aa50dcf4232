"""UserDirectory: in-memory user store for the thin HTTP layer.

Usernames are stored trimmed and lowercased, and lookups by username are
case-insensitive. Persistence is out of scope; the directory lives as long
as the process.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .schemas import User, UserStatus

logger = logging.getLogger(__name__)

# Default page size for user listings
DEFAULT_PAGE_SIZE = 50


class UsernameTakenError(Exception):
    """Raised when creating a user whose username already exists."""


def _normalize_username(username: str) -> str:
    return username.strip().lower()


class UserDirectory:
    """Create, look up, list and update users."""

    def __init__(self) -> None:
        # user_id -> User
        self._users: Dict[str, User] = {}
        # normalized username -> user_id
        self._by_username: Dict[str, str] = {}

    def create(self, name: str, username: str, avatar: Optional[str] = None) -> User:
        """Create a user.

        Raises:
            UsernameTakenError: If the username is already registered.
        """
        key = _normalize_username(username)
        if key in self._by_username:
            raise UsernameTakenError(username)

        user = User(name=name.strip(), username=key, avatar=avatar)
        self._users[user.id] = user
        self._by_username[key] = user.id
        logger.info("[Users] Created user %s (%s)", user.id, user.username)
        return user

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        user_id = self._by_username.get(_normalize_username(username))
        return self._users.get(user_id) if user_id else None

    def username_exists(self, username: str) -> bool:
        return _normalize_username(username) in self._by_username

    def list_users(self, skip: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> List[User]:
        """Return a page of users, most recently active first."""
        ordered = sorted(self._users.values(), key=lambda u: u.lastActiveAt, reverse=True)
        return ordered[skip:skip + limit]

    def update_status(self, user_id: str, status: UserStatus) -> Optional[User]:
        """Set a user's status and bump its last-active time."""
        user = self._users.get(user_id)
        if user is None:
            return None
        user.status = status
        user.lastActiveAt = datetime.now(timezone.utc)
        return user

    def touch(self, user_id: str) -> None:
        """Bump a user's last-active time."""
        user = self._users.get(user_id)
        if user is not None:
            user.lastActiveAt = datetime.now(timezone.utc)
