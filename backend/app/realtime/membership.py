"""Conversation membership index.

Tracks which users belong to which conversation. A conversation exists in the
index only while it has at least one member. Membership is independent of
connection state: a user who drops offline stays a member until it leaves.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set

from .registry import ConnectionRegistry, Envelope

logger = logging.getLogger(__name__)


class ConversationMembershipIndex:
    """Maps conversation IDs to the set of member user IDs."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        # conversation_id -> {user_id}
        self._members: Dict[str, Set[str]] = {}

    def join(self, user_id: str, conversation_id: str) -> bool:
        """Add a user to a conversation. Idempotent.

        Returns:
            True if the user was newly added.
        """
        members = self._members.setdefault(conversation_id, set())
        if user_id in members:
            return False
        members.add(user_id)
        logger.info(f"[Membership] User {user_id} joined conversation {conversation_id}")
        return True

    def leave(self, user_id: str, conversation_id: str) -> bool:
        """Remove a user from a conversation, pruning it when empty. Idempotent.

        Returns:
            True if the user was a member.
        """
        members = self._members.get(conversation_id)
        if members is None or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            self._members.pop(conversation_id, None)
        logger.info(f"[Membership] User {user_id} left conversation {conversation_id}")
        return True

    async def send_to_conversation(
        self,
        conversation_id: str,
        envelope: Envelope,
        exclude_user_id: Optional[str] = None,
    ) -> int:
        """Deliver an envelope to every member of a conversation concurrently.

        Args:
            conversation_id: Target conversation. Unknown IDs are a no-op.
            envelope: Envelope to deliver.
            exclude_user_id: Member to skip (typically the sender).

        Returns:
            Number of members the envelope was addressed to.
        """
        recipients = [
            user_id for user_id in self.members(conversation_id)
            if user_id != exclude_user_id
        ]
        if not recipients:
            return 0

        await asyncio.gather(
            *[self._registry.send_to_user(user_id, envelope) for user_id in recipients],
            return_exceptions=True
        )
        return len(recipients)

    def members(self, conversation_id: str) -> List[str]:
        """Snapshot of a conversation's members (empty for unknown IDs)."""
        return list(self._members.get(conversation_id, ()))

    def is_member(self, user_id: str, conversation_id: str) -> bool:
        return user_id in self._members.get(conversation_id, ())

    def conversations(self) -> List[str]:
        return list(self._members.keys())
