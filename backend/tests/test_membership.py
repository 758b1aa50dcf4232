"""Tests for the conversation membership index."""
import pytest

from app.realtime.envelopes import OutboundType, UserTyping
from fakes import FakeWebSocket


class TestJoinLeave:

    def test_join_adds_member(self, membership):
        assert membership.join("alice", "c1") is True
        assert membership.is_member("alice", "c1")
        assert membership.members("c1") == ["alice"]

    def test_join_is_idempotent(self, membership):
        membership.join("alice", "c1")
        assert membership.join("alice", "c1") is False
        assert membership.members("c1") == ["alice"]

    def test_leave_removes_member(self, membership):
        membership.join("alice", "c1")
        membership.join("bob", "c1")

        assert membership.leave("alice", "c1") is True
        assert membership.members("c1") == ["bob"]

    def test_leave_prunes_empty_conversation(self, membership):
        membership.join("alice", "c1")
        membership.leave("alice", "c1")

        assert "c1" not in membership.conversations()
        assert membership.members("c1") == []

    def test_leave_when_not_member_is_noop(self, membership):
        membership.join("alice", "c1")
        assert membership.leave("bob", "c1") is False
        assert membership.leave("alice", "unknown") is False
        assert membership.members("c1") == ["alice"]

    def test_user_can_belong_to_several_conversations(self, membership):
        membership.join("alice", "c1")
        membership.join("alice", "c2")
        assert sorted(membership.conversations()) == ["c1", "c2"]

    def test_members_returns_snapshot(self, membership):
        membership.join("alice", "c1")
        snapshot = membership.members("c1")
        membership.join("bob", "c1")
        assert snapshot == ["alice"]


class TestSendToConversation:

    @pytest.mark.asyncio
    async def test_excludes_sender(self, registry, membership):
        alice_ws, bob_ws, carol_ws = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        await registry.add_connection("alice", alice_ws)
        await registry.add_connection("bob", bob_ws)
        await registry.add_connection("carol", carol_ws)
        for user in ("alice", "bob", "carol"):
            membership.join(user, "c1")

        envelope = UserTyping(userId="alice", conversationId="c1")
        count = await membership.send_to_conversation("c1", envelope, exclude_user_id="alice")

        assert count == 2
        assert alice_ws.types() == ["connection_established"]
        assert bob_ws.sent[-1]["type"] == OutboundType.USER_TYPING_START.value
        assert bob_ws.sent[-1]["conversationId"] == "c1"
        assert carol_ws.sent[-1]["userId"] == "alice"

    @pytest.mark.asyncio
    async def test_only_members_receive(self, registry, membership):
        bob_ws, dave_ws = FakeWebSocket(), FakeWebSocket()
        await registry.add_connection("bob", bob_ws)
        await registry.add_connection("dave", dave_ws)
        membership.join("bob", "c1")
        membership.join("dave", "c2")

        await membership.send_to_conversation("c1", {"type": "notice"})

        assert bob_ws.sent[-1] == {"type": "notice"}
        assert dave_ws.types() == ["connection_established"]

    @pytest.mark.asyncio
    async def test_offline_members_are_skipped(self, registry, membership):
        bob_ws = FakeWebSocket()
        await registry.add_connection("bob", bob_ws)
        membership.join("bob", "c1")
        membership.join("offline-user", "c1")

        count = await membership.send_to_conversation("c1", {"type": "notice"})

        assert count == 2
        assert bob_ws.sent[-1] == {"type": "notice"}

    @pytest.mark.asyncio
    async def test_failed_member_does_not_block_others(self, registry, membership):
        bad_ws, good_ws = FakeWebSocket(fail_send=True), FakeWebSocket()
        await registry.add_connection("bad", bad_ws)
        await registry.add_connection("good", good_ws)
        membership.join("bad", "c1")
        membership.join("good", "c1")

        await membership.send_to_conversation("c1", {"type": "notice"})

        assert good_ws.sent[-1] == {"type": "notice"}

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_noop(self, membership):
        assert await membership.send_to_conversation("nope", {"type": "notice"}) == 0

    @pytest.mark.asyncio
    async def test_last_member_leaving_leaves_no_recipients(self, registry, membership):
        ws = FakeWebSocket()
        await registry.add_connection("alice", ws)
        membership.join("alice", "c1")
        membership.leave("alice", "c1")

        count = await membership.send_to_conversation("c1", {"type": "notice"})

        assert count == 0
        assert "c1" not in membership.conversations()
        assert ws.types() == ["connection_established"]
