"""
Unit tests for the member cache.

Tests cover:
- First-write-wins deduplication
- Whole-set replacement
- Display name fallback
"""

from sdk.chatroom_sdk.members import MemberSet, RoomMember


class TestRoomMember:
    """Tests for RoomMember."""

    def test_display_name_falls_back_to_user_id(self):
        assert RoomMember("@a:x").get_display_name() == "@a:x"
        assert RoomMember("@a:x", display_name="Alice").get_display_name() == "Alice"


class TestMemberSet:
    """Tests for MemberSet."""

    def test_ensure_inserts_new_member(self):
        members = MemberSet()

        assert members.ensure(RoomMember("@a:x", "Alice")) is True
        assert len(members) == 1
        assert "@a:x" in members

    def test_ensure_is_first_write_wins(self):
        """A second ensure() for the same identity keeps the first attributes."""
        members = MemberSet()
        members.ensure(RoomMember("@a:x", "Alice"))

        inserted = members.ensure(RoomMember("@a:x", "Alicia", avatar_url="mxc://x/a"))

        assert inserted is False
        assert len(members) == 1
        assert members.get("@a:x").display_name == "Alice"
        assert members.get("@a:x").avatar_url is None

    def test_keeps_insertion_order(self):
        members = MemberSet([RoomMember("@b:x"), RoomMember("@a:x"), RoomMember("@c:x")])

        assert members.user_ids() == ["@b:x", "@a:x", "@c:x"]

    def test_contains_accepts_member_or_id(self):
        members = MemberSet([RoomMember("@a:x", "Alice")])

        assert RoomMember("@a:x", "Someone else") in members
        assert "@b:x" not in members

    def test_replace_swaps_whole_set(self):
        """Replacement drops members that are no longer present."""
        members = MemberSet([RoomMember("@a:x"), RoomMember("@b:x")])

        members.replace([RoomMember("@b:x", "Bob"), RoomMember("@c:x"), RoomMember("@b:x", "Dup")])

        assert members.user_ids() == ["@b:x", "@c:x"]
        assert members.get("@b:x").display_name == "Bob"

    def test_empty_set_is_falsy(self):
        assert not MemberSet()
        assert MemberSet([RoomMember("@a:x")])
