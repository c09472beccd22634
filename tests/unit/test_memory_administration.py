"""
Unit tests for the in-memory room transport.

Tests cover:
- Protocol conformance
- State reads and writes
- Pagination tokens
- Failure injection
"""

import pytest

from sdk.chatroom_sdk.administration import Direction, RoomAdministration
from sdk.chatroom_sdk.errors import ProtocolError, RequestError
from sdk.chatroom_sdk.memory import InMemoryRoomAdministration

ME = "@me:x"
ROOM_ID = "!room:x"


@pytest.fixture
def api():
    """Transport with one room."""
    api = InMemoryRoomAdministration(ME)
    api.create_room(ROOM_ID, name="Lobby", members={"@a:x": "Alice"})
    return api


class TestInMemoryRoomAdministration:
    """Tests for InMemoryRoomAdministration."""

    def test_satisfies_protocol(self, api):
        assert isinstance(api, RoomAdministration)

    def test_unknown_room(self, api):
        with pytest.raises(RequestError) as exc_info:
            api.get_room_name("!nope:x")

        assert exc_info.value.errcode == "M_NOT_FOUND"
        assert exc_info.value.http_status == 404

    def test_name_round_trip(self, api):
        api.set_room_name(ROOM_ID, "Hall")

        assert api.get_room_name(ROOM_ID) == {"name": "Hall"}

    def test_missing_topic_is_not_found(self, api):
        with pytest.raises(RequestError):
            api.get_room_topic(ROOM_ID)

    def test_members(self, api):
        members = {m["state_key"]: m["content"] for m in api.get_room_members(ROOM_ID)}

        assert members[ME] == {"membership": "join"}
        assert members["@a:x"] == {"membership": "join", "displayname": "Alice"}

    def test_aliases_grouped_by_server(self, api):
        api.set_room_alias(ROOM_ID, "#one:x")
        api.set_room_alias(ROOM_ID, "#two:y")
        api.set_room_alias(ROOM_ID, "#three:x")

        aliases = {
            chunk["state_key"]: chunk["content"]["aliases"]
            for chunk in api.get_room_state(ROOM_ID)
            if chunk["type"] == "m.room.aliases"
        }
        assert aliases == {"x": ["#one:x", "#three:x"], "y": ["#two:y"]}

    def test_duplicate_alias_rejected(self, api):
        api.set_room_alias(ROOM_ID, "#one:x")

        with pytest.raises(RequestError):
            api.set_room_alias(ROOM_ID, "#one:x")

    def test_results_are_copies(self, api):
        levels = api.get_power_levels(ROOM_ID)
        levels["users"]["@evil:x"] = 100

        assert "@evil:x" not in api.get_power_levels(ROOM_ID)["users"]

    def test_writes_require_join(self, api):
        api.leave_room(ROOM_ID)

        with pytest.raises(RequestError) as exc_info:
            api.set_room_topic(ROOM_ID, "t")
        assert exc_info.value.errcode == "M_FORBIDDEN"

    def test_backward_pagination(self, api):
        room = api.room(ROOM_ID)
        for n in range(5):
            api.post_message(ROOM_ID, f"m{n}", sender="@a:x")
        total = len(room.timeline)

        page = api.get_room_messages(ROOM_ID, None, Direction.BACKWARD, limit=3)

        assert [e["content"]["body"] for e in page.chunk] == ["m4", "m3", "m2"]
        assert page.end == f"t{total - 3}"

        page = api.get_room_messages(ROOM_ID, page.end, Direction.BACKWARD, limit=100)
        assert page.end is None
        assert len(page.chunk) == total - 3

    def test_forward_pagination(self, api):
        page = api.get_room_messages(ROOM_ID, "t0", Direction.FORWARD, limit=2)

        assert page.chunk[0]["type"] == "m.room.create"
        assert page.end == "t2"

    def test_bad_token(self, api):
        with pytest.raises(RequestError):
            api.get_room_messages(ROOM_ID, "garbage")

    def test_fail_next_only_once(self, api):
        api.fail_next("get_room_name")

        with pytest.raises(ProtocolError, match="Injected failure"):
            api.get_room_name(ROOM_ID)
        assert api.get_room_name(ROOM_ID) == {"name": "Lobby"}

    def test_fail_always_until_cleared(self, api):
        error = RequestError("slow down", errcode="M_LIMIT_EXCEEDED", http_status=429)
        api.fail_always("send_message", error)

        for _ in range(2):
            with pytest.raises(RequestError):
                api.send_message(ROOM_ID, "hi")

        api.clear_failures()
        assert "event_id" in api.send_message(ROOM_ID, "hi")

    def test_call_log(self, api):
        api.get_room_name(ROOM_ID)
        api.get_room_name(ROOM_ID)

        assert api.call_count("get_room_name") == 2
        assert api.calls[-1] == ("get_room_name", (ROOM_ID,))

    def test_tags_and_account_data(self, api):
        api.add_user_tag(ME, ROOM_ID, "m.favourite", {"order": 1})
        api.set_room_account_data(ME, ROOM_ID, "com.example", {"k": "v"})

        assert api.get_user_tags(ME, ROOM_ID) == {"tags": {"m.favourite": {"order": 1}}}
        assert api.get_room_account_data(ME, ROOM_ID, "com.example") == {"k": "v"}

        api.remove_user_tag(ME, ROOM_ID, "m.favourite")
        assert api.get_user_tags(ME, ROOM_ID) == {"tags": {}}
