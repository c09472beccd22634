"""
Integration tests for RoomClient and RoomState over the in-memory transport.

Tests cover:
- Sync routing (state, timeline, ephemeral, left rooms)
- Mutate-then-reload consistency
- Partial failure semantics
- Backfill walking real pagination tokens
"""

from unittest.mock import MagicMock

import pytest

from sdk.chatroom_sdk import (
    GuestAccess,
    InMemoryRoomAdministration,
    JoinRule,
    RoomClient,
    RoomNotFoundError,
    Settings,
)

ME = "@me:x"
ROOM_ID = "!room:x"


@pytest.fixture
def api():
    """In-memory transport with one room."""
    api = InMemoryRoomAdministration(ME)
    api.create_room(
        ROOM_ID,
        members={"@a:x": "Alice", "@b:x": "Bob", "@c:x": "Carol"},
    )
    return api


@pytest.fixture
def client(api):
    return RoomClient(api, ME, settings=Settings(event_history_limit=5, backfill_limit=4))


def sync_payload(room_id, state=(), timeline=(), ephemeral=(), prev_batch=None, left=()):
    return {
        "rooms": {
            "join": {
                room_id: {
                    "state": {"events": list(state)},
                    "timeline": {"events": list(timeline), "prev_batch": prev_batch},
                    "ephemeral": {"events": list(ephemeral)},
                }
            },
            "leave": {rid: {} for rid in left},
        }
    }


class TestSync:
    """Tests for RoomClient.handle_sync."""

    def test_creates_rooms_and_applies_state(self, client):
        client.handle_sync(
            sync_payload(
                ROOM_ID,
                state=[
                    {"type": "m.room.name", "state_key": "", "content": {"name": "Lobby"}},
                    {"type": "m.room.join_rules", "state_key": "", "content": {"join_rule": "public"}},
                ],
                prev_batch="t3",
            )
        )

        room = client.get_room(ROOM_ID)
        assert room.name == "Lobby"
        assert room.join_rule is JoinRule.PUBLIC
        assert room.prev_batch == "t3"
        assert room.events == []

    def test_timeline_events_are_ingested_and_dispatched(self, client):
        room = client.ensure_room(ROOM_ID)
        seen, state_seen, typing = MagicMock(), MagicMock(), MagicMock()
        room.on_event.add_handler(seen)
        room.on_state_event.add_handler(state_seen)
        room.on_ephemeral_event.add_handler(typing, {"type": "m.typing"})

        client.handle_sync(
            sync_payload(
                ROOM_ID,
                timeline=[
                    {"type": "m.room.message", "event_id": "$1", "content": {"body": "hi"}},
                    {"type": "m.room.topic", "event_id": "$2", "state_key": "", "content": {"topic": "T"}},
                ],
                ephemeral=[{"type": "m.typing", "content": {"user_ids": ["@a:x"]}}],
            )
        )

        assert [e["event_id"] for e in room.events] == ["$1", "$2"]
        assert room.topic == "T"
        assert seen.call_count == 2
        state_seen.assert_called_once()
        typing.assert_called_once()

    def test_existing_cursor_not_overwritten(self, client):
        room = client.ensure_room(ROOM_ID, prev_batch="t1")

        client.handle_sync(sync_payload(ROOM_ID, prev_batch="t9"))

        assert room.prev_batch == "t1"

    def test_left_rooms_are_forgotten(self, client):
        client.ensure_room("!old:x")

        client.handle_sync(sync_payload(ROOM_ID, left=["!old:x"]))

        with pytest.raises(RoomNotFoundError):
            client.get_room("!old:x")

    def test_history_limit_holds_across_syncs(self, client):
        room = client.ensure_room(ROOM_ID)

        for batch in range(3):
            client.handle_sync(
                sync_payload(
                    ROOM_ID,
                    timeline=[
                        {"type": "m.room.message", "event_id": f"${batch}-{n}", "content": {}}
                        for n in range(3)
                    ],
                )
            )

        assert len(room.events) == 5
        assert room.events[-1]["event_id"] == "$2-2"


class TestRoomOverTransport:
    """Tests for RoomState driven through the in-memory transport."""

    def test_display_name_from_members(self, client, api):
        room = client.ensure_room(ROOM_ID)

        assert room.display_name() == "Alice and 2 others"
        assert api.call_count("get_room_members") == 1

    def test_rename_then_reload_reports_no_change(self, client):
        room = client.ensure_room(ROOM_ID)

        assert room.set_name("Lobby") == "Lobby"
        assert room.reload_name() is False
        assert room.display_name() == "Lobby"

    def test_remote_rename_detected_by_reload(self, client, api):
        room = client.ensure_room(ROOM_ID, name="Lobby")
        api.put_state(ROOM_ID, "m.room.name", "", {"name": "Hall"})

        assert room.reload_name() is True
        assert room.name == "Hall"

    def test_failed_mutation_leaves_cache_and_server(self, client, api):
        room = client.ensure_room(ROOM_ID)
        room.set_topic("Before")
        api.fail_next("set_room_topic")

        assert room.set_topic("After") is None
        assert room.topic == "Before"
        assert api.get_room_topic(ROOM_ID) == {"topic": "Before"}

    def test_aliases_round_trip(self, client):
        room = client.ensure_room(ROOM_ID)

        assert room.add_alias("#one:x") is True
        assert room.add_alias("#two:x") is True
        assert room.add_alias("#one:x") is False
        assert room.reload_aliases() is False
        assert room.aliases == ["#one:x", "#two:x"]

    def test_policies(self, client, api):
        room = client.ensure_room(ROOM_ID)

        assert room.set_invite_only(False) is False
        assert room.set_allow_guests(True) is True

        state = {c["type"]: c["content"] for c in api.get_room_state(ROOM_ID)}
        assert state["m.room.join_rules"] == {"join_rule": "public"}
        assert state["m.room.guest_access"] == {"guest_access": "can_join"}
        assert room.guest_access is GuestAccess.CAN_JOIN

    def test_power_level_removal(self, client, api):
        room = client.ensure_room(ROOM_ID)
        room.modify_user_power_levels(users={"@a:x": 50})

        assert room.modify_user_power_levels(users={"@a:x": None}) is True
        assert "@a:x" not in api.get_power_levels(ROOM_ID)["users"]

    def test_kick_does_not_refresh_members(self, client):
        room = client.ensure_room(ROOM_ID)
        room.joined_members()

        assert room.kick_user("@c:x", reason="bye") is True
        assert "@c:x" in room.members

        assert room.reload_members() is True
        assert "@c:x" not in room.members

    def test_leave(self, client, api):
        room = client.ensure_room(ROOM_ID)

        assert room.leave() is True
        assert ROOM_ID not in client.rooms

        # Already-forgotten rooms stay forgotten.
        assert client.forget_room(ROOM_ID) is False

    def test_backfill_walks_history(self, client, api):
        for n in range(6):
            api.post_message(ROOM_ID, f"m{n}", sender="@a:x")
        room = client.ensure_room(ROOM_ID)

        assert room.backfill_messages() == 4
        assert [e["content"]["body"] for e in room.events] == ["m2", "m3", "m4", "m5"]

        # Older events still land at the tail; the limit evicts from the head.
        room.backfill_messages()
        bodies = [e["content"].get("body") for e in room.events]
        assert bodies == ["m5", None, None, "m0", "m1"]

    def test_profile_update(self, client, api):
        room = client.ensure_room(ROOM_ID)

        room.set_user_profile(display_name="Me!")

        assert api.get_membership(ROOM_ID, ME)["displayname"] == "Me!"
