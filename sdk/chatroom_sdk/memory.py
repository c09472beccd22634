"""
In-memory room transport for testing.

This module provides a RoomAdministration implementation that keeps all
room data in memory for:
- Unit and integration tests
- Local development without a homeserver

Invariants:
    - All data is lost on process exit
    - Results are deep copies; callers can never alias internal state
    - Injected failures raise exactly like a remote failure would

How to change safely:
    - This is test-only code, changes don't affect production transports
    - Keep interface compatible with the RoomAdministration protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import copy
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .administration import Direction, MessagesPage
from .errors import ProtocolError, RequestError

logger = logging.getLogger(__name__)

DEFAULT_POWER_LEVELS: Dict[str, Any] = {
    "users": {},
    "users_default": 0,
    "events": {},
    "events_default": 0,
    "state_default": 50,
    "ban": 50,
    "kick": 50,
    "redact": 50,
    "invite": 0,
}


@dataclass
class InMemoryRoom:
    """Server-side view of one room."""

    room_id: str
    state: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)
    timeline: List[Dict[str, Any]] = field(default_factory=list)


class InMemoryRoomAdministration:
    """In-memory implementation of RoomAdministration for testing.

    Attributes:
        user_id: The authenticated user every call is made as
        calls: Log of (operation, args) tuples in call order

    Example:
        >>> api = InMemoryRoomAdministration("@me:example.org")
        >>> api.create_room("!room:example.org", name="Lobby")
        >>> api.get_room_name("!room:example.org")
        {'name': 'Lobby'}
        >>> api.fail_next("set_room_name")
        >>> api.set_room_name("!room:example.org", "Other")
        Traceback (most recent call last):
        ...
        chatroom_sdk.errors.ProtocolError: Injected failure in set_room_name
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._rooms: Dict[str, InMemoryRoom] = {}
        self._account_data: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._tags: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self._fail_next: Dict[str, ProtocolError] = {}
        self._fail_always: Dict[str, ProtocolError] = {}
        self._event_ids = itertools.count(1)

    # ---------- Testing helpers ----------

    def create_room(
        self,
        room_id: str,
        *,
        name: Optional[str] = None,
        topic: Optional[str] = None,
        join_rule: str = "invite",
        guest_access: str = "forbidden",
        members: Optional[Dict[str, Optional[str]]] = None,
    ) -> InMemoryRoom:
        """Create a room with the local user joined.

        Args:
            room_id: Room identifier
            name: Optional room name
            topic: Optional room topic
            join_rule: Initial join rule
            guest_access: Initial guest access
            members: Additional joined members, user_id -> display name
        """
        room = InMemoryRoom(room_id=room_id)
        self._rooms[room_id] = room
        self._put_state(room, "m.room.create", "", {"creator": self.user_id})
        self._put_state(room, "m.room.member", self.user_id, {"membership": "join"})
        self._put_state(room, "m.room.power_levels", "", copy.deepcopy(DEFAULT_POWER_LEVELS))
        self._put_state(room, "m.room.join_rules", "", {"join_rule": join_rule})
        self._put_state(room, "m.room.guest_access", "", {"guest_access": guest_access})
        if name is not None:
            self._put_state(room, "m.room.name", "", {"name": name})
        if topic is not None:
            self._put_state(room, "m.room.topic", "", {"topic": topic})
        for user_id, display_name in (members or {}).items():
            self.join(room_id, user_id, display_name)
        logger.debug("InMemoryRoomAdministration created room %s", room_id)
        return room

    def join(self, room_id: str, user_id: str, display_name: Optional[str] = None) -> None:
        """Make a user join a room."""
        content: Dict[str, Any] = {"membership": "join"}
        if display_name is not None:
            content["displayname"] = display_name
        self._put_state(self._room(room_id), "m.room.member", user_id, content, sender=user_id)

    def put_state(
        self, room_id: str, event_type: str, state_key: str, content: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Write an arbitrary state event, returning the timeline event."""
        return self._put_state(self._room(room_id), event_type, state_key, content)

    def post_message(self, room_id: str, body: str, sender: Optional[str] = None) -> Dict[str, Any]:
        """Append a text message from any sender."""
        return self._append(
            self._room(room_id),
            "m.room.message",
            {"msgtype": "m.text", "body": body},
            sender=sender,
        )

    def room(self, room_id: str) -> InMemoryRoom:
        return self._room(room_id)

    def fail_next(self, operation: str, error: Optional[ProtocolError] = None) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self._fail_next[operation] = error or ProtocolError(f"Injected failure in {operation}")

    def fail_always(self, operation: str, error: Optional[ProtocolError] = None) -> None:
        """Make every call to ``operation`` raise ``error`` until cleared."""
        self._fail_always[operation] = error or ProtocolError(f"Injected failure in {operation}")

    def clear_failures(self) -> None:
        self._fail_next.clear()
        self._fail_always.clear()

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    # ---------- Internals ----------

    def _call(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if operation in self._fail_next:
            raise self._fail_next.pop(operation)
        if operation in self._fail_always:
            raise self._fail_always[operation]

    def _room(self, room_id: str) -> InMemoryRoom:
        try:
            return self._rooms[room_id]
        except KeyError:
            raise RequestError(
                f"Unknown room {room_id}", errcode="M_NOT_FOUND", http_status=404
            ) from None

    def _append(
        self,
        room: InMemoryRoom,
        event_type: str,
        content: Dict[str, Any],
        *,
        sender: Optional[str] = None,
        state_key: Optional[str] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "type": event_type,
            "event_id": f"${next(self._event_ids)}",
            "room_id": room.room_id,
            "sender": sender or self.user_id,
            "content": copy.deepcopy(content),
        }
        if state_key is not None:
            event["state_key"] = state_key
        event.update(extra)
        room.timeline.append(event)
        return copy.deepcopy(event)

    def _put_state(
        self,
        room: InMemoryRoom,
        event_type: str,
        state_key: str,
        content: Dict[str, Any],
        *,
        sender: Optional[str] = None,
    ) -> Dict[str, Any]:
        room.state[(event_type, state_key)] = copy.deepcopy(content)
        return self._append(room, event_type, content, sender=sender, state_key=state_key)

    def _state_content(self, room_id: str, event_type: str, state_key: str = "") -> Dict[str, Any]:
        room = self._room(room_id)
        try:
            return copy.deepcopy(room.state[(event_type, state_key)])
        except KeyError:
            raise RequestError(
                f"No {event_type} state in {room_id}", errcode="M_NOT_FOUND", http_status=404
            ) from None

    def _ack(self, event: Dict[str, Any]) -> Dict[str, Any]:
        return {"event_id": event["event_id"]}

    def _require_joined(self, room: InMemoryRoom) -> None:
        membership = room.state.get(("m.room.member", self.user_id), {}).get("membership")
        if membership != "join":
            raise RequestError(
                f"{self.user_id} is not in room {room.room_id}",
                errcode="M_FORBIDDEN",
                http_status=403,
            )

    # ---------- Room state ----------

    def get_room_members(self, room_id: str) -> List[Dict[str, Any]]:
        self._call("get_room_members", room_id)
        room = self._room(room_id)
        return [
            {"type": t, "state_key": key, "content": copy.deepcopy(content)}
            for (t, key), content in room.state.items()
            if t == "m.room.member"
        ]

    def get_room_state(self, room_id: str) -> List[Dict[str, Any]]:
        self._call("get_room_state", room_id)
        room = self._room(room_id)
        return [
            {"type": t, "state_key": key, "content": copy.deepcopy(content)}
            for (t, key), content in room.state.items()
        ]

    def get_room_name(self, room_id: str) -> Dict[str, Any]:
        self._call("get_room_name", room_id)
        return self._state_content(room_id, "m.room.name")

    def set_room_name(self, room_id: str, name: Optional[str]) -> Dict[str, Any]:
        self._call("set_room_name", room_id, name)
        room = self._room(room_id)
        self._require_joined(room)
        return self._ack(self._put_state(room, "m.room.name", "", {"name": name}))

    def get_room_topic(self, room_id: str) -> Dict[str, Any]:
        self._call("get_room_topic", room_id)
        return self._state_content(room_id, "m.room.topic")

    def set_room_topic(self, room_id: str, topic: Optional[str]) -> Dict[str, Any]:
        self._call("set_room_topic", room_id, topic)
        room = self._room(room_id)
        self._require_joined(room)
        return self._ack(self._put_state(room, "m.room.topic", "", {"topic": topic}))

    def set_room_alias(self, room_id: str, room_alias: str) -> Dict[str, Any]:
        self._call("set_room_alias", room_id, room_alias)
        room = self._room(room_id)
        server = room_alias.split(":", 1)[-1]
        aliases = room.state.get(("m.room.aliases", server), {}).get("aliases", [])
        if room_alias in aliases:
            raise RequestError(
                f"Alias {room_alias} already exists", errcode="M_UNKNOWN", http_status=409
            )
        self._put_state(room, "m.room.aliases", server, {"aliases": aliases + [room_alias]})
        return {}

    def set_join_rule(self, room_id: str, join_rule: str) -> Dict[str, Any]:
        self._call("set_join_rule", room_id, join_rule)
        room = self._room(room_id)
        self._require_joined(room)
        return self._ack(self._put_state(room, "m.room.join_rules", "", {"join_rule": join_rule}))

    def set_guest_access(self, room_id: str, guest_access: str) -> Dict[str, Any]:
        self._call("set_guest_access", room_id, guest_access)
        room = self._room(room_id)
        self._require_joined(room)
        return self._ack(
            self._put_state(room, "m.room.guest_access", "", {"guest_access": guest_access})
        )

    def get_power_levels(self, room_id: str) -> Dict[str, Any]:
        self._call("get_power_levels", room_id)
        return self._state_content(room_id, "m.room.power_levels")

    def set_power_levels(self, room_id: str, content: Dict[str, Any]) -> Dict[str, Any]:
        self._call("set_power_levels", room_id, content)
        room = self._room(room_id)
        self._require_joined(room)
        return self._ack(self._put_state(room, "m.room.power_levels", "", content))

    # ---------- Membership ----------

    def _set_member(
        self, room_id: str, user_id: str, membership: str, reason: str = ""
    ) -> Dict[str, Any]:
        room = self._room(room_id)
        content: Dict[str, Any] = {"membership": membership}
        if reason:
            content["reason"] = reason
        return self._ack(self._put_state(room, "m.room.member", user_id, content))

    def invite_user(self, room_id: str, user_id: str) -> Dict[str, Any]:
        self._call("invite_user", room_id, user_id)
        return self._set_member(room_id, user_id, "invite")

    def kick_user(self, room_id: str, user_id: str, reason: str = "") -> Dict[str, Any]:
        self._call("kick_user", room_id, user_id, reason)
        return self._set_member(room_id, user_id, "leave", reason)

    def ban_user(self, room_id: str, user_id: str, reason: str = "") -> Dict[str, Any]:
        self._call("ban_user", room_id, user_id, reason)
        return self._set_member(room_id, user_id, "ban", reason)

    def unban_user(self, room_id: str, user_id: str) -> Dict[str, Any]:
        self._call("unban_user", room_id, user_id)
        return self._set_member(room_id, user_id, "leave")

    def leave_room(self, room_id: str) -> Dict[str, Any]:
        self._call("leave_room", room_id)
        self._set_member(room_id, self.user_id, "leave")
        return {}

    def get_membership(self, room_id: str, user_id: str) -> Dict[str, Any]:
        self._call("get_membership", room_id, user_id)
        return self._state_content(room_id, "m.room.member", user_id)

    def set_membership(
        self,
        room_id: str,
        user_id: str,
        membership: str,
        reason: str = "",
        content: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self._call("set_membership", room_id, user_id, membership, reason, content)
        body = dict(content or {})
        body["membership"] = membership
        if reason:
            body["reason"] = reason
        return self._ack(self._put_state(self._room(room_id), "m.room.member", user_id, body))

    # ---------- Timeline ----------

    def get_room_messages(
        self,
        room_id: str,
        from_token: Optional[str],
        direction: Direction = Direction.BACKWARD,
        limit: int = 10,
    ) -> MessagesPage:
        self._call("get_room_messages", room_id, from_token, direction, limit)
        room = self._room(room_id)
        timeline = room.timeline
        position = self._parse_token(from_token, default=len(timeline))
        position = max(0, min(position, len(timeline)))

        if Direction(direction) == Direction.BACKWARD:
            low = max(0, position - limit)
            chunk = list(reversed(timeline[low:position]))
            end = f"t{low}" if low > 0 else None
        else:
            high = min(len(timeline), position + limit)
            chunk = timeline[position:high]
            end = f"t{high}" if high < len(timeline) else None

        return MessagesPage(chunk=copy.deepcopy(chunk), start=from_token, end=end)

    def _parse_token(self, token: Optional[str], default: int) -> int:
        if token is None:
            return default
        if not token.startswith("t") or not token[1:].isdigit():
            raise RequestError(
                f"Invalid pagination token {token!r}", errcode="M_INVALID_PARAM", http_status=400
            )
        return int(token[1:])

    def send_message(self, room_id: str, text: str) -> Dict[str, Any]:
        self._call("send_message", room_id, text)
        return self._ack(
            self._append(self._room(room_id), "m.room.message", {"msgtype": "m.text", "body": text})
        )

    def send_message_event(
        self, room_id: str, event_type: str, content: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._call("send_message_event", room_id, event_type, content)
        return self._ack(self._append(self._room(room_id), event_type, content))

    def send_emote(self, room_id: str, text: str) -> Dict[str, Any]:
        self._call("send_emote", room_id, text)
        return self._ack(
            self._append(self._room(room_id), "m.room.message", {"msgtype": "m.emote", "body": text})
        )

    def send_notice(self, room_id: str, text: str) -> Dict[str, Any]:
        self._call("send_notice", room_id, text)
        return self._ack(
            self._append(self._room(room_id), "m.room.message", {"msgtype": "m.notice", "body": text})
        )

    def send_content(
        self,
        room_id: str,
        url: str,
        name: str,
        msgtype: str,
        extra_information: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self._call("send_content", room_id, url, name, msgtype, extra_information)
        content = {"url": url, "body": name, "msgtype": msgtype, "info": extra_information or {}}
        return self._ack(self._append(self._room(room_id), "m.room.message", content))

    def send_location(
        self,
        room_id: str,
        geo_uri: str,
        name: str,
        thumbnail_url: Optional[str] = None,
        thumbnail_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self._call("send_location", room_id, geo_uri, name, thumbnail_url, thumbnail_info)
        content: Dict[str, Any] = {"geo_uri": geo_uri, "body": name, "msgtype": "m.location"}
        if thumbnail_url:
            content["thumbnail_url"] = thumbnail_url
        if thumbnail_info:
            content["thumbnail_info"] = thumbnail_info
        return self._ack(self._append(self._room(room_id), "m.room.message", content))

    def redact_event(
        self, room_id: str, event_id: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        self._call("redact_event", room_id, event_id, reason)
        content = {"reason": reason} if reason else {}
        return self._ack(
            self._append(self._room(room_id), "m.room.redaction", content, redacts=event_id)
        )

    # ---------- Per-user room data ----------

    def get_room_account_data(
        self, user_id: str, room_id: str, type_key: str
    ) -> Dict[str, Any]:
        self._call("get_room_account_data", user_id, room_id, type_key)
        try:
            return copy.deepcopy(self._account_data[(user_id, room_id, type_key)])
        except KeyError:
            raise RequestError(
                f"No account data {type_key} for {room_id}", errcode="M_NOT_FOUND", http_status=404
            ) from None

    def set_room_account_data(
        self, user_id: str, room_id: str, type_key: str, account_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._call("set_room_account_data", user_id, room_id, type_key, account_data)
        self._account_data[(user_id, room_id, type_key)] = copy.deepcopy(account_data)
        return {}

    def get_user_tags(self, user_id: str, room_id: str) -> Dict[str, Any]:
        self._call("get_user_tags", user_id, room_id)
        return {"tags": copy.deepcopy(self._tags.get((user_id, room_id), {}))}

    def add_user_tag(
        self,
        user_id: str,
        room_id: str,
        tag: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self._call("add_user_tag", user_id, room_id, tag, params)
        self._tags.setdefault((user_id, room_id), {})[tag] = dict(params or {})
        return {}

    def remove_user_tag(self, user_id: str, room_id: str, tag: str) -> Dict[str, Any]:
        self._call("remove_user_tag", user_id, room_id, tag)
        self._tags.get((user_id, room_id), {}).pop(tag, None)
        return {}
