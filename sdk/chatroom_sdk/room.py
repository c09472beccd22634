"""
Room state cache.

This module provides RoomState, the local mirror of one remote room:
- Cached display attributes (name, topic, aliases, join rule, guest access)
- Lazily populated membership
- Bounded timeline history and observer dispatch
- Explicit reload (re-fetch and diff) and mutation operations

Example:
    >>> room = client.ensure_room("!abc:example.org")
    >>> room.on_event.add_handler(lambda record: print(record.event_type))
    >>> room.set_name("Lobby")
    'Lobby'
    >>> room.reload_topic()
    True

Invariants:
    - len(events) <= event_history_limit after every ingestion
    - members holds at most one entry per user_id
    - A reload either updates its field and returns True, or leaves it
      untouched and returns False
    - Mutations update the cache only after the remote call succeeded
    - ProtocolError is swallowed by reloads and state/membership mutations;
      every other error propagates

Concurrency:
    No internal locking. A RoomState must be driven from one thread (or
    task) at a time; callers that share it wrap every call in their own
    per-room lock.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from difflib import get_close_matches
from enum import Enum
from typing import TYPE_CHECKING, Any

from .administration import Direction
from .errors import NotJoinedError, ProtocolError, UnknownSeedFieldError
from .events import EventHandlerList, EventRecord, ObserverRegistry
from .history import EventHistoryBuffer
from .members import MemberSet, RoomMember

if TYPE_CHECKING:
    from .administration import RoomAdministration
    from .client import RoomClient

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"</?[^>]*>")

DEFAULT_EVENT_HISTORY_LIMIT = 10


class JoinRule(str, Enum):
    """Who may join the room."""

    INVITE = "invite"
    PUBLIC = "public"


class GuestAccess(str, Enum):
    """Whether guest accounts may join the room."""

    CAN_JOIN = "can_join"
    FORBIDDEN = "forbidden"


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Any:
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


class RoomState:
    """Local cache of a remote room's state and recent timeline.

    Attributes:
        client: Owning client (provides api, mxid and the room registry)
        canonical_alias: Canonical alias of the room, if known
        prev_batch: Pagination cursor used by backfill_messages()
        members: Cached room members (populated by joined_members())
        observers: Event subscription channels
    """

    SEED_FIELDS = (
        "name",
        "topic",
        "canonical_alias",
        "aliases",
        "join_rule",
        "guest_access",
        "event_history_limit",
        "prev_batch",
    )

    def __init__(
        self,
        client: RoomClient,
        room_id: str,
        *,
        name: str | None = None,
        topic: str | None = None,
        canonical_alias: str | None = None,
        aliases: Iterable[str] | None = None,
        join_rule: JoinRule | str | None = None,
        guest_access: GuestAccess | str | None = None,
        event_history_limit: int = DEFAULT_EVENT_HISTORY_LIMIT,
        prev_batch: str | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize a room from explicit seed attributes.

        Args:
            client: Owning client
            room_id: Server-assigned room identifier
            name: Cached room name
            topic: Cached room topic
            canonical_alias: Cached canonical alias
            aliases: Cached alias list (order is kept as given)
            join_rule: Cached join rule
            guest_access: Cached guest access
            event_history_limit: Timeline events retained
            prev_batch: Initial pagination cursor
            log: Logger for this room (defaults to the module logger)

        Raises:
            ValueError: If a policy value or the history limit is invalid
        """
        self._client = client
        self._id = str(room_id)
        self._log = log or logger

        self._name = name
        self._topic = topic
        self.canonical_alias = canonical_alias
        self._aliases: list[str] = list(aliases or [])
        self._join_rule: JoinRule | None = _enum_or_none(JoinRule, join_rule)
        self._guest_access: GuestAccess | None = _enum_or_none(GuestAccess, guest_access)

        self.members = MemberSet()
        self._members_loaded = False
        self._history = EventHistoryBuffer(event_history_limit)
        self.observers = ObserverRegistry(self._log)
        self.prev_batch = prev_batch

        self._log.debug("Created room %s", self._id)

    @classmethod
    def from_seed(
        cls,
        client: RoomClient,
        room_id: str,
        seed: Mapping[str, Any],
        log: logging.Logger | None = None,
    ) -> RoomState:
        """Build a room from a key/value seed.

        Raises:
            UnknownSeedFieldError: If the seed carries an unsupported key
        """
        for key in seed:
            if key not in cls.SEED_FIELDS:
                suggestions = get_close_matches(key, cls.SEED_FIELDS, n=3)
                raise UnknownSeedFieldError(key, suggestions)
        return cls(client, room_id, log=log, **seed)

    def __repr__(self) -> str:
        return f"<RoomState id={self._id!r} name={self._name!r}>"

    # ---------- Attributes ----------

    @property
    def id(self) -> str:
        return self._id

    @property
    def room_id(self) -> str:
        return self._id

    @property
    def client(self) -> RoomClient:
        return self._client

    @property
    def api(self) -> RoomAdministration:
        return self._client.api

    @property
    def name(self) -> str | None:
        """User-provided room name. See reload_name()."""
        return self._name

    @property
    def topic(self) -> str | None:
        """User-provided room topic. See reload_topic()."""
        return self._topic

    @property
    def aliases(self) -> list[str]:
        """Known aliases, unsorted. See add_alias() and reload_aliases()."""
        return list(self._aliases)

    @property
    def join_rule(self) -> JoinRule | None:
        return self._join_rule

    @property
    def guest_access(self) -> GuestAccess | None:
        return self._guest_access

    @property
    def invite_only(self) -> bool:
        return self._join_rule == JoinRule.INVITE

    @property
    def guest_access_allowed(self) -> bool:
        return self._guest_access == GuestAccess.CAN_JOIN

    @property
    def event_history_limit(self) -> int:
        return self._history.limit

    @event_history_limit.setter
    def event_history_limit(self, value: int) -> None:
        self._history.limit = value

    @property
    def events(self) -> list[Mapping[str, Any]]:
        """The last event_history_limit timeline events, oldest first."""
        return self._history.to_list()

    @property
    def on_event(self) -> EventHandlerList:
        return self.observers.on_event

    @property
    def on_state_event(self) -> EventHandlerList:
        return self.observers.on_state_event

    @property
    def on_ephemeral_event(self) -> EventHandlerList:
        return self.observers.on_ephemeral_event

    # ---------- State readers ----------

    def display_name(self) -> str:
        """Human-readable name for the room.

        Returns name or canonical_alias when set. Otherwise a name is built
        from the joined members other than the local user.

        Note:
            Falling back to members populates the member list, which costs
            one membership request the first time.
        """
        if self._name is not None:
            return self._name
        if self.canonical_alias is not None:
            return self.canonical_alias

        others = [
            m.get_display_name()
            for m in self.joined_members()
            if m.user_id != self._client.mxid
        ]

        if len(others) == 1:
            return others[0]
        if len(others) == 2:
            return f"{others[0]} and {others[1]}"
        if len(others) > 2:
            return f"{others[0]} and {len(others) - 1} others"
        return "Empty Room"

    def joined_members(self) -> MemberSet:
        """Populate members on first use and return them.

        Raises:
            ProtocolError: If the first membership fetch fails
        """
        if self._members_loaded:
            return self.members

        for member in self._fetch_joined_members():
            self.members.ensure(member)
        self._members_loaded = True
        return self.members

    def reload_members(self) -> bool:
        """Replace the member list with a fresh fetch.

        Returns:
            True if the set of joined user IDs changed
        """
        try:
            fetched = self._fetch_joined_members()
        except ProtocolError as e:
            self._log.warning("Failed to reload members of %s: %s", self._id, e)
            return False

        before = self.members.user_ids()
        self.members.replace(fetched)
        self._members_loaded = True
        return self.members.user_ids() != before

    def _fetch_joined_members(self) -> list[RoomMember]:
        members = []
        for chunk in self.api.get_room_members(self._id):
            content = chunk.get("content") or {}
            if content.get("membership") != "join":
                continue
            members.append(
                RoomMember(
                    user_id=chunk["state_key"],
                    display_name=content.get("displayname"),
                    avatar_url=content.get("avatar_url"),
                )
            )
        return members

    # ---------- Message handling ----------

    def send_text(self, text: str) -> dict[str, Any]:
        """Send a plain-text message to the room."""
        return self.api.send_message(self._id, text)

    def send_html(
        self,
        html: str,
        body: str | None = None,
        msgtype: str = "m.text",
    ) -> dict[str, Any]:
        """Send an HTML message.

        Args:
            html: HTML-formatted body
            body: Plain-text fallback (defaults to html with tags stripped)
            msgtype: Message type
        """
        content = {
            "body": body if body else _TAG_RE.sub("", html),
            "msgtype": msgtype,
            "format": "org.matrix.custom.html",
            "formatted_body": html,
        }
        return self.api.send_message_event(self._id, "m.room.message", content)

    def send_emote(self, text: str) -> dict[str, Any]:
        return self.api.send_emote(self._id, text)

    def send_notice(self, text: str) -> dict[str, Any]:
        return self.api.send_notice(self._id, text)

    def send_file(self, url: str, name: str, file_info: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.api.send_content(self._id, url, name, "m.file", extra_information=file_info or {})

    def send_image(self, url: str, name: str, image_info: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.api.send_content(self._id, url, name, "m.image", extra_information=image_info or {})

    def send_video(self, url: str, name: str, video_info: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.api.send_content(self._id, url, name, "m.video", extra_information=video_info or {})

    def send_audio(self, url: str, name: str, audio_info: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.api.send_content(self._id, url, name, "m.audio", extra_information=audio_info or {})

    def send_location(
        self,
        geo_uri: str,
        name: str,
        thumbnail_url: str | None = None,
        thumbnail_info: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.api.send_location(
            self._id,
            geo_uri,
            name,
            thumbnail_url=thumbnail_url,
            thumbnail_info=thumbnail_info or {},
        )

    def redact_message(self, event_id: str, reason: str | None = None) -> dict[str, Any]:
        return self.api.redact_event(self._id, event_id, reason=reason)

    def backfill_messages(self, reverse: bool = False, limit: int | None = None) -> int:
        """Fetch older events and feed them through timeline ingestion.

        Events arrive newest-first and are ingested oldest-first unless
        reverse is set. No deduplication against the current history is
        done. The pagination cursor moves to the end of the fetched page.

        Args:
            reverse: Ingest in server order (newest first)
            limit: Maximum events to request

        Returns:
            Number of events ingested

        Raises:
            ProtocolError: If the request fails
        """
        if limit is None:
            limit = self._client.settings.backfill_limit

        page = self.api.get_room_messages(
            self._id, self.prev_batch, direction=Direction.BACKWARD, limit=limit
        )

        events = list(page.chunk)
        if not reverse:
            events.reverse()
        for event in events:
            self.ingest_timeline_event(event)

        if page.end is not None:
            self.prev_batch = page.end
        self._log.debug("Backfilled %d event(s) into %s", len(events), self._id)
        return len(events)

    # ---------- User management ----------

    def _membership_call(self, operation: str, call: Callable[[], Any]) -> bool:
        try:
            call()
        except ProtocolError as e:
            self._log.warning("%s failed in %s: %s", operation, self._id, e)
            return False
        return True

    def invite_user(self, user_id: str) -> bool:
        return self._membership_call("Invite", lambda: self.api.invite_user(self._id, user_id))

    def kick_user(self, user_id: str, reason: str = "") -> bool:
        return self._membership_call(
            "Kick", lambda: self.api.kick_user(self._id, user_id, reason=reason)
        )

    def ban_user(self, user_id: str, reason: str = "") -> bool:
        return self._membership_call(
            "Ban", lambda: self.api.ban_user(self._id, user_id, reason=reason)
        )

    def unban_user(self, user_id: str) -> bool:
        return self._membership_call("Unban", lambda: self.api.unban_user(self._id, user_id))

    def leave(self) -> bool:
        """Leave the room and drop it from the client's room registry."""
        if not self._membership_call("Leave", lambda: self.api.leave_room(self._id)):
            return False
        self._client.forget_room(self._id)
        return True

    def get_account_data(self, type_key: str) -> dict[str, Any]:
        return self.api.get_room_account_data(self._client.mxid, self._id, type_key)

    def set_account_data(self, type_key: str, account_data: dict[str, Any]) -> dict[str, Any]:
        return self.api.set_room_account_data(self._client.mxid, self._id, type_key, account_data)

    def set_user_profile(
        self,
        display_name: str | None = None,
        avatar_url: str | None = None,
        reason: str = "Updating room profile information",
    ) -> dict[str, Any] | None:
        """Set the local user's per-room display name and/or avatar.

        Returns:
            The transport acknowledgement, or None if nothing was given

        Raises:
            NotJoinedError: If the local user has not joined the room
            ProtocolError: If a remote call fails
        """
        if display_name is None and avatar_url is None:
            return None

        mxid = self._client.mxid
        data = dict(self.api.get_membership(self._id, mxid))
        if data.get("membership") != "join":
            raise NotJoinedError(self._id, mxid, data.get("membership"))

        if display_name is not None:
            data["displayname"] = display_name
        if avatar_url is not None:
            data["avatar_url"] = avatar_url

        return self.api.set_membership(self._id, mxid, "join", reason, data)

    def tags(self) -> dict[str, Any]:
        return self.api.get_user_tags(self._client.mxid, self._id)

    def add_tag(self, tag: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.api.add_user_tag(self._client.mxid, self._id, tag, params or {})

    def remove_tag(self, tag: str) -> dict[str, Any]:
        return self.api.remove_user_tag(self._client.mxid, self._id, tag)

    # ---------- State updates ----------

    def set_name(self, name: str | None) -> str | None:
        """Rename the room. Returns the new name, or None on failure."""
        try:
            self.api.set_room_name(self._id, name)
        except ProtocolError as e:
            self._log.warning("Failed to set name of %s: %s", self._id, e)
            return None
        self._name = name
        return name

    def reload_name(self) -> bool:
        """Re-fetch the name. Returns True if the cached value changed."""
        try:
            data = self.api.get_room_name(self._id)
        except ProtocolError as e:
            self._log.warning("Failed to reload name of %s: %s", self._id, e)
            return False
        new_name = data.get("name")
        changed = new_name != self._name
        if changed:
            self._name = new_name
        return changed

    def set_topic(self, topic: str | None) -> str | None:
        """Change the topic. Returns the new topic, or None on failure."""
        try:
            self.api.set_room_topic(self._id, topic)
        except ProtocolError as e:
            self._log.warning("Failed to set topic of %s: %s", self._id, e)
            return None
        self._topic = topic
        return topic

    def reload_topic(self) -> bool:
        """Re-fetch the topic. Returns True if the cached value changed."""
        try:
            data = self.api.get_room_topic(self._id)
        except ProtocolError as e:
            self._log.warning("Failed to reload topic of %s: %s", self._id, e)
            return False
        new_topic = data.get("topic")
        changed = new_topic != self._topic
        if changed:
            self._topic = new_topic
        return changed

    def add_alias(self, room_alias: str) -> bool:
        """Add an alias to the room. Returns whether the addition succeeded."""
        try:
            self.api.set_room_alias(self._id, room_alias)
        except ProtocolError as e:
            self._log.warning("Failed to add alias %s to %s: %s", room_alias, self._id, e)
            return False
        self._aliases.append(room_alias)
        return True

    def reload_aliases(self) -> bool:
        """Rebuild the alias list from the room's state events.

        Note:
            The comparison is order-sensitive, so a reordered but otherwise
            identical alias list counts as a change.
        """
        try:
            state = self.api.get_room_state(self._id)
        except ProtocolError as e:
            self._log.warning("Failed to reload aliases of %s: %s", self._id, e)
            return False

        new_aliases = [
            alias
            for chunk in state
            if "aliases" in (chunk.get("content") or {})
            for alias in (chunk["content"]["aliases"] or [])
            if alias is not None
        ]

        changed = new_aliases != self._aliases
        if changed:
            self._aliases = new_aliases
        return changed

    def set_join_rule(self, join_rule: JoinRule | str) -> JoinRule | None:
        """Change the join rule. Returns the new rule, or None on failure."""
        join_rule = JoinRule(join_rule)
        try:
            self.api.set_join_rule(self._id, join_rule.value)
        except ProtocolError as e:
            self._log.warning("Failed to set join rule of %s: %s", self._id, e)
            return None
        self._join_rule = join_rule
        return join_rule

    def set_invite_only(self, invite_only: bool) -> bool:
        """Toggle invite-only. Returns the resulting invite_only flag."""
        self.set_join_rule(JoinRule.INVITE if invite_only else JoinRule.PUBLIC)
        return self.invite_only

    def set_guest_access(self, guest_access: GuestAccess | str) -> GuestAccess | None:
        """Change guest access. Returns the new value, or None on failure."""
        guest_access = GuestAccess(guest_access)
        try:
            self.api.set_guest_access(self._id, guest_access.value)
        except ProtocolError as e:
            self._log.warning("Failed to set guest access of %s: %s", self._id, e)
            return None
        self._guest_access = guest_access
        return guest_access

    def set_allow_guests(self, allow_guests: bool) -> bool:
        """Toggle guest access. Returns the resulting guest_access_allowed flag."""
        self.set_guest_access(GuestAccess.CAN_JOIN if allow_guests else GuestAccess.FORBIDDEN)
        return self.guest_access_allowed

    def modify_user_power_levels(
        self,
        users: Mapping[str, int | None] | None = None,
        users_default: int | None = None,
    ) -> bool:
        """Merge per-user power levels into the room's power level document.

        A None value in users removes that user's entry.

        Returns:
            False if nothing was given or a remote call failed
        """
        if not users and users_default is None:
            return False
        try:
            data = dict(self.api.get_power_levels(self._id))
            if users_default is not None:
                data["users_default"] = users_default
            if users:
                data["users"] = _merge_dropping_none(data.get("users") or {}, users)
            self.api.set_power_levels(self._id, data)
        except ProtocolError as e:
            self._log.warning("Failed to modify user power levels of %s: %s", self._id, e)
            return False
        return True

    def modify_required_power_levels(
        self,
        events: Mapping[str, int | None] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """Merge required power levels (per event type and top-level keys).

        A None value removes the corresponding entry.

        Returns:
            False if nothing was given or a remote call failed
        """
        if not events and not params:
            return False
        try:
            data = _merge_dropping_none(self.api.get_power_levels(self._id), params or {})
            if events:
                data["events"] = _merge_dropping_none(data.get("events") or {}, events)
            self.api.set_power_levels(self._id, data)
        except ProtocolError as e:
            self._log.warning("Failed to modify required power levels of %s: %s", self._id, e)
            return False
        return True

    # ---------- Ingestion ----------

    def ingest_timeline_event(self, event: Mapping[str, Any]) -> EventRecord:
        """Append a timeline event to history and notify observers."""
        self._history.append(event)
        record = EventRecord(self, event)
        self.observers.dispatch_timeline(record)
        return record

    def ingest_ephemeral_event(self, event: Mapping[str, Any]) -> EventRecord:
        """Notify ephemeral observers. Ephemeral events are never stored."""
        record = EventRecord(self, event)
        self.observers.dispatch_ephemeral(record)
        return record

    def apply_state_event(self, event: Mapping[str, Any]) -> None:
        """Update the cache from a state event delivered by sync."""
        event_type = event.get("type")
        content = event.get("content") or {}

        if event_type == "m.room.name":
            self._name = content.get("name")
        elif event_type == "m.room.topic":
            self._topic = content.get("topic")
        elif event_type == "m.room.canonical_alias":
            self.canonical_alias = content.get("alias")
        elif event_type == "m.room.aliases":
            aliases = [alias for alias in content.get("aliases") or [] if alias is not None]
            server = event.get("state_key")
            if server:
                # The event carries the full alias list published by one server.
                self._aliases = [
                    alias
                    for alias in self._aliases
                    if alias.partition(":")[2] != server or alias in aliases
                ]
            for alias in aliases:
                if alias not in self._aliases:
                    self._aliases.append(alias)
        elif event_type == "m.room.join_rules":
            try:
                self._join_rule = _enum_or_none(JoinRule, content.get("join_rule"))
            except ValueError:
                self._log.debug("Ignoring unsupported join rule in %s: %r", self._id, content)
                return
        elif event_type == "m.room.guest_access":
            try:
                self._guest_access = _enum_or_none(GuestAccess, content.get("guest_access"))
            except ValueError:
                self._log.debug("Ignoring unsupported guest access in %s: %r", self._id, content)
                return
        elif event_type == "m.room.member":
            # Only extend a loaded list; an unloaded one is still lazy.
            if self._members_loaded and content.get("membership") == "join":
                self.members.ensure(
                    RoomMember(
                        user_id=event["state_key"],
                        display_name=content.get("displayname"),
                        avatar_url=content.get("avatar_url"),
                    )
                )
        else:
            return
        self._log.debug("Applied %s to %s", event_type, self._id)


def _merge_dropping_none(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    merged.update(overrides)
    return {k: v for k, v in merged.items() if v is not None}
