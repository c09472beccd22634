"""
Room client for the chatroom SDK.

This module provides RoomClient, the owner of every RoomState:
- Registry of rooms by room ID
- Identity of the local user (excluded from generated room names)
- Routing of sync payloads into the rooms they belong to

Example:
    >>> api = InMemoryRoomAdministration("@me:example.org")
    >>> client = RoomClient(api, "@me:example.org")
    >>> room = client.ensure_room("!abc:example.org", name="Lobby")
    >>> client.get_room("!abc:example.org") is room
    True

Invariants:
    - At most one RoomState per room ID
    - A room left through RoomState.leave() is no longer registered
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .administration import RoomAdministration
from .config import Settings
from .errors import RoomNotFoundError
from .room import RoomState

logger = logging.getLogger(__name__)


class RoomClient:
    """Owning client for a set of rooms.

    Attributes:
        api: Transport used by every room
        mxid: User ID of the local user
        settings: SDK settings
    """

    def __init__(
        self,
        api: RoomAdministration,
        mxid: str,
        *,
        settings: Settings | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize client.

        Args:
            api: Room transport
            mxid: Local user ID
            settings: Optional settings (defaults are loaded from environment)
            log: Logger handed to every room this client creates
        """
        self.api = api
        self.mxid = mxid
        self.settings = settings or Settings()
        self._log = log
        self._rooms: dict[str, RoomState] = {}

    @property
    def rooms(self) -> Mapping[str, RoomState]:
        """Read-only view of the registered rooms."""
        return MappingProxyType(self._rooms)

    def get_room(self, room_id: str) -> RoomState:
        """Look up a registered room.

        Raises:
            RoomNotFoundError: If the room is not registered
        """
        try:
            return self._rooms[room_id]
        except KeyError:
            raise RoomNotFoundError(room_id) from None

    def ensure_room(self, room_id: str, **seed: Any) -> RoomState:
        """Return the room, creating it from seed attributes if needed.

        Seed attributes are ignored when the room already exists.

        Raises:
            UnknownSeedFieldError: If a new room is seeded with an unknown key
        """
        room = self._rooms.get(room_id)
        if room is not None:
            return room

        seed.setdefault("event_history_limit", self.settings.event_history_limit)
        room = RoomState.from_seed(self, room_id, seed, log=self._log)
        self._rooms[room_id] = room
        return room

    def forget_room(self, room_id: str) -> bool:
        """Deregister a room. Returns False if it was not registered."""
        room = self._rooms.pop(room_id, None)
        if room is None:
            return False
        logger.debug("Forgot room %s", room_id)
        return True

    def handle_sync(self, data: Mapping[str, Any]) -> None:
        """Route one sync response into the rooms it mentions.

        Joined rooms get their state applied, their timeline and ephemeral
        events ingested, and their pagination cursor seeded. Left rooms are
        deregistered.
        """
        rooms = data.get("rooms") or {}

        for room_id, room_data in (rooms.get("join") or {}).items():
            room = self.ensure_room(room_id)

            for event in (room_data.get("state") or {}).get("events") or []:
                room.apply_state_event(event)

            timeline = room_data.get("timeline") or {}
            if room.prev_batch is None and timeline.get("prev_batch"):
                room.prev_batch = timeline["prev_batch"]

            for event in timeline.get("events") or []:
                if "state_key" in event:
                    room.apply_state_event(event)
                room.ingest_timeline_event(event)

            for event in (room_data.get("ephemeral") or {}).get("events") or []:
                room.ingest_ephemeral_event(event)

        for room_id in rooms.get("leave") or {}:
            self.forget_room(room_id)
