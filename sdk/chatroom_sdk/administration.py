"""
Transport protocol consumed by the room state cache.

This module defines the RoomAdministration protocol that every transport
(HTTP client, test double, ...) must implement, along with the small
result types the room cache relies on.

Error contract:
    - Every operation raises ProtocolError (or a subclass) when the remote
      call fails, and nothing else for remote failures
    - Operations block until the remote call completes
    - Retries and timeouts belong to the implementation, not the caller

How to change safely:
    - Protocol changes require updating InMemoryRoomAdministration
    - Keep result shapes structural (plain mappings) so transports stay
      free to choose their wire format
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class Direction(str, Enum):
    """Pagination direction for get_room_messages."""

    BACKWARD = "b"
    FORWARD = "f"


@dataclass
class MessagesPage:
    """One page of room history.

    Attributes:
        chunk: Events in server order (newest first when paginating backward)
        start: Token the page was requested from
        end: Token to continue paginating from, None when history is exhausted
    """

    chunk: List[Dict[str, Any]] = field(default_factory=list)
    start: Optional[str] = None
    end: Optional[str] = None


@runtime_checkable
class RoomAdministration(Protocol):
    """Protocol for room transports.

    Result shapes:
        - get_room_members: member state events,
          [{"state_key": user_id, "content": {"membership": ..., "displayname": ...}}]
        - get_room_state: all current state events,
          [{"type": ..., "state_key": ..., "content": {...}}]
        - get_room_name / get_room_topic: {"name": ...} / {"topic": ...}
        - get_power_levels / get_membership: the state event content
        - send_* / set_* / invite_* ...: an acknowledgement mapping

    Every method raises ProtocolError on failure.
    """

    # Room state

    @abstractmethod
    def get_room_members(self, room_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_room_state(self, room_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_room_name(self, room_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_room_name(self, room_id: str, name: Optional[str]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_room_topic(self, room_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_room_topic(self, room_id: str, topic: Optional[str]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_room_alias(self, room_id: str, room_alias: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_join_rule(self, room_id: str, join_rule: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_guest_access(self, room_id: str, guest_access: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_power_levels(self, room_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_power_levels(self, room_id: str, content: Dict[str, Any]) -> Dict[str, Any]:
        ...

    # Membership

    @abstractmethod
    def invite_user(self, room_id: str, user_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def kick_user(self, room_id: str, user_id: str, reason: str = "") -> Dict[str, Any]:
        ...

    @abstractmethod
    def ban_user(self, room_id: str, user_id: str, reason: str = "") -> Dict[str, Any]:
        ...

    @abstractmethod
    def unban_user(self, room_id: str, user_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def leave_room(self, room_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_membership(self, room_id: str, user_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_membership(
        self,
        room_id: str,
        user_id: str,
        membership: str,
        reason: str = "",
        content: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    # Timeline

    @abstractmethod
    def get_room_messages(
        self,
        room_id: str,
        from_token: Optional[str],
        direction: Direction = Direction.BACKWARD,
        limit: int = 10,
    ) -> MessagesPage:
        ...

    @abstractmethod
    def send_message(self, room_id: str, text: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def send_message_event(
        self, room_id: str, event_type: str, content: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Send an arbitrary message event (used for HTML messages)."""
        ...

    @abstractmethod
    def send_emote(self, room_id: str, text: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def send_notice(self, room_id: str, text: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def send_content(
        self,
        room_id: str,
        url: str,
        name: str,
        msgtype: str,
        extra_information: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a media message (file, image, video, audio)."""
        ...

    @abstractmethod
    def send_location(
        self,
        room_id: str,
        geo_uri: str,
        name: str,
        thumbnail_url: Optional[str] = None,
        thumbnail_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def redact_event(
        self, room_id: str, event_id: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        ...

    # Per-user room data

    @abstractmethod
    def get_room_account_data(
        self, user_id: str, room_id: str, type_key: str
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def set_room_account_data(
        self, user_id: str, room_id: str, type_key: str, account_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_user_tags(self, user_id: str, room_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def add_user_tag(
        self,
        user_id: str,
        room_id: str,
        tag: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def remove_user_tag(self, user_id: str, room_id: str, tag: str) -> Dict[str, Any]:
        ...
