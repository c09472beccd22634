"""
Room membership cache.

This module provides:
- RoomMember: Identity plus display attributes of one participant
- MemberSet: Identity-keyed, insertion-ordered participant collection

Invariants:
    - At most one member per user_id
    - ensure() is first-write-wins; later attributes for a known
      user_id are ignored
    - Members are only removed by replacing the whole set
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class RoomMember:
    """A room participant.

    Attributes:
        user_id: Identity key (e.g. @alice:example.org)
        display_name: Per-room display name, if any
        avatar_url: Per-room avatar URL, if any
    """

    user_id: str
    display_name: str | None = None
    avatar_url: str | None = None

    def get_display_name(self) -> str:
        """Display name, falling back to the user ID."""
        return self.display_name or self.user_id


class MemberSet:
    """Deduplicated collection of RoomMember keyed by user_id."""

    def __init__(self, members: Iterable[RoomMember] = ()) -> None:
        self._members: dict[str, RoomMember] = {}
        for member in members:
            self.ensure(member)

    def ensure(self, member: RoomMember) -> bool:
        """Insert unless a member with the same identity exists.

        Returns:
            True if the member was inserted
        """
        if member.user_id in self._members:
            return False
        self._members[member.user_id] = member
        return True

    def replace(self, members: Iterable[RoomMember]) -> None:
        """Swap the entire set for a freshly loaded one."""
        self._members = {}
        for member in members:
            self.ensure(member)

    def get(self, user_id: str) -> RoomMember | None:
        return self._members.get(user_id)

    def user_ids(self) -> list[str]:
        return list(self._members)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, RoomMember):
            item = item.user_id
        return item in self._members

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[RoomMember]:
        return iter(list(self._members.values()))

    def __bool__(self) -> bool:
        return bool(self._members)
