"""
Bounded timeline history for a room.

EventHistoryBuffer keeps the most recent events in arrival order. The
capacity can change at any time; a smaller limit is enforced on the next
append, never retroactively.

Invariants:
    - len(buffer) <= limit after every append
    - Eviction is strictly oldest-first, one event at a time
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator, Mapping
from typing import Any

logger = logging.getLogger(__name__)


class EventHistoryBuffer:
    """Fixed-capacity FIFO of raw timeline events.

    Example:
        >>> buf = EventHistoryBuffer(limit=2)
        >>> for ev in ({"event_id": "$1"}, {"event_id": "$2"}, {"event_id": "$3"}):
        ...     buf.append(ev)
        >>> [e["event_id"] for e in buf]
        ['$2', '$3']
    """

    def __init__(self, limit: int = 10) -> None:
        self._events: deque[Mapping[str, Any]] = deque()
        self.limit = limit

    @property
    def limit(self) -> int:
        """Maximum number of events retained after an append."""
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"History limit must be >= 0, got {value}")
        self._limit = value

    def append(self, event: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        """Append an event, evicting from the head while over capacity.

        Returns:
            Events evicted by this append, oldest first
        """
        self._events.append(event)
        evicted = []
        while len(self._events) > self._limit:
            evicted.append(self._events.popleft())
        if evicted:
            logger.debug("Evicted %d event(s) from history", len(evicted))
        return evicted

    def to_list(self) -> list[Mapping[str, Any]]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return iter(list(self._events))
