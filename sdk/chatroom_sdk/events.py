"""
Event records and observer dispatch for rooms.

This module provides:
- EventRecord: An inbound protocol event annotated with its room
- EventHandlerList: An ordered list of subscribed handlers
- ObserverRegistry: The three per-room subscription channels

Dispatch is fire-and-forget. A failing handler is logged and skipped so
that ingestion never fails because of an observer.

Invariants:
    - EventRecord is immutable once created
    - The three channels are independent (subscribing to one never
      delivers events from another)
    - Handlers run in subscription order
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from .room import RoomState

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventRecord"], Any]
EventFilter = Union[Callable[["EventRecord"], bool], Mapping[str, Any]]


@dataclass(frozen=True)
class EventRecord:
    """One inbound event, annotated with the room it arrived in.

    Attributes:
        room: Room the event belongs to
        event: Raw event mapping as delivered by the transport
    """

    room: RoomState
    event: Mapping[str, Any]

    @property
    def event_type(self) -> str | None:
        return self.event.get("type")

    @property
    def event_id(self) -> str | None:
        return self.event.get("event_id")

    @property
    def sender(self) -> str | None:
        return self.event.get("sender")

    @property
    def content(self) -> Mapping[str, Any]:
        return self.event.get("content") or {}

    @property
    def state_key(self) -> str | None:
        return self.event.get("state_key")

    @property
    def is_state(self) -> bool:
        """Whether the event changes room state (carries a state_key)."""
        return "state_key" in self.event


def _matches(record: EventRecord, event_filter: EventFilter | None) -> bool:
    if event_filter is None:
        return True
    if callable(event_filter):
        return bool(event_filter(record))
    return all(record.event.get(k) == v for k, v in event_filter.items())


class EventHandlerList:
    """Ordered list of handlers for one event channel.

    Example:
        >>> handlers = EventHandlerList("on_event")
        >>> handler_id = handlers.add_handler(print, {"type": "m.room.message"})
        >>> handlers.remove_handler(handler_id)
        True
    """

    def __init__(self, name: str, log: logging.Logger | None = None) -> None:
        self.name = name
        self._log = log or logger
        self._handlers: dict[str, tuple[EventHandler, EventFilter | None]] = {}

    def add_handler(
        self,
        handler: EventHandler,
        filter: EventFilter | None = None,
    ) -> str:
        """Subscribe a handler.

        Args:
            handler: Callable receiving each EventRecord
            filter: Predicate on the record, or a mapping whose items must
                all be present in the raw event

        Returns:
            Handler ID for remove_handler()
        """
        handler_id = str(uuid.uuid4())
        self._handlers[handler_id] = (handler, filter)
        return handler_id

    def remove_handler(self, handler_id: str) -> bool:
        """Unsubscribe a handler. Returns False if it was not subscribed."""
        return self._handlers.pop(handler_id, None) is not None

    def fire(self, record: EventRecord) -> None:
        """Deliver a record to every matching handler."""
        for handler, event_filter in list(self._handlers.values()):
            try:
                if _matches(record, event_filter):
                    handler(record)
            except Exception:
                self._log.exception(
                    "Handler on %s failed for event %s in %s",
                    self.name,
                    record.event_id,
                    record.room.id,
                )

    def __len__(self) -> int:
        return len(self._handlers)


class ObserverRegistry:
    """The three subscription channels of a room.

    Attributes:
        on_event: Every timeline event
        on_state_event: Timeline events that change room state
        on_ephemeral_event: Ephemeral events (typing, receipts, ...)
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.on_event = EventHandlerList("on_event", log)
        self.on_state_event = EventHandlerList("on_state_event", log)
        self.on_ephemeral_event = EventHandlerList("on_ephemeral_event", log)

    def dispatch_timeline(self, record: EventRecord) -> None:
        self.on_event.fire(record)
        if record.is_state:
            self.on_state_event.fire(record)

    def dispatch_ephemeral(self, record: EventRecord) -> None:
        self.on_ephemeral_event.fire(record)
