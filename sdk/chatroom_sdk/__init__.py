"""
Chatroom SDK - client-side room state cache.

This SDK mirrors remote chat rooms locally:
- RoomState: cached name/topic/aliases/policies, lazy membership,
  bounded timeline history and event observers
- RoomClient: registry of rooms and routing of sync payloads
- RoomAdministration: the transport protocol rooms call into

Example:
    >>> from chatroom_sdk import RoomClient
    >>>
    >>> client = RoomClient(api, "@me:example.org")
    >>> room = client.ensure_room("!abc:example.org")
    >>> room.on_event.add_handler(lambda record: print(record.content))
    >>> client.handle_sync(sync_response)
    >>> room.display_name()
    'Alice and Bob'

Invariants:
    - Remote failures never leave a room partially updated
    - Room history never exceeds its configured limit

Version: 1.0.0
"""

__version__ = "1.0.0"

from .administration import Direction, MessagesPage, RoomAdministration
from .client import RoomClient
from .config import Settings, setup_logging
from .errors import (
    ChatRoomError,
    NotJoinedError,
    ProtocolConnectionError,
    ProtocolError,
    ProtocolTimeoutError,
    RequestError,
    RoomNotFoundError,
    UnexpectedResponseError,
    UnknownSeedFieldError,
)
from .events import EventHandlerList, EventRecord, ObserverRegistry
from .history import EventHistoryBuffer
from .members import MemberSet, RoomMember
from .memory import InMemoryRoomAdministration
from .room import GuestAccess, JoinRule, RoomState

__all__ = [
    # Version
    "__version__",
    # Rooms
    "RoomClient",
    "RoomState",
    "JoinRule",
    "GuestAccess",
    # Building blocks
    "EventRecord",
    "EventHandlerList",
    "ObserverRegistry",
    "EventHistoryBuffer",
    "MemberSet",
    "RoomMember",
    # Transport
    "RoomAdministration",
    "MessagesPage",
    "Direction",
    "InMemoryRoomAdministration",
    # Config
    "Settings",
    "setup_logging",
    # Errors
    "ChatRoomError",
    "ProtocolError",
    "RequestError",
    "ProtocolConnectionError",
    "ProtocolTimeoutError",
    "UnexpectedResponseError",
    "NotJoinedError",
    "UnknownSeedFieldError",
    "RoomNotFoundError",
]
