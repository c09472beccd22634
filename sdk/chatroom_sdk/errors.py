"""
Error types for the chatroom SDK.

This module defines all exception types raised by the SDK:
- ChatRoomError: Base exception
- ProtocolError: A remote call failed (network, auth, or server-rejected)
- NotJoinedError: Operation requires the local user to be joined
- UnknownSeedFieldError: Unknown key in a room seed mapping
- RoomNotFoundError: Room is not known to the client

Only ProtocolError (and its subclasses) is ever swallowed by room
operations. Everything else signals caller misuse and propagates.

Invariants:
    - All errors inherit from ChatRoomError
    - Errors include context for debugging
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ChatRoomError(Exception):
    """Base exception for all chatroom SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CHATROOM_ERROR"
        self.details = details or {}


class ProtocolError(ChatRoomError):
    """A call through the room administration transport failed.

    Raised by transport implementations. Room reload and mutation
    operations catch this class and report failure instead of raising.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "PROTOCOL_ERROR", details=details)


class RequestError(ProtocolError):
    """The server rejected the request.

    Attributes:
        errcode: Server-side error code (e.g. M_FORBIDDEN)
        http_status: HTTP status of the response, if any
    """

    def __init__(
        self,
        message: str,
        errcode: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="REQUEST_ERROR",
            details={"errcode": errcode, "http_status": http_status},
        )
        self.errcode = errcode
        self.http_status = http_status


class ProtocolConnectionError(ProtocolError):
    """The server could not be reached."""

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class ProtocolTimeoutError(ProtocolError):
    """The remote call did not complete in time."""

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        super().__init__(
            message,
            code="TIMEOUT",
            details={"timeout": timeout},
        )
        self.timeout = timeout


class UnexpectedResponseError(ProtocolError):
    """The server answered with something the SDK cannot interpret."""

    def __init__(self, message: str, response: Any = None) -> None:
        super().__init__(
            message,
            code="UNEXPECTED_RESPONSE",
            details={"response": response},
        )
        self.response = response


class NotJoinedError(ChatRoomError):
    """The local user must be joined to the room for this operation.

    Raised when:
    - Setting a per-room profile while invited, left or banned
    """

    def __init__(self, room_id: str, user_id: str, membership: Optional[str] = None) -> None:
        super().__init__(
            f"Can't set profile for '{user_id}' in '{room_id}' "
            f"without having joined the room (membership: {membership})",
            code="NOT_JOINED",
            details={
                "room_id": room_id,
                "user_id": user_id,
                "membership": membership,
            },
        )
        self.room_id = room_id
        self.user_id = user_id
        self.membership = membership


class UnknownSeedFieldError(ChatRoomError):
    """Unknown field in a room seed.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown room seed field '{field_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_SEED_FIELD",
            details={"field_name": field_name, "suggestions": suggestions},
        )
        self.field_name = field_name
        self.suggestions = suggestions


class RoomNotFoundError(ChatRoomError):
    """Room is not registered with the client.

    Raised when:
    - The room was never seen in a sync or join
    - The room was left and deregistered
    """

    def __init__(self, room_id: str) -> None:
        super().__init__(
            f"Room '{room_id}' is not known to this client",
            code="ROOM_NOT_FOUND",
            details={"room_id": room_id},
        )
        self.room_id = room_id
