"""
Chatroom SDK Test Suite.

This package contains:
- unit/: Unit tests (mocked transport, no I/O)
- integration/: RoomClient and RoomState over the in-memory transport
"""
