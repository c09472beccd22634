"""
Unit tests for the bounded event history.

Tests cover:
- FIFO eviction at capacity
- Changing the limit at runtime
- Limit validation
"""

import pytest

from sdk.chatroom_sdk.history import EventHistoryBuffer


def ev(n: int) -> dict:
    return {"event_id": f"${n}", "type": "m.room.message"}


class TestEventHistoryBuffer:
    """Tests for EventHistoryBuffer."""

    def test_retains_last_n_in_arrival_order(self):
        """Appending M > N events keeps exactly the last N."""
        buf = EventHistoryBuffer(limit=4)

        for n in range(1, 11):
            buf.append(ev(n))

        assert [e["event_id"] for e in buf] == ["$7", "$8", "$9", "$10"]

    def test_evicts_oldest_first(self):
        """Third event into a buffer of two drops the first."""
        buf = EventHistoryBuffer(limit=2)

        assert buf.append(ev(1)) == []
        assert buf.append(ev(2)) == []
        evicted = buf.append(ev(3))

        assert evicted == [ev(1)]
        assert buf.to_list() == [ev(2), ev(3)]

    def test_shrinking_limit_applies_on_next_append(self):
        """Lowering the limit does not trim until the next append."""
        buf = EventHistoryBuffer(limit=5)
        for n in range(1, 6):
            buf.append(ev(n))

        buf.limit = 2
        assert len(buf) == 5

        buf.append(ev(6))
        assert [e["event_id"] for e in buf] == ["$5", "$6"]

    def test_growing_limit_keeps_everything(self):
        """Raising the limit lets history grow further."""
        buf = EventHistoryBuffer(limit=1)
        buf.append(ev(1))
        buf.limit = 3

        buf.append(ev(2))
        buf.append(ev(3))

        assert len(buf) == 3

    def test_zero_limit_retains_nothing(self):
        """A zero limit evicts every event immediately."""
        buf = EventHistoryBuffer(limit=0)

        buf.append(ev(1))

        assert len(buf) == 0

    def test_negative_limit_rejected(self):
        """Negative limits are a programming error."""
        with pytest.raises(ValueError, match="must be >= 0"):
            EventHistoryBuffer(limit=-1)

        buf = EventHistoryBuffer()
        with pytest.raises(ValueError):
            buf.limit = -5

    def test_iteration_is_a_snapshot(self):
        """Iterating while appending does not fail."""
        buf = EventHistoryBuffer(limit=3)
        buf.append(ev(1))

        for _ in buf:
            buf.append(ev(2))

        assert len(buf) == 2

    def test_clear(self):
        buf = EventHistoryBuffer(limit=3)
        buf.append(ev(1))
        buf.clear()
        assert buf.to_list() == []
