"""
Tests for the frame_buffer module.
"""

import numpy as np
import pytest

from framefuse.errors import InvalidParameterError
from framefuse.frame_buffer import FrameBuffer


def _frame(value):
    return np.full((2, 2), value, dtype=np.float32)


class TestFrameBuffer:
    """Tests for the fixed-capacity circular buffer."""

    def test_push_until_full(self):
        """Frames accumulate until capacity without eviction."""
        buffer = FrameBuffer(3)
        evicted = [buffer.push(_frame(i), index=i) for i in range(3)]

        assert evicted == [None, None, None]
        assert len(buffer) == 3
        assert buffer.is_full

    def test_eviction_removes_oldest(self):
        """Insertion beyond capacity evicts exactly the oldest entry."""
        buffer = FrameBuffer(3)
        for i in range(3):
            buffer.push(_frame(i), index=i)

        evicted = buffer.push(_frame(3), index=3)

        assert evicted.index == 0
        assert np.all(evicted.image == 0)
        assert len(buffer) == 3
        assert [e.index for e in buffer.entries] == [1, 2, 3]

    def test_logical_indexing(self):
        """Position 0 is the oldest frame, -1 the newest."""
        buffer = FrameBuffer(2)
        for i in range(5):
            buffer.push(_frame(i), index=i)

        assert buffer[0][0, 0] == 3
        assert buffer[-1][0, 0] == 4
        with pytest.raises(IndexError):
            buffer[2]

    def test_center_of_full_buffer(self):
        """A full buffer centers on its middle entry."""
        buffer = FrameBuffer(5)
        for i in range(7):
            buffer.push(_frame(i), index=i)

        assert buffer.center_index == 2
        assert buffer.get_entry(0).index == 4
        assert buffer.get(-2)[0, 0] == 2
        assert buffer.get(2)[0, 0] == 6

    def test_center_trails_newest_while_filling(self):
        """Before the buffer is full the center trails the newest frame by the radius."""
        buffer = FrameBuffer(5)
        buffer.push(_frame(0), index=0)
        assert buffer.center_index == 0

        for i in range(1, 4):
            buffer.push(_frame(i), index=i)
        assert buffer.center_index == 1

    def test_get_with_explicit_center(self):
        """Offsets can be taken from any center position."""
        buffer = FrameBuffer(5)
        for i in range(5):
            buffer.push(_frame(i), index=i)

        assert buffer.get(1, center=0)[0, 0] == 1
        with pytest.raises(IndexError):
            buffer.get(-1, center=0)

    def test_available_offsets_truncated(self):
        """Only offsets that address a buffered frame are reported."""
        buffer = FrameBuffer(5)
        for i in range(3):
            buffer.push(_frame(i), index=i)

        assert buffer.available_offsets(2, center=0) == [0, 1, 2]
        assert buffer.available_offsets(2, center=2) == [-2, -1, 0]

    def test_clear(self):
        """Clearing empties the buffer."""
        buffer = FrameBuffer(2)
        buffer.push(_frame(1))
        buffer.clear()

        assert len(buffer) == 0
        with pytest.raises(IndexError):
            buffer.center_index

    def test_invalid_capacity(self):
        """Capacity must be at least one."""
        with pytest.raises(InvalidParameterError):
            FrameBuffer(0)

    def test_push_none_rejected(self):
        """A missing frame cannot be pushed."""
        with pytest.raises(InvalidParameterError):
            FrameBuffer(1).push(None)
