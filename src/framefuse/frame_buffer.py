"""
Fixed-capacity circular buffer of frames for temporal denoising.

Frames are addressed by logical position (0 = oldest). Once the buffer is
full, each push evicts the oldest frame, so the size stays at capacity.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from .errors import InvalidParameterError

logger = logging.getLogger(__name__)


@dataclass
class BufferedFrame:
    """A frame held by the buffer, with its sequence index and source."""

    image: np.ndarray
    index: int = -1
    path: str = ""


class FrameBuffer:
    """
    Circular buffer holding at most ``capacity`` frames.

    Parameters
    ----------
    capacity : int
        Maximum number of frames. For a temporal radius r the denoising
        driver uses ``2 * r + 1``.

    Examples
    --------
    >>> buffer = FrameBuffer(3)
    >>> for i in range(4):
    ...     evicted = buffer.push(np.zeros((2, 2)), index=i)
    >>> [f.index for f in buffer.entries]
    [1, 2, 3]
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise InvalidParameterError(f"capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._frames: deque[BufferedFrame] = deque(maxlen=self.capacity)

    @property
    def radius(self) -> int:
        """Temporal radius implied by the capacity."""
        return self.capacity // 2

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[np.ndarray]:
        for entry in self._frames:
            yield entry.image

    def __getitem__(self, position: int) -> np.ndarray:
        return self.entry(position).image

    @property
    def size(self) -> int:
        return len(self._frames)

    @property
    def is_full(self) -> bool:
        return len(self._frames) == self.capacity

    @property
    def entries(self) -> list[BufferedFrame]:
        return list(self._frames)

    def entry(self, position: int) -> BufferedFrame:
        """Entry at a logical position (0 = oldest; negative counts from newest)."""
        n = len(self._frames)
        if position < 0:
            position += n
        if not 0 <= position < n:
            raise IndexError(f"Buffer position {position} out of range (size {n})")
        return self._frames[position]

    def push(self, frame: np.ndarray, index: int = -1, path: str = "") -> BufferedFrame | None:
        """
        Insert a frame as the newest entry.

        Returns
        -------
        BufferedFrame or None
            The evicted oldest entry when the buffer was full.
        """
        if frame is None:
            raise InvalidParameterError("Cannot push a missing frame")
        evicted = self._frames[0] if self.is_full else None
        self._frames.append(BufferedFrame(image=frame, index=index, path=path))
        if evicted is not None:
            logger.debug("Frame buffer evicted frame %d", evicted.index)
        return evicted

    @property
    def center_index(self) -> int:
        """
        Logical position of the current center frame.

        The center trails the newest frame by the buffer radius; with a
        full buffer it is the middle entry.
        """
        if not self._frames:
            raise IndexError("Frame buffer is empty")
        return max(0, len(self._frames) - 1 - self.radius)

    def get(self, offset: int, center: int | None = None) -> np.ndarray:
        """Frame at ``offset`` from the center (default: :attr:`center_index`)."""
        return self.get_entry(offset, center).image

    def get_entry(self, offset: int, center: int | None = None) -> BufferedFrame:
        """Entry at ``offset`` from the center."""
        if center is None:
            center = self.center_index
        position = center + offset
        if not 0 <= position < len(self._frames):
            raise IndexError(
                f"Offset {offset} from center {center} is outside the buffer "
                f"(size {len(self._frames)})"
            )
        return self._frames[position]

    def available_offsets(self, radius: int, center: int | None = None) -> list[int]:
        """Offsets in [-radius, radius] that address a buffered frame."""
        if center is None:
            center = self.center_index
        return [
            offset
            for offset in range(-radius, radius + 1)
            if 0 <= center + offset < len(self._frames)
        ]

    def clear(self) -> None:
        self._frames.clear()
