"""
Dense containers used by the alignment engine.

Images are plain numpy arrays of shape (height, width, channels) in
float32, so the flat sample index ``(y*width + x)*channels + c`` is the
array's own row-major layout. Displacement maps are tile-resolution
grids wrapped in :class:`AlignmentMap`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from .errors import AllocationError, InvalidParameterError

logger = logging.getLogger(__name__)

PIXEL_DTYPE = np.float32


class Alignment(NamedTuple):
    """A single tile displacement in pixels of its level."""

    x: float
    y: float


def create_image(height: int, width: int, channels: int = 1, fill: float = 0.0) -> np.ndarray:
    """
    Allocate an image of the given dimensions.

    Parameters
    ----------
    height, width, channels : int
        Image dimensions. All must be positive.
    fill : float, default 0.0
        Initial sample value.

    Returns
    -------
    np.ndarray
        Array of shape (height, width, channels), dtype float32.

    Raises
    ------
    InvalidParameterError
        If a dimension is not positive.
    AllocationError
        If the buffer cannot be allocated.
    """
    if height <= 0 or width <= 0 or channels <= 0:
        raise InvalidParameterError(
            f"Image dimensions must be positive, got {height}x{width}x{channels}"
        )
    try:
        return np.full((height, width, channels), fill, dtype=PIXEL_DTYPE)
    except MemoryError as e:
        raise AllocationError(
            f"Cannot allocate image {height}x{width}x{channels}"
        ) from e


def as_image(data: np.ndarray) -> np.ndarray:
    """
    Coerce an array to the (height, width, channels) float32 layout.

    2D arrays are promoted to a single channel. The input is not copied
    when it already has the right layout.
    """
    if data is None:
        raise InvalidParameterError("Image is None")
    arr = np.asarray(data)
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    if arr.ndim != 3:
        raise InvalidParameterError(f"Expected a 2D or 3D image, got shape {arr.shape}")
    if arr.shape[0] == 0 or arr.shape[1] == 0 or arr.shape[2] == 0:
        raise InvalidParameterError(f"Image has an empty dimension: {arr.shape}")
    return np.ascontiguousarray(arr, dtype=PIXEL_DTYPE)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Average all channels into a single-channel image."""
    img = as_image(image)
    if img.shape[2] == 1:
        return img
    return img.mean(axis=2, keepdims=True, dtype=np.float64).astype(PIXEL_DTYPE)


def check_same_shape(a: np.ndarray, b: np.ndarray, what: str = "images") -> None:
    """Raise InvalidParameterError when two images differ in shape."""
    if a.shape != b.shape:
        raise InvalidParameterError(f"Mismatched {what}: {a.shape} vs {b.shape}")


@dataclass
class AlignmentMap:
    """
    Grid of per-tile displacements.

    ``data`` has shape (height, width, 2) with the last axis holding
    (x, y). Dimensions are measured in tiles; for an image level of size
    (H, W) and tile size T the map is (H // T, W // T).
    """

    data: np.ndarray
    tile_size: int = 0

    @classmethod
    def zeros(cls, height: int, width: int, tile_size: int = 0) -> AlignmentMap:
        """Allocate a map with every displacement at (0, 0)."""
        if height < 0 or width < 0:
            raise InvalidParameterError(
                f"Alignment map dimensions must be >= 0, got {height}x{width}"
            )
        try:
            data = np.zeros((height, width, 2), dtype=np.float32)
        except MemoryError as e:
            raise AllocationError(f"Cannot allocate alignment map {height}x{width}") from e
        return cls(data=data, tile_size=tile_size)

    @classmethod
    def for_image(cls, image: np.ndarray, tile_size: int) -> AlignmentMap:
        """Zero map covering an image with floor-division tiling."""
        if tile_size < 1:
            raise InvalidParameterError(f"tile_size must be >= 1, got {tile_size}")
        return cls.zeros(image.shape[0] // tile_size, image.shape[1] // tile_size, tile_size)

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape[0], self.data.shape[1]

    @property
    def x(self) -> np.ndarray:
        return self.data[..., 0]

    @property
    def y(self) -> np.ndarray:
        return self.data[..., 1]

    def __getitem__(self, index: tuple[int, int]) -> Alignment:
        ty, tx = index
        return Alignment(float(self.data[ty, tx, 0]), float(self.data[ty, tx, 1]))

    def __setitem__(self, index: tuple[int, int], value: tuple[float, float]) -> None:
        ty, tx = index
        self.data[ty, tx, 0] = value[0]
        self.data[ty, tx, 1] = value[1]

    def copy(self) -> AlignmentMap:
        return AlignmentMap(data=self.data.copy(), tile_size=self.tile_size)

    def scaled(self, factor: float) -> AlignmentMap:
        """Return a map whose displacements and tile size are multiplied by ``factor``."""
        return AlignmentMap(
            data=(self.data * factor).astype(np.float32),
            tile_size=int(round(self.tile_size * factor)),
        )

    def mean_displacement(self) -> Alignment:
        """Mean (x, y) over all tiles; (0, 0) for an empty map."""
        if self.data.size == 0:
            return Alignment(0.0, 0.0)
        mean = self.data.reshape(-1, 2).mean(axis=0, dtype=np.float64)
        return Alignment(float(mean[0]), float(mean[1]))
