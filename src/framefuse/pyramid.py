"""
Image pyramid construction by cascading box-filter downsampling.

All levels of a pyramid live in one contiguous float32 arena; each level
is a (height, width, channels) view into it. Level 0 is the finest level
(the first downsampling applied to the input) and level n-1 the coarsest.
Level i is always built from level i-1, never from the input directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np

from .errors import AllocationError, InvalidParameterError
from .image import PIXEL_DTYPE, as_image

logger = logging.getLogger(__name__)


def downsample_image(
    image: np.ndarray,
    factor: int,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """
    Downsample an image by box-filter averaging.

    Each output sample is the mean of a non-overlapping factor x factor
    block of the input, computed per channel.

    Parameters
    ----------
    image : np.ndarray
        Input image (H, W) or (H, W, C).
    factor : int
        Downsampling factor (>= 1). A factor of 1 returns an exact copy.
    out : np.ndarray, optional
        Preallocated destination of shape (H // factor, W // factor, C).

    Returns
    -------
    np.ndarray
        Downsampled image of shape (H // factor, W // factor, C).

    Notes
    -----
    When the input size is not divisible by the factor, the remainder rows
    and columns are dropped.
    """
    img = as_image(image)
    factor = int(factor)
    if factor < 1:
        raise InvalidParameterError(f"Downsampling factor must be >= 1, got {factor}")

    height, width, channels = img.shape
    new_height, new_width = height // factor, width // factor
    if new_height == 0 or new_width == 0:
        raise InvalidParameterError(
            f"Factor {factor} collapses a {height}x{width} image to zero size"
        )

    if out is None:
        try:
            out = np.empty((new_height, new_width, channels), dtype=PIXEL_DTYPE)
        except MemoryError as e:
            raise AllocationError(
                f"Cannot allocate downsampled level {new_height}x{new_width}x{channels}"
            ) from e
    elif out.shape != (new_height, new_width, channels):
        raise InvalidParameterError(
            f"Output buffer has shape {out.shape}, expected "
            f"{(new_height, new_width, channels)}"
        )

    if factor == 1:
        out[...] = img
        return out

    blocks = img[: new_height * factor, : new_width * factor].reshape(
        new_height, factor, new_width, factor, channels
    )
    out[...] = blocks.mean(axis=(1, 3), dtype=np.float64)
    return out


def pyramid_shapes(
    base_shape: tuple[int, int, int],
    factors: Sequence[int],
) -> list[tuple[int, int, int]]:
    """Shapes of each pyramid level for a base image shape and factor list."""
    height, width, channels = base_shape
    shapes = []
    for i, factor in enumerate(factors):
        if int(factor) < 1:
            raise InvalidParameterError(
                f"Pyramid level {i}: factor must be >= 1, got {factor}"
            )
        height //= int(factor)
        width //= int(factor)
        if height == 0 or width == 0:
            raise InvalidParameterError(
                f"Pyramid level {i} collapses to zero size (factor {factor})"
            )
        shapes.append((height, width, channels))
    return shapes


@dataclass
class ImagePyramid:
    """
    Cascade of progressively coarser images stored in a single arena.

    Use :meth:`build` to create a pyramid; index it like a sequence to get
    the level views.
    """

    arena: np.ndarray
    shapes: list[tuple[int, int, int]]
    factors: list[int] = field(default_factory=list)

    @classmethod
    def build(cls, image: np.ndarray, factors: Sequence[int]) -> ImagePyramid:
        """
        Build a pyramid from a base image.

        Parameters
        ----------
        image : np.ndarray
            Base image (H, W) or (H, W, C).
        factors : sequence of int
            Per-level downsampling factors, finest first. Level i is
            ``downsample_image(level[i-1], factors[i])`` and level 0 is
            ``downsample_image(image, factors[0])``.

        Returns
        -------
        ImagePyramid

        Raises
        ------
        InvalidParameterError
            If the image is missing, the factor list is empty, a factor is
            below 1 or a level collapses to zero size.
        AllocationError
            If the arena cannot be allocated. No partial pyramid is kept.
        """
        if image is None:
            raise InvalidParameterError("Cannot build a pyramid from a missing image")
        factors = [int(f) for f in factors]
        if len(factors) == 0:
            raise InvalidParameterError("Pyramid factor list is empty")

        base = as_image(image)
        shapes = pyramid_shapes(base.shape, factors)
        total = sum(h * w * c for h, w, c in shapes)
        try:
            arena = np.empty(total, dtype=PIXEL_DTYPE)
        except MemoryError as e:
            raise AllocationError(
                f"Cannot allocate pyramid arena of {total} samples"
            ) from e

        pyramid = cls(arena=arena, shapes=shapes, factors=factors)
        previous = base
        for i, factor in enumerate(factors):
            level = pyramid[i]
            downsample_image(previous, factor, out=level)
            previous = level

        logger.debug(
            "Built %d-level pyramid from %dx%d: %s",
            len(shapes),
            base.shape[0],
            base.shape[1],
            ", ".join(f"{h}x{w}" for h, w, _ in shapes),
        )
        return pyramid

    @property
    def num_levels(self) -> int:
        return len(self.shapes)

    def _offset(self, index: int) -> int:
        return sum(h * w * c for h, w, c in self.shapes[:index])

    def __len__(self) -> int:
        return len(self.shapes)

    def __getitem__(self, index: int) -> np.ndarray:
        if index < 0:
            index += len(self.shapes)
        if not 0 <= index < len(self.shapes):
            raise IndexError(f"Pyramid level {index} out of range")
        shape = self.shapes[index]
        start = self._offset(index)
        size = shape[0] * shape[1] * shape[2]
        return self.arena[start : start + size].reshape(shape)

    def __iter__(self) -> Iterator[np.ndarray]:
        for i in range(len(self.shapes)):
            yield self[i]

    @property
    def levels(self) -> list[np.ndarray]:
        return list(self)

    @property
    def finest(self) -> np.ndarray:
        return self[0]

    @property
    def coarsest(self) -> np.ndarray:
        return self[-1]


def build_pyramid(image: np.ndarray, factors: Sequence[int]) -> ImagePyramid:
    """Build an :class:`ImagePyramid` (functional alias of ``ImagePyramid.build``)."""
    return ImagePyramid.build(image, factors)
