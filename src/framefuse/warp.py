"""
Image warping by tile-resolution displacement maps.

Each output pixel takes the displacement of the tile it falls in
(nearest-tile lookup), adds it to its own coordinates and samples the
source bilinearly. Pixels in the remainder strip beyond the last full
tile use the last tile of their row/column.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import ndimage

from .errors import AllocationError, InvalidParameterError
from .image import AlignmentMap, PIXEL_DTYPE, as_image

logger = logging.getLogger(__name__)


def bilinear_sample(plane: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Bilinear interpolation of a 2D plane at (x, y) positions.

    Positions must satisfy ``0 <= x < width - 1`` and ``0 <= y < height - 1``
    for the four neighbours to exist; callers mask other positions out.
    """
    coords = np.stack([np.asarray(y, dtype=np.float64), np.asarray(x, dtype=np.float64)])
    return ndimage.map_coordinates(plane, coords, order=1, mode="nearest")


def valid_sample_mask(x: np.ndarray, y: np.ndarray, height: int, width: int) -> np.ndarray:
    """True where a bilinear sample at (x, y) has all four neighbours."""
    return (x >= 0) & (x < width - 1) & (y >= 0) & (y < height - 1)


def resolve_tile_size(alignments: AlignmentMap, shape: tuple[int, int], tile_size: int | None) -> int:
    """
    Tile size governing a map over an image of ``shape``.

    Uses ``tile_size`` if given, then the map's own tile size, and finally
    the largest tile that fits the map into the image.
    """
    if tile_size is not None:
        if tile_size < 1:
            raise InvalidParameterError(f"tile_size must be >= 1, got {tile_size}")
        return int(tile_size)
    if alignments.tile_size >= 1:
        return int(alignments.tile_size)
    inferred = max(1, min(shape[0] // alignments.height, shape[1] // alignments.width))
    logger.debug("Inferred tile size %d for a %dx%d map", inferred, *alignments.shape)
    return inferred


def dense_flow(
    alignments: AlignmentMap,
    shape: tuple[int, int],
    tile_size: int | None = None,
) -> np.ndarray:
    """
    Expand a tile map to one displacement per pixel.

    Returns
    -------
    np.ndarray
        Array of shape (height, width, 2) holding (x, y) per pixel.
    """
    if alignments.height == 0 or alignments.width == 0:
        raise InvalidParameterError("Cannot expand an empty alignment map")
    height, width = shape
    tile = resolve_tile_size(alignments, shape, tile_size)
    tile_y = np.minimum(np.arange(height) // tile, alignments.height - 1)
    tile_x = np.minimum(np.arange(width) // tile, alignments.width - 1)
    return alignments.data[tile_y[:, np.newaxis], tile_x[np.newaxis, :]]


def warp_image(
    src: np.ndarray,
    alignments: AlignmentMap,
    tile_size: int | None = None,
    fill_value: float = 0.0,
) -> np.ndarray:
    """
    Resample an image according to a displacement map.

    Parameters
    ----------
    src : np.ndarray
        Source image (H, W) or (H, W, C).
    alignments : AlignmentMap
        Tile-resolution displacements in source pixels.
    tile_size : int, optional
        Tile size of the map in source pixels (defaults to the map's).
    fill_value : float, default 0.0
        Value of output pixels whose sampling position has no complete
        bilinear neighbourhood. Use NaN to let temporal fusion ignore them.

    Returns
    -------
    np.ndarray
        Warped image with the source shape (H, W, C), float32.
    """
    if src is None or alignments is None:
        raise InvalidParameterError("warp_image needs a source image and an alignment map")
    img = as_image(src)
    height, width, channels = img.shape

    flow = dense_flow(alignments, (height, width), tile_size)
    sample_x = np.arange(width)[np.newaxis, :] + flow[..., 0].astype(np.float64)
    sample_y = np.arange(height)[:, np.newaxis] + flow[..., 1].astype(np.float64)
    valid = valid_sample_mask(sample_x, sample_y, height, width)

    try:
        warped = np.full((height, width, channels), fill_value, dtype=PIXEL_DTYPE)
    except MemoryError as e:
        raise AllocationError(f"Cannot allocate warped image {height}x{width}x{channels}") from e

    xs = sample_x[valid]
    ys = sample_y[valid]
    for c in range(channels):
        warped[..., c][valid] = bilinear_sample(img[..., c], xs, ys)

    n_invalid = valid.size - int(np.count_nonzero(valid))
    if n_invalid:
        logger.debug("Warp: %d of %d pixels outside the sampling range", n_invalid, valid.size)
    return warped
