"""
Hierarchical block matching on image pyramids.

Levels are processed from the coarsest to the finest. The coarsest level
starts from zero displacement; every finer level starts from the
upsampled map of the level above and refines it with an exhaustive
integer search around each tile's current displacement.

Displacements produced here are integer valued. Sub-pixel accuracy comes
from the ICA refinement stage (:mod:`framefuse.ica`).
"""

from __future__ import annotations

import logging

import numpy as np

from .config import BlockMatchingParams, DistanceMetric
from .errors import InvalidParameterError
from .image import AlignmentMap, as_image
from .pyramid import ImagePyramid

logger = logging.getLogger(__name__)

# Tile rows searched together; bounds the size of the gathered patch cube
DEFAULT_CHUNK_TILE_ROWS = 8


def init_block_matching(ref_image: np.ndarray, params: BlockMatchingParams) -> ImagePyramid:
    """
    Build the reference pyramid for block matching.

    Parameters
    ----------
    ref_image : np.ndarray
        Reference image (H, W) or (H, W, C).
    params : BlockMatchingParams
        Per-level configuration; only the factors are used here.

    Returns
    -------
    ImagePyramid
        Reference pyramid, reusable for several alternate images.
    """
    if ref_image is None:
        raise InvalidParameterError("ref_image is None")
    if params is None:
        raise InvalidParameterError("params is None")
    params.validate()
    return ImagePyramid.build(ref_image, params.factors)


def align_image_block_matching(
    image: np.ndarray,
    reference_pyramid: ImagePyramid,
    params: BlockMatchingParams,
    chunk_rows: int = DEFAULT_CHUNK_TILE_ROWS,
) -> AlignmentMap:
    """
    Align an image against a reference pyramid.

    Parameters
    ----------
    image : np.ndarray
        Alternate image, same shape as the reference image.
    reference_pyramid : ImagePyramid
        Pyramid from :func:`init_block_matching`.
    params : BlockMatchingParams
        Must be the parameters the reference pyramid was built with.
    chunk_rows : int, default 8
        Tile rows processed together by the local search.

    Returns
    -------
    AlignmentMap
        Displacement map of the finest level, in pixels of that level.
    """
    if image is None:
        raise InvalidParameterError("image is None")
    if reference_pyramid is None:
        raise InvalidParameterError("reference_pyramid is None")
    params.validate()
    if reference_pyramid.num_levels != params.num_levels:
        raise InvalidParameterError(
            f"Reference pyramid has {reference_pyramid.num_levels} levels, "
            f"params describe {params.num_levels}"
        )

    alt_pyramid = ImagePyramid.build(image, params.factors)
    if alt_pyramid.shapes != reference_pyramid.shapes:
        raise InvalidParameterError(
            f"Mismatched pyramids: reference {reference_pyramid.shapes[0]} "
            f"vs alternate {alt_pyramid.shapes[0]}"
        )

    alignments = None
    for level in range(params.num_levels - 1, -1, -1):
        alignments = align_on_level(
            reference_pyramid[level],
            alt_pyramid[level],
            params,
            level,
            alignments,
            chunk_rows=chunk_rows,
        )

    return alignments


def align_on_level(
    ref_level: np.ndarray,
    alt_level: np.ndarray,
    params: BlockMatchingParams,
    level_idx: int,
    prev_alignments: AlignmentMap | None = None,
    chunk_rows: int = DEFAULT_CHUNK_TILE_ROWS,
) -> AlignmentMap:
    """
    Compute the displacement map of one pyramid level.

    Without ``prev_alignments`` every tile starts at (0, 0); otherwise the
    map of level ``level_idx + 1`` is upsampled as the initial guess.
    """
    level = params.levels[level_idx]
    tile_size = level.tile_size
    n_tiles_y = ref_level.shape[0] // tile_size
    n_tiles_x = ref_level.shape[1] // tile_size

    if prev_alignments is None:
        alignments = AlignmentMap.zeros(n_tiles_y, n_tiles_x, tile_size)
    else:
        coarser = params.levels[level_idx + 1]
        alignments = upsample_alignments(
            prev_alignments,
            (n_tiles_y, n_tiles_x),
            upsampling_factor=coarser.factor,
            tile_size=tile_size,
            prev_tile_size=coarser.tile_size,
        )

    local_search(
        ref_level,
        alt_level,
        tile_size,
        level.search_radius,
        alignments,
        level.distance,
        chunk_rows=chunk_rows,
    )

    mean = alignments.mean_displacement()
    logger.debug(
        "Level %d: %dx%d tiles (tile=%d, radius=%d, %s), mean shift (%.2f, %.2f)",
        level_idx,
        n_tiles_y,
        n_tiles_x,
        tile_size,
        level.search_radius,
        level.distance.name,
        mean.x,
        mean.y,
    )
    return alignments


def upsample_alignments(
    prev_alignments: AlignmentMap,
    new_shape: tuple[int, int],
    upsampling_factor: int,
    tile_size: int,
    prev_tile_size: int,
) -> AlignmentMap:
    """
    Map a coarse displacement grid onto a finer level's tile grid.

    Parameters
    ----------
    prev_alignments : AlignmentMap
        Map of the coarser level.
    new_shape : tuple[int, int]
        (height, width) in tiles of the finer level.
    upsampling_factor : int
        Pixel scale ratio between the two levels. Displacements are
        multiplied by this factor.
    tile_size, prev_tile_size : int
        Tile sizes of the finer and coarser level.

    Returns
    -------
    AlignmentMap
        Finer-level map.

    Notes
    -----
    One coarse tile spans ``repeat = upsampling_factor * prev_tile_size /
    tile_size`` fine tiles per axis; fine tile (x, y) takes coarse tile
    (floor(x / repeat), floor(y / repeat)). Fine tiles beyond the coarse
    map's coverage start at (0, 0).
    """
    if upsampling_factor < 1 or tile_size < 1 or prev_tile_size < 1:
        raise InvalidParameterError(
            f"Invalid upsampling: factor={upsampling_factor}, tile_size={tile_size}, "
            f"prev_tile_size={prev_tile_size}"
        )

    new_height, new_width = new_shape
    upsampled = AlignmentMap.zeros(new_height, new_width, tile_size)
    repeat = upsampling_factor * prev_tile_size / tile_size

    ys = np.arange(new_height)
    xs = np.arange(new_width)
    covered_y = ys[ys < repeat * prev_alignments.height]
    covered_x = xs[xs < repeat * prev_alignments.width]
    if covered_y.size == 0 or covered_x.size == 0:
        return upsampled

    prev_y = np.floor(covered_y / repeat).astype(np.intp)
    prev_x = np.floor(covered_x / repeat).astype(np.intp)
    upsampled.data[np.ix_(covered_y, covered_x)] = (
        prev_alignments.data[np.ix_(prev_y, prev_x)] * upsampling_factor
    )
    return upsampled


def local_search(
    ref_level: np.ndarray,
    alt_level: np.ndarray,
    tile_size: int,
    search_radius: int,
    alignments: AlignmentMap,
    distance: DistanceMetric = DistanceMetric.L2,
    chunk_rows: int = DEFAULT_CHUNK_TILE_ROWS,
) -> AlignmentMap:
    """
    Refine a displacement map in place by exhaustive integer search.

    Parameters
    ----------
    ref_level, alt_level : np.ndarray
        Reference and alternate images of one level, same shape.
    tile_size : int
        Tile edge length in pixels.
    search_radius : int
        Shifts (dx, dy) in [-radius, radius]^2 are evaluated.
    alignments : AlignmentMap
        Current displacements; updated in place and returned.
    distance : DistanceMetric, default L2
        L1 (sum of absolute differences) or L2 (sum of squares) over the
        tile and all channels.
    chunk_rows : int, default 8
        Number of tile rows gathered at once.

    Returns
    -------
    AlignmentMap
        The same map, with the best shift of each tile added.

    Notes
    -----
    A candidate whose alternate patch leaves the image, even by one pixel,
    is discarded. Candidates are scanned with dy in the outer loop and dx
    in the inner loop; a candidate only replaces the best one if its
    distance is strictly lower. Tiles without a valid candidate keep their
    displacement.
    """
    ref = as_image(ref_level)
    alt = as_image(alt_level)
    if ref.shape != alt.shape:
        raise InvalidParameterError(f"Mismatched levels: {ref.shape} vs {alt.shape}")
    if tile_size < 1:
        raise InvalidParameterError(f"tile_size must be >= 1, got {tile_size}")
    if search_radius < 1:
        raise InvalidParameterError(f"search_radius must be >= 1, got {search_radius}")
    if chunk_rows < 1:
        raise InvalidParameterError(f"chunk_rows must be >= 1, got {chunk_rows}")

    n_ty, n_tx = alignments.shape
    height, width, channels = alt.shape
    if n_ty * tile_size > height or n_tx * tile_size > width:
        raise InvalidParameterError(
            f"Alignment map {n_ty}x{n_tx} (tile {tile_size}) does not fit a "
            f"{height}x{width} level"
        )
    if n_ty == 0 or n_tx == 0:
        return alignments

    use_l1 = distance == DistanceMetric.L1
    offsets = np.arange(tile_size)
    tile_x0 = (np.arange(n_tx) * tile_size)[np.newaxis, :]
    n_unmatched = 0

    for row_start in range(0, n_ty, chunk_rows):
        row_end = min(row_start + chunk_rows, n_ty)
        n_rows = row_end - row_start

        ref_tiles = (
            ref[row_start * tile_size : row_end * tile_size, : n_tx * tile_size]
            .reshape(n_rows, tile_size, n_tx, tile_size, channels)
            .transpose(0, 2, 1, 3, 4)
        )
        current = alignments.data[row_start:row_end]
        tile_y0 = (np.arange(row_start, row_end) * tile_size)[:, np.newaxis]

        min_dist = np.full((n_rows, n_tx), np.inf)
        best_shift = np.zeros((n_rows, n_tx, 2), dtype=np.float32)

        for dy in range(-search_radius, search_radius + 1):
            alt_y0 = tile_y0 + np.trunc(current[..., 1] + dy).astype(np.intp)
            valid_y = (alt_y0 >= 0) & (alt_y0 + tile_size <= height)
            if not valid_y.any():
                continue
            rows_idx = np.clip(alt_y0[..., np.newaxis] + offsets, 0, height - 1)

            for dx in range(-search_radius, search_radius + 1):
                alt_x0 = tile_x0 + np.trunc(current[..., 0] + dx).astype(np.intp)
                valid = valid_y & (alt_x0 >= 0) & (alt_x0 + tile_size <= width)
                if not valid.any():
                    continue
                cols_idx = np.clip(alt_x0[..., np.newaxis] + offsets, 0, width - 1)

                patches = alt[rows_idx[:, :, :, np.newaxis], cols_idx[:, :, np.newaxis, :]]
                diff = ref_tiles - patches
                if use_l1:
                    dist = np.abs(diff).sum(axis=(2, 3, 4), dtype=np.float64)
                else:
                    dist = np.square(diff).sum(axis=(2, 3, 4), dtype=np.float64)

                better = valid & (dist < min_dist)
                min_dist[better] = dist[better]
                best_shift[better] = (dx, dy)

        n_unmatched += int(np.count_nonzero(np.isinf(min_dist)))
        alignments.data[row_start:row_end] += best_shift

    if n_unmatched:
        logger.debug("%d tiles had no in-bounds candidate shift", n_unmatched)
    return alignments
