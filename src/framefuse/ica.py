"""
Iterative gradient-based refinement of tile displacements.

Each iteration performs one Gauss-Newton (Lucas-Kanade) step per tile.
The structure matrix of each tile is precomputed from the reference
gradients, so only the right-hand side ``b = -sum(grad * residual)``
changes between iterations. The residual is the bilinearly interpolated
alternate image at the displaced position minus the reference pixel.

Tiles whose matrix is numerically singular (|det| < 1e-10) are skipped;
pixels whose displaced position has no full bilinear neighbourhood do not
contribute. There is no early exit: exactly ``num_iterations`` steps run.
"""

from __future__ import annotations

import logging

import numpy as np

from .config import ICAParams
from .errors import InvalidParameterError, SingularSystemError
from .gradients import HessianMatrix, ImageGradients, compute_hessian, compute_image_gradients
from .image import AlignmentMap, as_image, check_same_shape
from .warp import bilinear_sample, valid_sample_mask

logger = logging.getLogger(__name__)

DET_THRESHOLD = 1e-10


def init_ica(ref_image: np.ndarray, params: ICAParams) -> ImageGradients:
    """Compute the reference gradients used by the refinement."""
    if ref_image is None:
        raise InvalidParameterError("ref_image is None")
    params.validate()
    return compute_image_gradients(ref_image, params.sigma_blur)


def solve_2x2(
    a: np.ndarray,
    b: np.ndarray,
    raise_on_singular: bool = False,
) -> np.ndarray:
    """
    Solve 2x2 linear systems by Cramer's rule.

    Parameters
    ----------
    a : np.ndarray
        Flattened matrices (a00, a01, a10, a11), shape (..., 4).
    b : np.ndarray
        Right-hand sides, shape (..., 2).
    raise_on_singular : bool, default False
        Raise :class:`SingularSystemError` instead of returning zero for a
        system with |det| < 1e-10.

    Returns
    -------
    np.ndarray
        Solutions of shape (..., 2); zero where the system is singular.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    det = a[..., 0] * a[..., 3] - a[..., 1] * a[..., 2]
    singular = np.abs(det) < DET_THRESHOLD
    if raise_on_singular and np.any(singular):
        raise SingularSystemError(f"Singular 2x2 system (|det| < {DET_THRESHOLD})")

    safe_det = np.where(singular, 1.0, det)
    x0 = (a[..., 3] * b[..., 0] - a[..., 1] * b[..., 1]) / safe_det
    x1 = (-a[..., 2] * b[..., 0] + a[..., 0] * b[..., 1]) / safe_det
    return np.where(singular[..., np.newaxis], 0.0, np.stack([x0, x1], axis=-1))


def refine_alignment_ica(
    ref_img: np.ndarray,
    alt_img: np.ndarray,
    grads: ImageGradients,
    hessian: HessianMatrix,
    initial_alignment: AlignmentMap,
    params: ICAParams,
) -> AlignmentMap:
    """
    Refine a displacement map with Gauss-Newton iterations.

    Parameters
    ----------
    ref_img, alt_img : np.ndarray
        Single-channel reference and alternate images, same shape.
    grads : ImageGradients
        Reference gradients from :func:`init_ica`.
    hessian : HessianMatrix
        Per-tile matrices from :func:`compute_hessian` with
        ``params.tile_size``.
    initial_alignment : AlignmentMap
        Starting displacements; not modified.
    params : ICAParams
        Iteration count and tile size.

    Returns
    -------
    AlignmentMap
        Refined copy of ``initial_alignment``.
    """
    params.validate()
    ref = as_image(ref_img)
    alt = as_image(alt_img)
    check_same_shape(ref, alt)
    if ref.shape[2] != 1:
        raise InvalidParameterError(
            f"ICA refinement needs single-channel images, got {ref.shape[2]} channels"
        )
    height, width = ref.shape[:2]
    if grads.gx.shape != (height, width):
        raise InvalidParameterError(
            f"Gradients {grads.gx.shape} do not match image {(height, width)}"
        )

    tile = params.tile_size
    current = initial_alignment.copy()
    current.tile_size = tile
    n_ty, n_tx = current.shape
    if n_ty > hessian.height or n_tx > hessian.width:
        raise InvalidParameterError(
            f"Alignment map {n_ty}x{n_tx} exceeds Hessian grid {hessian.height}x{hessian.width}"
        )
    if n_ty == 0 or n_tx == 0 or params.num_iterations == 0:
        return current

    # Pixels covered by the map's tiles, truncated at the image border
    cover_h = min(height, n_ty * tile)
    cover_w = min(width, n_tx * tile)
    ys = np.arange(cover_h)
    xs = np.arange(cover_w)
    tile_y = ys // tile
    tile_x = xs // tile
    labels = (tile_y[:, np.newaxis] * n_tx + tile_x[np.newaxis, :]).ravel()

    ref_plane = ref[:cover_h, :cover_w, 0].astype(np.float64)
    alt_plane = alt[:, :, 0].astype(np.float64)
    gx = grads.gx[:cover_h, :cover_w].astype(np.float64)
    gy = grads.gy[:cover_h, :cover_w].astype(np.float64)

    h_tiles = hessian.data[:n_ty, :n_tx]
    det = h_tiles[..., 0] * h_tiles[..., 3] - h_tiles[..., 1] * h_tiles[..., 2]
    solvable = np.abs(det) >= DET_THRESHOLD
    if not solvable.all():
        logger.debug(
            "ICA: %d of %d tiles have a singular Hessian and keep their displacement",
            int(np.count_nonzero(~solvable)),
            solvable.size,
        )

    for iteration in range(params.num_iterations):
        disp = current.data[tile_y[:, np.newaxis], tile_x[np.newaxis, :]].astype(np.float64)
        warped_x = xs[np.newaxis, :] + disp[..., 0]
        warped_y = ys[:, np.newaxis] + disp[..., 1]
        valid = valid_sample_mask(warped_x, warped_y, height, width)

        residual = np.zeros((cover_h, cover_w), dtype=np.float64)
        residual[valid] = (
            bilinear_sample(alt_plane, warped_x[valid], warped_y[valid]) - ref_plane[valid]
        )

        b = np.empty((n_ty, n_tx, 2), dtype=np.float64)
        b[..., 0] = np.bincount(
            labels, weights=(-gx * residual).ravel(), minlength=n_ty * n_tx
        ).reshape(n_ty, n_tx)
        b[..., 1] = np.bincount(
            labels, weights=(-gy * residual).ravel(), minlength=n_ty * n_tx
        ).reshape(n_ty, n_tx)

        delta = solve_2x2(h_tiles, b)
        delta[~solvable] = 0.0
        current.data += delta.astype(np.float32)

        logger.debug(
            "ICA iteration %d/%d: mean |delta| = %.4f px",
            iteration + 1,
            params.num_iterations,
            float(np.abs(delta[solvable]).mean()) if solvable.any() else 0.0,
        )

    return current


def refine_image_alignment(
    ref_img: np.ndarray,
    alt_img: np.ndarray,
    initial_alignment: AlignmentMap,
    params: ICAParams,
) -> AlignmentMap:
    """Compute gradients and Hessian of ``ref_img``, then run the refinement."""
    grads = init_ica(ref_img, params)
    hessian = compute_hessian(grads, params.tile_size)
    return refine_alignment_ica(ref_img, alt_img, grads, hessian, initial_alignment, params)
