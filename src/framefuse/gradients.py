"""
Image gradients and per-tile structure (Hessian) matrices.

The two stages treat image borders differently:

- the Gaussian pre-blur drops out-of-range taps and renormalises the
  remaining weights, so a constant image stays constant up to the border;
- the centered-difference gradient simply omits out-of-range taps, which
  is equivalent to zero padding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from .errors import AllocationError, InvalidParameterError
from .image import PIXEL_DTYPE, as_image

logger = logging.getLogger(__name__)

# Centered difference, scaled so that a unit ramp has unit gradient
GRADIENT_KERNEL = np.array([-0.5, 0.0, 0.5])


@dataclass
class ImageGradients:
    """Horizontal and vertical gradients, aligned 1:1 with the source image."""

    gx: np.ndarray
    gy: np.ndarray

    @property
    def height(self) -> int:
        return self.gx.shape[0]

    @property
    def width(self) -> int:
        return self.gx.shape[1]


@dataclass
class HessianMatrix:
    """
    Per-tile 2x2 structure matrices.

    ``data`` has shape (ceil(H / T), ceil(W / T), 4) holding the flattened
    symmetric matrix (h00, h01, h01, h11) of each tile.
    """

    data: np.ndarray
    tile_size: int

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    def determinant(self) -> np.ndarray:
        """Determinant of every tile's matrix, shape (height, width)."""
        d = self.data
        return d[..., 0] * d[..., 3] - d[..., 1] * d[..., 2]


def gaussian_kernel(sigma: float) -> np.ndarray:
    """
    Normalised 1D Gaussian kernel.

    The radius is ``int(4 * sigma + 0.5)``, giving ``2 * radius + 1`` taps.
    """
    if sigma <= 0:
        raise InvalidParameterError(f"sigma must be positive, got {sigma}")
    radius = int(4 * sigma + 0.5)
    x = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(x * x) / (2 * sigma * sigma))
    return kernel / kernel.sum()


def _blur_axis(plane: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
    """Correlate along one axis, renormalising by the in-range weight sum."""
    blurred = ndimage.correlate1d(plane, kernel, axis=axis, mode="constant", cval=0.0)
    ones = np.ones(plane.shape[axis], dtype=np.float64)
    weight = ndimage.correlate1d(ones, kernel, mode="constant", cval=0.0)
    shape = [1, 1]
    shape[axis] = -1
    return blurred / weight.reshape(shape)


def gaussian_blur(plane: np.ndarray, sigma: float) -> np.ndarray:
    """
    Separable Gaussian blur of a 2D plane, horizontal pass first.

    Taps falling outside the image are dropped and the remaining weights
    renormalised, so the output stays unbiased near the borders.
    """
    if plane.ndim != 2:
        raise InvalidParameterError(f"Expected a 2D plane, got shape {plane.shape}")
    kernel = gaussian_kernel(sigma)
    work = plane.astype(np.float64)
    work = _blur_axis(work, kernel, axis=1)
    work = _blur_axis(work, kernel, axis=0)
    return work.astype(PIXEL_DTYPE)


def compute_image_gradients(image: np.ndarray, sigma_blur: float = 0.0) -> ImageGradients:
    """
    Compute centered-difference gradients of a single-channel image.

    Parameters
    ----------
    image : np.ndarray
        Image (H, W) or (H, W, 1).
    sigma_blur : float, default 0.0
        Gaussian pre-blur sigma; 0 disables the blur.

    Returns
    -------
    ImageGradients
        Gradients of the (optionally blurred) image.

    Notes
    -----
    Taps outside the image are omitted from the difference (zero padding),
    so the first and last row/column see a one-sided value.
    """
    img = as_image(image)
    if img.shape[2] != 1:
        raise InvalidParameterError(
            f"Gradients need a single-channel image, got {img.shape[2]} channels"
        )
    if sigma_blur < 0:
        raise InvalidParameterError(f"sigma_blur must be >= 0, got {sigma_blur}")

    plane = img[:, :, 0]
    if sigma_blur > 0:
        plane = gaussian_blur(plane, sigma_blur)

    try:
        work = plane.astype(np.float64)
        gx = ndimage.correlate1d(work, GRADIENT_KERNEL, axis=1, mode="constant", cval=0.0)
        gy = ndimage.correlate1d(work, GRADIENT_KERNEL, axis=0, mode="constant", cval=0.0)
    except MemoryError as e:
        raise AllocationError(f"Cannot allocate gradients for {plane.shape}") from e

    return ImageGradients(gx=gx.astype(PIXEL_DTYPE), gy=gy.astype(PIXEL_DTYPE))


def _tile_sums(values: np.ndarray, tile_size: int, n_ty: int, n_tx: int) -> np.ndarray:
    """Sum a 2D array over tiles, zero padding partial edge tiles."""
    height, width = values.shape
    padded = np.zeros((n_ty * tile_size, n_tx * tile_size), dtype=np.float64)
    padded[:height, :width] = values
    return padded.reshape(n_ty, tile_size, n_tx, tile_size).sum(axis=(1, 3))


def compute_hessian(gradients: ImageGradients, tile_size: int) -> HessianMatrix:
    """
    Accumulate per-tile structure matrices from gradients.

    Parameters
    ----------
    gradients : ImageGradients
        Gradients of the reference image.
    tile_size : int
        Tile edge length. The grid uses ceiling division so edge tiles may
        be partial; they only sum the pixels inside the image.

    Returns
    -------
    HessianMatrix
        Matrices (sum gx^2, sum gx*gy, sum gx*gy, sum gy^2) per tile.
    """
    if tile_size < 1:
        raise InvalidParameterError(f"tile_size must be >= 1, got {tile_size}")

    height, width = gradients.gx.shape
    n_ty = -(-height // tile_size)
    n_tx = -(-width // tile_size)

    gx = gradients.gx.astype(np.float64)
    gy = gradients.gy.astype(np.float64)
    try:
        h00 = _tile_sums(gx * gx, tile_size, n_ty, n_tx)
        h01 = _tile_sums(gx * gy, tile_size, n_ty, n_tx)
        h11 = _tile_sums(gy * gy, tile_size, n_ty, n_tx)
    except MemoryError as e:
        raise AllocationError(f"Cannot allocate Hessian for {n_ty}x{n_tx} tiles") from e

    data = np.stack([h00, h01, h01, h11], axis=-1)
    logger.debug("Hessian grid %dx%d (tile=%d)", n_ty, n_tx, tile_size)
    return HessianMatrix(data=data, tile_size=tile_size)
