"""
Temporal fusion of aligned frames.

Implements a NaN-tolerant per-pixel mean with optional noise-adaptive
weighting, processed in row chunks to bound memory for long stacks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from skimage.metrics import peak_signal_noise_ratio

from .errors import InvalidParameterError
from .image import PIXEL_DTYPE, as_image

logger = logging.getLogger(__name__)

# MAD to Gaussian sigma scale factor
MAD_TO_SIGMA = 1.4826


@dataclass
class FusionStatistics:
    """Statistics from a fusion operation."""

    n_frames: int
    mean_coverage: float  # Average number of valid contributions per sample
    min_coverage: int
    removed_noise_sigma: float  # MAD estimate of (reference - fused)
    psnr_db: float  # PSNR of fused against the reference (data range 1.0)


def _check_frames(frames: list[np.ndarray]) -> list[np.ndarray]:
    if frames is None or len(frames) == 0:
        raise InvalidParameterError("Empty frame list")
    images = [as_image(f) for f in frames]
    shape = images[0].shape
    for i, img in enumerate(images[1:], start=1):
        if img.shape != shape:
            raise InvalidParameterError(
                f"Frame {i} has shape {img.shape}, expected {shape}"
            )
    return images


def temporal_average(
    frames: list[np.ndarray],
    reference: np.ndarray | None = None,
    noise_level: float = 0.0,
    chunk_rows: int = 256,
) -> np.ndarray:
    """
    Average a stack of aligned frames, ignoring NaN samples.

    Parameters
    ----------
    frames : list[np.ndarray]
        Frames of identical shape (H, W) or (H, W, C).
    reference : np.ndarray, optional
        Reference frame for noise-adaptive weighting.
    noise_level : float, default 0.0
        Noise standard deviation in sample units. With a reference and a
        positive value, each sample is weighted by
        ``sigma^2 / (sigma^2 + (value - reference)^2)`` so samples far from
        the reference (misaligned content) count less. 0 gives the plain mean.
    chunk_rows : int, default 256
        Rows processed at a time.

    Returns
    -------
    np.ndarray
        Fused image (H, W, C), float32. Samples that are NaN in every frame
        are 0.
    """
    images = _check_frames(frames)
    if noise_level < 0:
        raise InvalidParameterError(f"noise_level must be >= 0, got {noise_level}")
    if chunk_rows < 1:
        raise InvalidParameterError(f"chunk_rows must be >= 1, got {chunk_rows}")

    weighted = noise_level > 0 and reference is not None
    ref = None
    if weighted:
        ref = as_image(reference)
        if ref.shape != images[0].shape:
            raise InvalidParameterError(
                f"Reference has shape {ref.shape}, expected {images[0].shape}"
            )
        sigma2 = float(noise_level) ** 2

    height, width, channels = images[0].shape
    fused = np.zeros((height, width, channels), dtype=PIXEL_DTYPE)

    for row_start in range(0, height, chunk_rows):
        row_end = min(row_start + chunk_rows, height)
        cube = np.stack([img[row_start:row_end] for img in images]).astype(np.float64)
        valid = ~np.isnan(cube)

        if weighted:
            diff = cube - ref[np.newaxis, row_start:row_end].astype(np.float64)
            weights = np.where(np.isnan(diff), 1.0, sigma2 / (sigma2 + np.nan_to_num(diff) ** 2))
            weights = np.where(valid, weights, 0.0)
        else:
            weights = valid.astype(np.float64)

        total = np.sum(np.where(valid, cube, 0.0) * weights, axis=0)
        weight_sum = np.sum(weights, axis=0)
        fused[row_start:row_end] = np.divide(
            total,
            weight_sum,
            out=np.zeros_like(total),
            where=weight_sum > 0,
        )

    logger.debug(
        "Fused %d frames (%dx%dx%d)%s",
        len(images),
        height,
        width,
        channels,
        f" with noise weighting sigma={noise_level:g}" if weighted else "",
    )
    return fused


def coverage_count(frames: list[np.ndarray]) -> np.ndarray:
    """Number of non-NaN contributions per sample, shape (H, W, C)."""
    images = _check_frames(frames)
    count = np.zeros(images[0].shape, dtype=np.int16)
    for img in images:
        count += ~np.isnan(img)
    return count


def compute_fusion_statistics(
    fused: np.ndarray,
    reference: np.ndarray,
    coverage: np.ndarray,
    n_frames: int,
) -> FusionStatistics:
    """
    Summarise a fusion result against its reference frame.

    Parameters
    ----------
    fused : np.ndarray
        Output of :func:`temporal_average`.
    reference : np.ndarray
        The un-fused reference (center) frame.
    coverage : np.ndarray
        Output of :func:`coverage_count` for the same stack.
    n_frames : int
        Number of frames that were fused.

    Returns
    -------
    FusionStatistics
    """
    fused = as_image(fused)
    reference = as_image(reference)
    if fused.shape != reference.shape:
        raise InvalidParameterError(f"Mismatched images: {fused.shape} vs {reference.shape}")

    ref = np.nan_to_num(reference.astype(np.float64))
    out = fused.astype(np.float64)
    residual = ref - out
    median = np.median(residual)
    sigma = MAD_TO_SIGMA * float(np.median(np.abs(residual - median)))

    if np.allclose(residual, 0.0):
        psnr = float("inf")
    else:
        psnr = float(peak_signal_noise_ratio(ref, out, data_range=1.0))

    return FusionStatistics(
        n_frames=n_frames,
        mean_coverage=float(np.mean(coverage)) if coverage.size else 0.0,
        min_coverage=int(coverage.min()) if coverage.size else 0,
        removed_noise_sigma=sigma,
        psnr_db=psnr,
    )
