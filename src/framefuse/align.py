"""
Complete alignment chain: pyramid block matching followed by ICA refinement.

The reference side (pyramid, gradients, Hessian) depends only on the
reference image and the parameters, so it is prepared once with
:func:`prepare_reference` and reused for every alternate image.

Displacement maps can be persisted as JSON and rendered as a two-channel
flow image for inspection.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from .block_matching import align_image_block_matching, init_block_matching
from .config import AlignmentParams
from .errors import InvalidParameterError
from .gradients import HessianMatrix, ImageGradients, compute_hessian
from .ica import init_ica, refine_alignment_ica
from .image import AlignmentMap, PIXEL_DTYPE, as_image, to_grayscale
from .pyramid import ImagePyramid, downsample_image
from .utils import __version__, get_timestamp_iso

logger = logging.getLogger(__name__)

ALIGNMENT_MAP_FORMAT_VERSION = "1.0"


@dataclass
class PreparedReference:
    """Reference-side state shared by all alignments against one frame."""

    image: np.ndarray
    params: AlignmentParams
    pyramid: ImagePyramid
    gray_level: np.ndarray
    gradients: ImageGradients
    hessian: HessianMatrix

    @property
    def level_scale(self) -> int:
        """Pixel scale of pyramid level 0 relative to the input image."""
        return self.params.block_matching.levels[0].factor


@dataclass
class AlignmentResult:
    """Result of aligning one image to a reference."""

    alignment: AlignmentMap
    """Refined displacements in input pixels (tile size scaled accordingly)."""

    block_matching: AlignmentMap
    """Integer block-matching map in pixels of pyramid level 0."""

    refined: AlignmentMap
    """ICA-refined map in pixels of pyramid level 0."""

    timings: dict[str, float] = field(default_factory=dict)
    """Stage durations in seconds."""


def prepare_reference(
    ref_image: np.ndarray,
    params: AlignmentParams,
    reference_pyramid: ImagePyramid | None = None,
) -> PreparedReference:
    """
    Precompute everything that depends only on the reference.

    Parameters
    ----------
    ref_image : np.ndarray
        Reference image (H, W) or (H, W, C).
    params : AlignmentParams
        Alignment configuration.
    reference_pyramid : ImagePyramid, optional
        Pyramid already built from ``ref_image`` with the same factors.

    Returns
    -------
    PreparedReference
    """
    if ref_image is None or params is None:
        raise InvalidParameterError("prepare_reference needs an image and parameters")
    params.validate()
    ref = as_image(ref_image)

    if reference_pyramid is None:
        reference_pyramid = init_block_matching(ref, params.block_matching)
    elif reference_pyramid.factors != params.block_matching.factors:
        raise InvalidParameterError(
            f"Reference pyramid factors {reference_pyramid.factors} do not match "
            f"parameters {params.block_matching.factors}"
        )

    gray_level = to_grayscale(reference_pyramid[0])
    gradients = init_ica(gray_level, params.ica)
    hessian = compute_hessian(gradients, params.ica.tile_size)
    return PreparedReference(
        image=ref,
        params=params,
        pyramid=reference_pyramid,
        gray_level=gray_level,
        gradients=gradients,
        hessian=hessian,
    )


def align_to_reference(reference: PreparedReference, alt_image: np.ndarray) -> AlignmentResult:
    """
    Align an image to a prepared reference.

    Block matching runs on all channels; ICA refinement runs on the
    channel mean of pyramid level 0. The refined map is finally rescaled
    from level-0 pixels to input pixels.
    """
    if alt_image is None:
        raise InvalidParameterError("alt_image is None")
    alt = as_image(alt_image)
    if alt.shape != reference.image.shape:
        raise InvalidParameterError(
            f"Mismatched images: reference {reference.image.shape} vs alternate {alt.shape}"
        )
    params = reference.params
    timings: dict[str, float] = {}

    t0 = time.perf_counter()
    bm_map = align_image_block_matching(alt, reference.pyramid, params.block_matching)
    timings["block_matching_s"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    alt_gray = to_grayscale(downsample_image(alt, reference.level_scale))
    refined = refine_alignment_ica(
        reference.gray_level,
        alt_gray,
        reference.gradients,
        reference.hessian,
        bm_map,
        params.ica,
    )
    timings["ica_s"] = time.perf_counter() - t0

    scale = reference.level_scale
    full = refined.scaled(scale) if scale != 1 else refined.copy()

    mean_bm = bm_map.mean_displacement()
    mean_full = full.mean_displacement()
    logger.debug(
        "Aligned %dx%d image: block matching mean (%.2f, %.2f), refined mean (%.3f, %.3f) px",
        alt.shape[0],
        alt.shape[1],
        mean_bm.x * scale,
        mean_bm.y * scale,
        mean_full.x,
        mean_full.y,
    )
    return AlignmentResult(
        alignment=full,
        block_matching=bm_map,
        refined=refined,
        timings=timings,
    )


def align_image(
    ref_image: np.ndarray,
    alt_image: np.ndarray,
    params: AlignmentParams | None = None,
    reference_pyramid: ImagePyramid | None = None,
) -> AlignmentResult:
    """
    Estimate the tile-wise motion of ``alt_image`` relative to ``ref_image``.

    Parameters
    ----------
    ref_image, alt_image : np.ndarray
        Images of identical shape (H, W) or (H, W, C).
    params : AlignmentParams, optional
        Defaults to :meth:`AlignmentParams.default`.
    reference_pyramid : ImagePyramid, optional
        Reference pyramid to reuse.

    Returns
    -------
    AlignmentResult
        ``result.alignment`` gives, for every tile, the offset to add to a
        reference pixel position to find the matching alternate pixel.
    """
    if params is None:
        params = AlignmentParams.default()
    reference = prepare_reference(ref_image, params, reference_pyramid)
    return align_to_reference(reference, alt_image)


def alignment_map_to_dict(alignments: AlignmentMap) -> dict:
    """Convert an AlignmentMap to a JSON-serializable dict."""
    return {
        "height": alignments.height,
        "width": alignments.width,
        "tile_size": alignments.tile_size,
        "x": alignments.x.tolist(),
        "y": alignments.y.tolist(),
    }


def dict_to_alignment_map(d: dict) -> AlignmentMap:
    """Rebuild an AlignmentMap from :func:`alignment_map_to_dict` output."""
    height, width = int(d["height"]), int(d["width"])
    x = np.asarray(d["x"], dtype=np.float32).reshape(height, width)
    y = np.asarray(d["y"], dtype=np.float32).reshape(height, width)
    return AlignmentMap(data=np.stack([x, y], axis=-1), tile_size=int(d.get("tile_size", 0)))


def save_alignment_map(
    alignments: AlignmentMap,
    output_path: str | Path,
    reference_path: str = "",
    target_path: str = "",
    metadata: dict | None = None,
) -> None:
    """
    Save a displacement map to a JSON file.

    Notes
    -----
    The JSON file contains:
    - version: format version
    - created: UTC timestamp and framefuse version
    - reference_path / target_path: source images, if known
    - metadata: optional extra info
    - map: dimensions, tile size and the x / y grids as nested lists
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "version": ALIGNMENT_MAP_FORMAT_VERSION,
        "created": get_timestamp_iso(),
        "framefuse_version": __version__,
        "reference_path": reference_path,
        "target_path": target_path,
        "metadata": metadata or {},
        "map": alignment_map_to_dict(alignments),
    }
    with open(output_path, "w") as f:
        json.dump(data, f, indent=2)

    logger.info(
        "Saved %dx%d alignment map (tile %d) to %s",
        alignments.height,
        alignments.width,
        alignments.tile_size,
        output_path,
    )


def load_alignment_map(input_path: str | Path) -> tuple[AlignmentMap, dict]:
    """
    Load a displacement map saved by :func:`save_alignment_map`.

    Returns
    -------
    tuple
        (alignments, info) where ``info`` holds the remaining top-level
        fields (paths, metadata, version).
    """
    input_path = Path(input_path)
    with open(input_path) as f:
        data = json.load(f)

    if "map" not in data:
        raise InvalidParameterError(f"No alignment map in {input_path}")
    alignments = dict_to_alignment_map(data.pop("map"))
    logger.info("Loaded %dx%d alignment map from %s", alignments.height, alignments.width, input_path)
    return alignments, data


def visualize_flow(alignments: AlignmentMap, max_displacement: float = 20.0) -> np.ndarray:
    """
    Render a displacement map as a two-channel image.

    Each tile becomes one pixel with channels ``(x + m) / (2m)`` and
    ``(y + m) / (2m)`` for ``m = max_displacement``, so zero motion is 0.5
    and displacements of +-m reach the [0, 1] limits. Values beyond that
    range are left unclamped; saving clamps them.

    Returns
    -------
    np.ndarray
        Array of shape (map height, map width, 2), float32.
    """
    if max_displacement <= 0:
        raise InvalidParameterError(
            f"max_displacement must be positive, got {max_displacement}"
        )
    return ((alignments.data + max_displacement) / (2.0 * max_displacement)).astype(PIXEL_DTYPE)
