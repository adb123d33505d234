"""
framefuse - sub-pixel multi-frame alignment and temporal denoising.

Estimates tile-wise motion between frames with coarse-to-fine block
matching refined by Gauss-Newton (ICA) iterations, warps frames onto a
reference and fuses them.

Example
-------
>>> from framefuse import align_image, warp_image, AlignmentParams
>>> result = align_image(reference, target, AlignmentParams.default())
>>> aligned = warp_image(target, result.alignment)

Example (sequence denoising)
----------------------------
>>> from framefuse import denoise_sequence, DenoisingParams
>>> params = DenoisingParams(temporal_radius=2)
>>> result = denoise_sequence("frame_%04d.png", "denoised_%04d.png", 100, params)
>>> print(len(result.outputs))
"""

from .config import (
    AlignmentParams,
    BlockMatchingParams,
    DenoisingParams,
    DistanceMetric,
    ICAParams,
    LevelParams,
    RejectedFrame,
    RejectionReason,
    SequenceResult,
)
from .errors import (
    AllocationError,
    ErrorKind,
    FrameFuseError,
    InvalidParameterError,
    SingularSystemError,
)
from .utils import __version__, __version_info__, get_version_banner

# Containers
from .image import Alignment, AlignmentMap, as_image, create_image, to_grayscale
from .pyramid import ImagePyramid, build_pyramid, downsample_image

# Motion estimation
from .block_matching import (
    align_image_block_matching,
    align_on_level,
    init_block_matching,
    local_search,
    upsample_alignments,
)
from .gradients import HessianMatrix, ImageGradients, compute_hessian, compute_image_gradients
from .ica import init_ica, refine_alignment_ica, refine_image_alignment
from .align import (
    AlignmentResult,
    align_image,
    align_to_reference,
    load_alignment_map,
    prepare_reference,
    save_alignment_map,
    visualize_flow,
)

# Warping and fusion
from .warp import dense_flow, warp_image
from .fusion import FusionStatistics, compute_fusion_statistics, coverage_count, temporal_average

# Sequences
from .frame_buffer import FrameBuffer
from .denoise import denoise_frame, denoise_sequence
from .io import frame_path, load_frame, load_image, save_image

__all__ = [
    # Version
    "__version__",
    "__version_info__",
    "get_version_banner",
    # Configuration
    "AlignmentParams",
    "BlockMatchingParams",
    "DenoisingParams",
    "DistanceMetric",
    "ICAParams",
    "LevelParams",
    "RejectedFrame",
    "RejectionReason",
    "SequenceResult",
    # Errors
    "AllocationError",
    "ErrorKind",
    "FrameFuseError",
    "InvalidParameterError",
    "SingularSystemError",
    # Containers
    "Alignment",
    "AlignmentMap",
    "as_image",
    "create_image",
    "to_grayscale",
    "ImagePyramid",
    "build_pyramid",
    "downsample_image",
    # Motion estimation
    "align_image_block_matching",
    "align_on_level",
    "init_block_matching",
    "local_search",
    "upsample_alignments",
    "HessianMatrix",
    "ImageGradients",
    "compute_hessian",
    "compute_image_gradients",
    "init_ica",
    "refine_alignment_ica",
    "refine_image_alignment",
    "AlignmentResult",
    "align_image",
    "align_to_reference",
    "load_alignment_map",
    "prepare_reference",
    "save_alignment_map",
    "visualize_flow",
    # Warping and fusion
    "dense_flow",
    "warp_image",
    "FusionStatistics",
    "compute_fusion_statistics",
    "coverage_count",
    "temporal_average",
    # Sequences
    "FrameBuffer",
    "denoise_frame",
    "denoise_sequence",
    "frame_path",
    "load_frame",
    "load_image",
    "save_image",
]
