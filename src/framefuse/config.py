"""
Configuration dataclasses for the framefuse alignment and denoising pipeline.

Block matching is configured per pyramid level; the ICA refinement stage
and the denoising driver each have their own parameter set. Every
dataclass has a ``validate()`` method that raises
:class:`~framefuse.errors.InvalidParameterError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import InvalidParameterError

# Default parameter tables (finest level first)
MAX_PYRAMID_LEVELS = 4
DEFAULT_TILE_SIZE = 16
DEFAULT_FACTORS = (1, 2, 4, 4)
DEFAULT_SEARCH_RADII = (1, 4, 4, 4)
DEFAULT_USE_L1 = (True, False, False, False)
DEFAULT_ICA_ITERATIONS = 3
DEFAULT_SIGMA_BLUR = 0.0


class DistanceMetric(Enum):
    """Patch distance used by the block-matching search."""

    L1 = "l1"  # Sum of absolute differences
    L2 = "l2"  # Sum of squared differences


class RejectionReason(Enum):
    """Reason codes for frames dropped by the denoising driver."""

    LOAD_FAILED = "load_failed"  # Frame file missing or unreadable
    ALIGNMENT_FAILED = "alignment_failed"  # Could not align to the center frame
    SHAPE_MISMATCH = "shape_mismatch"  # Dimensions differ from the center frame
    DENOISE_FAILED = "denoise_failed"  # Fusion of the frame raised an error
    WRITE_FAILED = "write_failed"  # Denoised output could not be saved


@dataclass
class RejectedFrame:
    """Record of a rejected frame with reason."""

    path: str
    reason: RejectionReason
    detail: str = ""


@dataclass
class LevelParams:
    """Block-matching parameters for one pyramid level."""

    factor: int = 1
    """Downsampling factor relative to the previous (finer) level."""

    tile_size: int = DEFAULT_TILE_SIZE
    """Tile edge length in pixels of this level."""

    search_radius: int = 4
    """Integer search radius around the current displacement."""

    distance: DistanceMetric = DistanceMetric.L2
    """Patch distance: L1 (SAD) or L2 (SSD)."""

    def validate(self) -> None:
        """Validate level parameters."""
        if self.factor < 1:
            raise InvalidParameterError(f"factor must be >= 1, got {self.factor}")
        if self.tile_size < 1:
            raise InvalidParameterError(f"tile_size must be >= 1, got {self.tile_size}")
        if self.search_radius < 1:
            raise InvalidParameterError(
                f"search_radius must be >= 1, got {self.search_radius}"
            )
        if not isinstance(self.distance, DistanceMetric):
            raise InvalidParameterError(f"Unknown distance metric: {self.distance!r}")


@dataclass
class BlockMatchingParams:
    """
    Per-level block-matching configuration.

    ``levels[0]`` describes the finest pyramid level (first downsampling of
    the input) and ``levels[-1]`` the coarsest.
    """

    levels: list[LevelParams] = field(default_factory=list)

    @classmethod
    def from_lists(
        cls,
        factors: list[int],
        tile_sizes: list[int],
        search_radii: list[int],
        distances: list[DistanceMetric | str],
    ) -> BlockMatchingParams:
        """Build parameters from parallel per-level lists."""
        n = len(factors)
        if not (len(tile_sizes) == len(search_radii) == len(distances) == n):
            raise InvalidParameterError(
                "Per-level lists must have equal length: "
                f"factors={n}, tile_sizes={len(tile_sizes)}, "
                f"search_radii={len(search_radii)}, distances={len(distances)}"
            )
        levels = [
            LevelParams(
                factor=int(f),
                tile_size=int(t),
                search_radius=int(r),
                distance=d if isinstance(d, DistanceMetric) else DistanceMetric(str(d).lower()),
            )
            for f, t, r, d in zip(factors, tile_sizes, search_radii, distances)
        ]
        return cls(levels=levels)

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def factors(self) -> list[int]:
        return [lv.factor for lv in self.levels]

    @property
    def tile_sizes(self) -> list[int]:
        return [lv.tile_size for lv in self.levels]

    @property
    def search_radii(self) -> list[int]:
        return [lv.search_radius for lv in self.levels]

    @property
    def distances(self) -> list[DistanceMetric]:
        return [lv.distance for lv in self.levels]

    def validate(self) -> None:
        """Validate all levels."""
        if self.num_levels <= 0:
            raise InvalidParameterError(
                f"num_levels must be positive, got {self.num_levels}"
            )
        for level in self.levels:
            level.validate()


@dataclass
class ICAParams:
    """Parameters of the iterative gradient-based refinement."""

    sigma_blur: float = DEFAULT_SIGMA_BLUR
    """Gaussian blur sigma applied before gradients (0 disables blur)."""

    num_iterations: int = DEFAULT_ICA_ITERATIONS
    """Number of Gauss-Newton iterations (no early exit)."""

    tile_size: int = DEFAULT_TILE_SIZE
    """Tile size; must match the tile size of the map being refined."""

    def validate(self) -> None:
        """Validate ICA parameters."""
        if self.sigma_blur < 0:
            raise InvalidParameterError(f"sigma_blur must be >= 0, got {self.sigma_blur}")
        if self.num_iterations < 0:
            raise InvalidParameterError(
                f"num_iterations must be >= 0, got {self.num_iterations}"
            )
        if self.tile_size < 1:
            raise InvalidParameterError(f"tile_size must be >= 1, got {self.tile_size}")


@dataclass
class AlignmentParams:
    """Complete alignment configuration: pyramid block matching + ICA."""

    block_matching: BlockMatchingParams = field(default_factory=BlockMatchingParams)
    ica: ICAParams = field(default_factory=ICAParams)

    @classmethod
    def default(cls, tile_size: int = DEFAULT_TILE_SIZE) -> AlignmentParams:
        """
        Default four-level configuration.

        The coarsest level uses half the base tile size; the finest level
        uses the L1 distance and a one-pixel search radius.
        """
        tile_sizes = [
            tile_size // 2 if i == MAX_PYRAMID_LEVELS - 1 else tile_size
            for i in range(MAX_PYRAMID_LEVELS)
        ]
        distances = [DistanceMetric.L1 if l1 else DistanceMetric.L2 for l1 in DEFAULT_USE_L1]
        bm = BlockMatchingParams.from_lists(
            list(DEFAULT_FACTORS), tile_sizes, list(DEFAULT_SEARCH_RADII), distances
        )
        ica = ICAParams(
            sigma_blur=DEFAULT_SIGMA_BLUR,
            num_iterations=DEFAULT_ICA_ITERATIONS,
            tile_size=tile_size,
        )
        return cls(block_matching=bm, ica=ica)

    def validate(self) -> None:
        """Validate both stages and their coupling."""
        self.block_matching.validate()
        self.ica.validate()
        finest_tile = self.block_matching.levels[0].tile_size
        if self.ica.tile_size != finest_tile:
            raise InvalidParameterError(
                f"ICA tile_size ({self.ica.tile_size}) must match the finest "
                f"block-matching tile size ({finest_tile})"
            )


@dataclass
class DenoisingParams:
    """Configuration of the temporal denoising driver."""

    temporal_radius: int = 2
    """Frames on each side of the center frame used for fusion."""

    noise_level: float = 0.0
    """Noise standard deviation in normalized units. 0 selects the plain mean."""

    block_size: int = DEFAULT_TILE_SIZE
    """Tile size for motion estimation."""

    search_radius: int = 16
    """Search radius for motion estimation."""

    num_levels: int = 1
    """Pyramid levels used when ``alignment`` is not given."""

    ica_iterations: int = DEFAULT_ICA_ITERATIONS
    """ICA iterations used when ``alignment`` is not given."""

    alignment: AlignmentParams | None = None
    """Explicit alignment configuration (overrides the fields above)."""

    @property
    def buffer_capacity(self) -> int:
        return 2 * self.temporal_radius + 1

    def alignment_params(self) -> AlignmentParams:
        """
        Return the alignment configuration used for each neighbour frame.

        Without an explicit ``alignment``, levels are stacked with factor 2
        per level, all using ``block_size`` and ``search_radius``.
        """
        if self.alignment is not None:
            return self.alignment
        factors = [1] + [2] * (self.num_levels - 1)
        bm = BlockMatchingParams.from_lists(
            factors,
            [self.block_size] * self.num_levels,
            [self.search_radius] * self.num_levels,
            [DistanceMetric.L2] * self.num_levels,
        )
        ica = ICAParams(num_iterations=self.ica_iterations, tile_size=self.block_size)
        return AlignmentParams(block_matching=bm, ica=ica)

    def validate(self) -> None:
        """Validate denoising parameters."""
        if self.temporal_radius < 0:
            raise InvalidParameterError(
                f"temporal_radius must be >= 0, got {self.temporal_radius}"
            )
        if self.block_size <= 0 or self.search_radius <= 0:
            raise InvalidParameterError(
                f"Invalid block_size={self.block_size} or search_radius={self.search_radius}"
            )
        if self.noise_level < 0:
            raise InvalidParameterError(f"noise_level must be >= 0, got {self.noise_level}")
        if self.num_levels < 1:
            raise InvalidParameterError(f"num_levels must be >= 1, got {self.num_levels}")
        self.alignment_params().validate()


@dataclass
class SequenceResult:
    """
    Result of a sequence denoising run.

    Contains everything needed to understand which outputs were produced.
    """

    input_pattern: str
    output_pattern: str

    inputs: list[str] = field(default_factory=list)
    """Frame paths that were loaded."""

    outputs: dict[int, str] = field(default_factory=dict)
    """Map of frame index to written output path."""

    rejected: list[RejectedFrame] = field(default_factory=list)
    """Frames rejected with reasons."""

    params: DenoisingParams | None = None
    """Configuration used for this run."""

    elapsed_s: float = 0.0
    """Wall-clock duration of the run."""
