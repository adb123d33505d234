"""
Tests for the block_matching module.

Tests cover:
- Exhaustive integer search (L1 and L2)
- Out-of-bounds candidate rejection
- Alignment upsampling between levels
- Coarse-to-fine pyramid matching
"""

import numpy as np
import pytest

from framefuse.block_matching import (
    align_image_block_matching,
    align_on_level,
    init_block_matching,
    local_search,
    upsample_alignments,
)
from framefuse.config import BlockMatchingParams, DistanceMetric
from framefuse.errors import InvalidParameterError
from framefuse.image import AlignmentMap


class TestLocalSearch:
    """Tests for the per-level exhaustive search."""

    @pytest.mark.parametrize("distance", [DistanceMetric.L1, DistanceMetric.L2])
    def test_recovers_integer_shift(self, shifted_pair, distance):
        """Tiles whose shifted patch stays inside the image find the exact shift."""
        ref, alt = shifted_pair(dx=3, dy=2)
        alignments = AlignmentMap.for_image(ref, 16)

        local_search(ref, alt, 16, 4, alignments, distance)

        assert np.allclose(alignments.x[:3, :3], 3.0)
        assert np.allclose(alignments.y[:3, :3], 2.0)

    def test_negative_shift(self, shifted_pair):
        """Negative shifts are found for tiles away from the top-left border."""
        ref, alt = shifted_pair(dx=-2, dy=-1)
        alignments = AlignmentMap.for_image(ref, 16)

        local_search(ref, alt, 16, 3, alignments)

        assert alignments[1, 1] == (-2.0, -1.0)
        assert alignments[3, 3] == (-2.0, -1.0)

    def test_out_of_bounds_candidates_discarded(self, shifted_pair):
        """The bottom-right tile cannot move outward, so its shift stays <= 0."""
        ref, alt = shifted_pair(dx=3, dy=2)
        alignments = AlignmentMap.for_image(ref, 16)

        local_search(ref, alt, 16, 4, alignments)

        assert alignments.x[3, 3] <= 0
        assert alignments.y[3, 3] <= 0

    def test_identical_images_give_zero(self, textured_image):
        """Zero shift wins for identical images."""
        img = textured_image(height=48, width=48)
        alignments = AlignmentMap.for_image(img, 16)

        local_search(img, img.copy(), 16, 2, alignments)

        assert np.all(alignments.data == 0.0)

    def test_search_starts_from_current_displacement(self, shifted_pair):
        """The search window is centred on the existing displacement."""
        ref, alt = shifted_pair(dx=6, dy=0)
        alignments = AlignmentMap.for_image(ref, 16)
        alignments.data[..., 0] = 5.0

        local_search(ref, alt, 16, 1, alignments)

        assert np.allclose(alignments.x[:2, :2], 6.0)
        assert np.allclose(alignments.y[:2, :2], 0.0)

    def test_chunking_does_not_change_result(self, shifted_pair):
        """Processing tile rows in chunks gives the same map."""
        ref, alt = shifted_pair(dx=1, dy=-2, height=80, width=64)
        a = AlignmentMap.for_image(ref, 16)
        b = AlignmentMap.for_image(ref, 16)

        local_search(ref, alt, 16, 3, a, chunk_rows=1)
        local_search(ref, alt, 16, 3, b, chunk_rows=8)

        assert np.array_equal(a.data, b.data)

    def test_multichannel_distance(self, textured_image):
        """All channels contribute to the patch distance."""
        ref = textured_image(height=48, width=48, channels=3)
        alt = np.roll(ref, shift=(1, 2), axis=(0, 1))
        alignments = AlignmentMap.for_image(ref, 16)

        local_search(ref, alt, 16, 2, alignments)

        assert alignments[0, 0] == (2.0, 1.0)

    def test_ties_keep_first_valid_candidate(self):
        """On a flat image every shift ties and the first in-bounds one in scan order wins."""
        img = np.full((32, 32), 0.5, dtype=np.float32)
        alignments = AlignmentMap.zeros(2, 2, 16)

        local_search(img, img.copy(), 16, 2, alignments)

        assert alignments[0, 0] == (0.0, 0.0)
        assert alignments[0, 1] == (-2.0, 0.0)
        assert alignments[1, 0] == (0.0, -2.0)
        assert alignments[1, 1] == (-2.0, -2.0)

    def test_later_equal_shift_does_not_replace(self):
        """With dx = -2, 0, 2 all exact, the earliest dx in the inner loop is kept."""
        y, x = np.mgrid[0:48, 0:48]
        img = (0.01 * y + 0.5 * (x % 2)).astype(np.float32)
        alignments = AlignmentMap.zeros(3, 3, 16)

        local_search(img, img.copy(), 16, 2, alignments)

        assert alignments[1, 1] == (-2.0, 0.0)

    def test_zero_radius_raises(self):
        """The search radius must be at least one pixel."""
        img = np.zeros((16, 16), dtype=np.float32)
        with pytest.raises(InvalidParameterError, match="search_radius"):
            local_search(img, img, 8, 0, AlignmentMap.zeros(2, 2, 8))

    def test_mismatched_levels_raise(self):
        """Reference and alternate levels must have the same shape."""
        with pytest.raises(InvalidParameterError, match="Mismatched"):
            local_search(
                np.zeros((32, 32)),
                np.zeros((32, 16)),
                16,
                1,
                AlignmentMap.zeros(2, 2, 16),
            )


class TestUpsampleAlignments:
    """Tests for propagating a coarse map to a finer level."""

    def test_scales_and_repeats(self):
        """Displacements are multiplied by the factor and repeated per tile."""
        prev = AlignmentMap.zeros(2, 2, 16)
        prev[0, 0] = (1.0, -1.0)
        prev[0, 1] = (2.0, 0.5)
        prev[1, 0] = (-3.0, 0.0)
        prev[1, 1] = (0.0, 4.0)

        up = upsample_alignments(prev, (4, 4), upsampling_factor=2, tile_size=16, prev_tile_size=16)

        assert up.shape == (4, 4)
        assert up[0, 0] == (2.0, -2.0)
        assert up[1, 1] == (2.0, -2.0)
        assert up[0, 3] == (4.0, 1.0)
        assert up[3, 0] == (-6.0, 0.0)
        assert up[3, 3] == (0.0, 8.0)

    def test_uncovered_tiles_are_zero(self):
        """Fine tiles beyond the coarse coverage start at (0, 0)."""
        prev = AlignmentMap.zeros(2, 2, 16)
        prev.data[...] = 1.0

        up = upsample_alignments(prev, (5, 6), upsampling_factor=2, tile_size=16, prev_tile_size=16)

        assert np.allclose(up.data[:4, :4], 2.0)
        assert np.all(up.data[4, :] == 0.0)
        assert np.all(up.data[:, 4:] == 0.0)

    def test_tile_size_ratio(self):
        """A coarse tile twice as large covers more fine tiles."""
        prev = AlignmentMap.zeros(1, 1, 8)
        prev[0, 0] = (1.0, 1.0)

        up = upsample_alignments(prev, (3, 3), upsampling_factor=4, tile_size=16, prev_tile_size=8)

        assert np.allclose(up.data[:2, :2], 4.0)
        assert np.all(up.data[2, :] == 0.0)

    def test_empty_previous_map(self):
        """An empty coarse map yields an all-zero fine map."""
        prev = AlignmentMap.zeros(0, 0, 8)
        up = upsample_alignments(prev, (2, 2), 2, 16, 8)

        assert np.all(up.data == 0.0)


class TestPyramidMatching:
    """Tests for coarse-to-fine alignment."""

    def test_coarsest_level_starts_at_zero(self, shifted_pair):
        """Without a previous map the search starts at zero displacement."""
        ref, alt = shifted_pair(dx=2, dy=-1)
        params = BlockMatchingParams.from_lists([1], [16], [3], ["l2"])

        alignments = align_on_level(ref, alt, params, 0)

        assert alignments.tile_size == 16
        assert alignments[1, 1] == (2.0, -1.0)

    def test_two_levels_extend_search_range(self, shifted_pair):
        """A coarse level lets the fine search reach beyond its own radius."""
        ref, alt = shifted_pair(dx=6, dy=4, height=96, width=96, sigma=3.0)
        params = BlockMatchingParams.from_lists([1, 2], [16, 16], [2, 4], ["l1", "l2"])

        pyramid = init_block_matching(ref, params)
        alignments = align_image_block_matching(alt, pyramid, params)

        assert alignments.shape == (6, 6)
        assert alignments[1, 1] == (6.0, 4.0)
        assert alignments[2, 2] == (6.0, 4.0)

    def test_level_count_mismatch_raises(self, textured_image):
        """Pyramid and parameters must describe the same levels."""
        img = textured_image()
        pyramid = init_block_matching(img, BlockMatchingParams.from_lists([1], [16], [1], ["l2"]))
        params = BlockMatchingParams.from_lists([1, 2], [16, 16], [1, 1], ["l2", "l2"])

        with pytest.raises(InvalidParameterError, match="levels"):
            align_image_block_matching(img, pyramid, params)

    def test_shape_mismatch_raises(self, textured_image):
        """The alternate image must match the reference."""
        params = BlockMatchingParams.from_lists([1], [16], [1], ["l2"])
        pyramid = init_block_matching(textured_image(), params)

        with pytest.raises(InvalidParameterError, match="Mismatched"):
            align_image_block_matching(textured_image(height=32), pyramid, params)

    def test_empty_params_raise(self, textured_image):
        """Zero levels are rejected."""
        with pytest.raises(InvalidParameterError):
            init_block_matching(textured_image(), BlockMatchingParams())
