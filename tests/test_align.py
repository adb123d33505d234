"""
Tests for the align module.

Tests cover:
- End-to-end block matching + ICA on a translated image
- Reference preparation and reuse
- Alignment map JSON persistence
- Flow visualisation
"""

import json

import numpy as np
import pytest

from framefuse.align import (
    AlignmentResult,
    align_image,
    align_to_reference,
    alignment_map_to_dict,
    dict_to_alignment_map,
    load_alignment_map,
    prepare_reference,
    save_alignment_map,
    visualize_flow,
)
from framefuse.block_matching import init_block_matching
from framefuse.config import AlignmentParams, BlockMatchingParams, ICAParams
from framefuse.errors import InvalidParameterError
from framefuse.image import AlignmentMap
from framefuse.warp import warp_image


def _two_level_params(iterations=3):
    bm = BlockMatchingParams.from_lists([1, 2], [16, 16], [4, 4], ["l2", "l2"])
    return AlignmentParams(block_matching=bm, ica=ICAParams(sigma_blur=0.0, num_iterations=iterations, tile_size=16))


class TestAlignImage:
    """Tests for the complete alignment chain."""

    def test_end_to_end_translation(self, wave_image):
        """A 64x64 image translated by (3, 2) is recovered within 0.2 px on average."""
        ref = wave_image()
        alt = wave_image(dx=3.0, dy=2.0)

        result = align_image(ref, alt, _two_level_params())

        assert isinstance(result, AlignmentResult)
        assert result.alignment.shape == (4, 4)
        mean = result.alignment.mean_displacement()
        assert abs(mean.x - 3.0) < 0.2
        assert abs(mean.y - 2.0) < 0.2

    def test_interior_tiles_exact(self, wave_image):
        """Tiles whose match lies inside the image are exact after block matching."""
        ref = wave_image()
        alt = wave_image(dx=3.0, dy=2.0)

        result = align_image(ref, alt, _two_level_params())

        assert np.allclose(result.block_matching.x[:3, :3], 3.0)
        assert np.allclose(result.block_matching.y[:3, :3], 2.0)
        assert np.allclose(result.alignment.x[:3, :3], 3.0, atol=0.05)
        assert np.allclose(result.alignment.y[:3, :3], 2.0, atol=0.05)

    def test_subpixel_translation(self, wave_image):
        """A fractional shift is recovered by the refinement stage."""
        ref = wave_image()
        alt = wave_image(dx=1.4, dy=-0.7)

        result = align_image(ref, alt, _two_level_params())

        assert np.allclose(result.alignment.x[1:3, 1:3], 1.4, atol=0.1)
        assert np.allclose(result.alignment.y[1:3, 1:3], -0.7, atol=0.1)

    def test_scaled_to_input_pixels(self, wave_image):
        """With a level-0 factor of 2 the map is rescaled to input pixels."""
        ref = wave_image(height=128, width=128)
        alt = wave_image(height=128, width=128, dx=4.0, dy=2.0)
        bm = BlockMatchingParams.from_lists([2, 2], [16, 16], [2, 4], ["l1", "l2"])
        params = AlignmentParams(block_matching=bm, ica=ICAParams(tile_size=16))

        result = align_image(ref, alt, params)

        assert result.refined.tile_size == 16
        assert result.alignment.tile_size == 32
        assert result.block_matching[1, 1] == (2.0, 1.0)
        assert result.alignment.x[1, 1] == pytest.approx(4.0, abs=0.1)
        assert result.alignment.y[1, 1] == pytest.approx(2.0, abs=0.1)

    def test_identical_images(self, textured_image):
        """Identical images give a zero map."""
        img = textured_image()
        result = align_image(img, img.copy(), _two_level_params())

        assert np.allclose(result.alignment.data, 0.0, atol=1e-6)
        assert set(result.timings) == {"block_matching_s", "ica_s"}

    def test_multichannel_input(self, wave_image):
        """Color images align on all channels and refine on their mean."""
        ref = np.repeat(wave_image(), 3, axis=2)
        alt = np.repeat(wave_image(dx=3.0, dy=2.0), 3, axis=2)

        result = align_image(ref, alt, _two_level_params())

        assert np.allclose(result.alignment.x[:3, :3], 3.0, atol=0.05)

    def test_warp_with_result(self, wave_image):
        """Warping the target with the map reproduces the reference inside."""
        ref = wave_image()
        alt = wave_image(dx=3.0, dy=2.0)
        result = align_image(ref, alt, _two_level_params())

        warped = warp_image(alt, result.alignment)

        assert np.allclose(warped[:48, :48], ref[:48, :48], atol=0.01)

    def test_shape_mismatch_raises(self, textured_image):
        """Reference and target must have the same shape."""
        with pytest.raises(InvalidParameterError):
            align_image(textured_image(), textured_image(width=48), _two_level_params())


class TestPreparedReference:
    """Tests for reference reuse."""

    def test_reuse_matches_fresh_alignment(self, wave_image):
        """Aligning against a prepared reference equals a fresh align_image call."""
        ref = wave_image()
        params = _two_level_params()
        prepared = prepare_reference(ref, params)

        for dx, dy in [(1.0, 0.0), (-2.0, 1.0)]:
            alt = wave_image(dx=dx, dy=dy)
            reused = align_to_reference(prepared, alt)
            fresh = align_image(ref, alt, params)
            assert np.allclose(reused.alignment.data, fresh.alignment.data)

    def test_external_pyramid(self, wave_image):
        """A pyramid built beforehand can be passed in."""
        ref = wave_image()
        params = _two_level_params()
        pyramid = init_block_matching(ref, params.block_matching)

        prepared = prepare_reference(ref, params, reference_pyramid=pyramid)

        assert prepared.pyramid is pyramid
        assert prepared.hessian.data.shape == (4, 4, 4)

    def test_pyramid_factor_mismatch(self, wave_image):
        """A pyramid built with other factors is rejected."""
        ref = wave_image()
        params = _two_level_params()
        other = init_block_matching(ref, BlockMatchingParams.from_lists([1], [16], [1], ["l2"]))

        with pytest.raises(InvalidParameterError, match="factors"):
            prepare_reference(ref, params, reference_pyramid=other)


class TestAlignmentMapPersistence:
    """Tests for JSON persistence of maps."""

    def test_dict_conversion(self):
        """Maps convert to plain dicts and back."""
        alignments = AlignmentMap.zeros(2, 3, tile_size=16)
        alignments[1, 2] = (1.25, -0.5)

        d = alignment_map_to_dict(alignments)
        restored = dict_to_alignment_map(d)

        assert d["height"] == 2 and d["width"] == 3
        assert json.dumps(d)
        assert restored.tile_size == 16
        assert np.array_equal(restored.data, alignments.data)

    def test_save_and_load(self, tmp_path):
        """Saved maps load with their metadata."""
        alignments = AlignmentMap.zeros(3, 2, tile_size=8)
        alignments.data[..., 0] = 0.75
        path = tmp_path / "maps" / "map.json"

        save_alignment_map(alignments, path, reference_path="ref.png", metadata={"iterations": 3})
        loaded, info = load_alignment_map(path)

        assert np.allclose(loaded.data, alignments.data)
        assert loaded.tile_size == 8
        assert info["reference_path"] == "ref.png"
        assert info["metadata"] == {"iterations": 3}
        assert info["version"] == "1.0"

    def test_load_without_map_raises(self, tmp_path):
        """Files without a map entry are rejected."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"version": "1.0"}))

        with pytest.raises(InvalidParameterError):
            load_alignment_map(path)


class TestVisualizeFlow:
    """Tests for flow rendering."""

    def test_normalisation(self):
        """Displacements map to (d + 20) / 40."""
        alignments = AlignmentMap.zeros(1, 3)
        alignments[0, 0] = (0.0, 0.0)
        alignments[0, 1] = (20.0, -20.0)
        alignments[0, 2] = (10.0, 4.0)

        vis = visualize_flow(alignments)

        assert vis.shape == (1, 3, 2)
        assert np.allclose(vis[0, 0], [0.5, 0.5])
        assert np.allclose(vis[0, 1], [1.0, 0.0])
        assert np.allclose(vis[0, 2], [0.75, 0.6])

    def test_custom_range(self):
        """The displacement range is configurable."""
        alignments = AlignmentMap.zeros(1, 1)
        alignments[0, 0] = (5.0, -5.0)

        vis = visualize_flow(alignments, max_displacement=5.0)

        assert np.allclose(vis[0, 0], [1.0, 0.0])

    def test_invalid_range(self):
        """The range must be positive."""
        with pytest.raises(InvalidParameterError):
            visualize_flow(AlignmentMap.zeros(1, 1), max_displacement=0.0)
