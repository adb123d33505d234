"""
Tests for the command-line interface.

Tests cover:
- align subcommand outputs
- denoise subcommand on a short sequence
- Exit codes on errors
"""

import json

import pytest

from framefuse.cli import create_parser, main
from framefuse.io import load_image, save_image


@pytest.fixture
def image_pair(tmp_path, wave_image):
    """A reference/target PNG pair shifted by (4, 2)."""
    ref = save_image(tmp_path / "ref.png", wave_image(height=128, width=128) + 0.5)
    alt = save_image(tmp_path / "alt.png", wave_image(height=128, width=128, dx=4.0, dy=2.0) + 0.5)
    return ref, alt


class TestParser:
    """Tests for argument parsing."""

    def test_denoise_defaults(self):
        """Denoise options default to a radius-2 window."""
        args = create_parser().parse_args(["denoise", "in_%d.png", "out_%d.png", "10"])

        assert args.radius == 2
        assert args.block_size == 16
        assert args.search_radius == 16
        assert args.noise_level == 0.0
        assert args.num_frames == 10

    def test_version(self, capsys):
        """--version prints the package version."""
        with pytest.raises(SystemExit) as exc:
            create_parser().parse_args(["--version"])

        assert exc.value.code == 0
        assert "framefuse" in capsys.readouterr().out

    def test_no_command(self):
        """Running without a subcommand prints help and fails."""
        assert main([]) == 1


class TestAlignCommand:
    """Tests for `framefuse align`."""

    def test_writes_outputs(self, tmp_path, image_pair):
        """Flow image, map and warped target are written."""
        ref, alt = image_pair
        flow = tmp_path / "out" / "flow.png"
        map_path = tmp_path / "out" / "map.json"
        warped = tmp_path / "out" / "warped.png"

        code = main([
            "align", str(ref), str(alt),
            "--flow-out", str(flow),
            "--map-out", str(map_path),
            "--warped-out", str(warped),
            "--quiet",
        ])

        assert code == 0
        assert flow.exists() and warped.exists()
        assert load_image(flow).shape == (8, 8, 2)
        saved = json.loads(map_path.read_text())
        assert saved["reference_path"] == str(ref)
        assert saved["map"]["height"] == 8
        assert saved["map"]["tile_size"] == 16
        assert saved["metadata"]["ica_iterations"] == 3

    def test_missing_input(self, tmp_path, capsys):
        """A missing image exits with status 1."""
        code = main(["align", str(tmp_path / "a.png"), str(tmp_path / "b.png"), "--quiet"])

        assert code == 1
        assert "align failed" in capsys.readouterr().err


class TestDenoiseCommand:
    """Tests for `framefuse denoise`."""

    def test_short_sequence(self, tmp_path, wave_image):
        """Every frame of a three-frame sequence is written."""
        for i in range(3):
            save_image(tmp_path / f"in_{i}.png", wave_image(height=32, width=32) + 0.5)

        code = main([
            "denoise", str(tmp_path / "in_%d.png"), str(tmp_path / "den_%d.png"), "3",
            "--radius", "1", "--search-radius", "2", "--quiet",
        ])

        assert code == 0
        assert all((tmp_path / f"den_{i}.png").exists() for i in range(3))

    def test_no_frames_loaded(self, tmp_path):
        """A sequence with no readable frames fails."""
        code = main(["denoise", str(tmp_path / "in_%d.png"), str(tmp_path / "o_%d.png"), "2", "--quiet"])

        assert code == 1

    def test_invalid_radius(self, tmp_path):
        """Invalid parameters exit with status 1."""
        code = main(["denoise", str(tmp_path / "in_%d.png"), str(tmp_path / "o_%d.png"), "2", "--radius", "-1", "--quiet"])

        assert code == 1
