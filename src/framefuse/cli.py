"""
Command-line interface for framefuse.

Usage:
    framefuse align <reference> <target> [--flow-out PNG] [--map-out JSON] [options]
    framefuse denoise <input_pattern> <output_pattern> <num_frames> [options]
    python -m framefuse ...
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .align import align_image, save_alignment_map, visualize_flow
from .cli_output import (
    PipelineProgress,
    print_error,
    print_header,
    print_metric,
    print_path,
    print_success,
    print_warning,
    setup_terminal,
)
from .config import DEFAULT_ICA_ITERATIONS, DEFAULT_TILE_SIZE, AlignmentParams, DenoisingParams
from .denoise import denoise_sequence
from .errors import FrameFuseError
from .io import load_image, save_image
from .utils import format_duration, get_platform_info, get_version, get_version_banner
from .warp import warp_image

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for CLI."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def run_align(args: argparse.Namespace) -> int:
    """Align a target image to a reference and write the requested outputs."""
    progress = PipelineProgress(total_stages=3, quiet=args.quiet)

    progress.start_stage(1, "Loading images")
    reference = load_image(args.reference)
    target = load_image(args.target)
    progress.update_detail(f"Reference {reference.shape[1]}x{reference.shape[0]}x{reference.shape[2]}")
    progress.complete_stage()

    params = AlignmentParams.default(tile_size=args.tile_size)
    params.ica.num_iterations = args.iterations
    params.ica.sigma_blur = args.blur

    progress.start_stage(2, "Estimating motion")
    result = align_image(reference, target, params)
    mean = result.alignment.mean_displacement()
    progress.complete_stage(
        f"{result.alignment.height}x{result.alignment.width} tiles, "
        f"mean ({mean.x:.3f}, {mean.y:.3f}) px"
    )

    progress.start_stage(3, "Writing outputs")
    written = []
    if args.flow_out:
        written.append(save_image(args.flow_out, visualize_flow(result.alignment)))
    if args.map_out:
        save_alignment_map(
            result.alignment,
            args.map_out,
            reference_path=str(args.reference),
            target_path=str(args.target),
            metadata={
                "ica_iterations": params.ica.num_iterations,
                "sigma_blur": params.ica.sigma_blur,
                "tile_size": params.ica.tile_size,
            },
        )
        written.append(Path(args.map_out))
    if args.warped_out:
        written.append(save_image(args.warped_out, warp_image(target, result.alignment)))
    if not written:
        progress.fail_stage("No output requested (use --flow-out, --map-out or --warped-out)")
    else:
        progress.complete_stage(f"{len(written)} file(s)")

    if not args.quiet:
        print_header("Alignment summary")
        print_metric("Mean displacement x", mean.x, "px")
        print_metric("Mean displacement y", mean.y, "px")
        for stage, seconds in result.timings.items():
            print_metric(stage.removesuffix("_s").replace("_", " "), format_duration(seconds))
        for path in written:
            print_path("Output", str(path))
    return 0


def run_denoise(args: argparse.Namespace) -> int:
    """Denoise a numbered frame sequence."""
    params = DenoisingParams(
        temporal_radius=args.radius,
        noise_level=args.noise_level,
        block_size=args.block_size,
        search_radius=args.search_radius,
        num_levels=args.levels,
        ica_iterations=args.iterations,
    )
    result = denoise_sequence(
        args.input_pattern,
        args.output_pattern,
        args.num_frames,
        params,
        show_progress=not args.quiet,
    )

    if not args.quiet:
        print_header("Denoising summary")
        print_metric("Frames loaded", len(result.inputs))
        print_metric("Frames written", len(result.outputs))
        print_metric("Duration", format_duration(result.elapsed_s))
        for rejected in result.rejected:
            print_warning(f"{rejected.reason.value}: {rejected.path} {rejected.detail}".rstrip())

    if args.num_frames > 0 and not result.outputs:
        print_error("No frames were denoised")
        return 1
    if not args.quiet:
        print_success("Video denoising completed")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="framefuse",
        description="Sub-pixel multi-frame alignment and temporal denoising",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"framefuse {get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Align command
    align_parser = subparsers.add_parser(
        "align",
        help="Estimate the motion between two images",
    )
    align_parser.add_argument("reference", type=str, help="Reference image")
    align_parser.add_argument("target", type=str, help="Image to align to the reference")
    align_parser.add_argument(
        "--flow-out",
        type=str,
        default=None,
        help="Write the flow visualisation (one pixel per tile) to this image",
    )
    align_parser.add_argument(
        "--map-out",
        type=str,
        default=None,
        help="Write the displacement map to this JSON file",
    )
    align_parser.add_argument(
        "--warped-out",
        type=str,
        default=None,
        help="Write the target warped onto the reference to this image",
    )
    align_parser.add_argument(
        "-i",
        "--iterations",
        type=int,
        default=DEFAULT_ICA_ITERATIONS,
        help=f"Number of ICA iterations (default: {DEFAULT_ICA_ITERATIONS})",
    )
    align_parser.add_argument(
        "-t",
        "--tile-size",
        type=int,
        default=DEFAULT_TILE_SIZE,
        help=f"Tile size (default: {DEFAULT_TILE_SIZE})",
    )
    align_parser.add_argument(
        "-b",
        "--blur",
        type=float,
        default=0.0,
        help="Gaussian blur sigma before gradients (default: 0.0)",
    )

    # Denoise command
    denoise_parser = subparsers.add_parser(
        "denoise",
        help="Denoise a numbered frame sequence",
    )
    denoise_parser.add_argument(
        "input_pattern",
        type=str,
        help="Input frame pattern, e.g. frame_%%04d.png",
    )
    denoise_parser.add_argument(
        "output_pattern",
        type=str,
        help="Output frame pattern, e.g. denoised_%%04d.png",
    )
    denoise_parser.add_argument("num_frames", type=int, help="Number of input frames")
    denoise_parser.add_argument(
        "--radius",
        type=int,
        default=2,
        help="Temporal radius: neighbours on each side (default: 2)",
    )
    denoise_parser.add_argument(
        "--block-size",
        type=int,
        default=DEFAULT_TILE_SIZE,
        help=f"Motion estimation tile size (default: {DEFAULT_TILE_SIZE})",
    )
    denoise_parser.add_argument(
        "--search-radius",
        type=int,
        default=16,
        help="Motion search radius in pixels (default: 16)",
    )
    denoise_parser.add_argument(
        "--noise-level",
        type=float,
        default=0.0,
        help="Noise sigma in [0, 1] sample units; 0 uses the plain mean (default: 0)",
    )
    denoise_parser.add_argument(
        "--levels",
        type=int,
        default=1,
        help="Pyramid levels for motion estimation (default: 1)",
    )
    denoise_parser.add_argument(
        "-i",
        "--iterations",
        type=int,
        default=DEFAULT_ICA_ITERATIONS,
        help=f"Number of ICA iterations (default: {DEFAULT_ICA_ITERATIONS})",
    )

    for sub in (align_parser, denoise_parser):
        sub.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable debug logging",
        )
        sub.add_argument(
            "--quiet",
            action="store_true",
            help="Only print warnings and errors",
        )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.quiet)
    setup_terminal()
    logger.info(get_version_banner())
    logger.debug("Platform: %s", get_platform_info())

    handlers = {"align": run_align, "denoise": run_denoise}
    try:
        return handlers[args.command](args)
    except (FrameFuseError, OSError, ValueError) as e:
        print_error(f"{args.command} failed: {e}")
        logger.debug("%s failed", args.command, exc_info=True)
        return 1
