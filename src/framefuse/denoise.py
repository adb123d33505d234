"""
Temporal video denoising driver.

Each output frame is the fusion of its input frame (the reference) with
up to ``temporal_radius`` neighbours on each side. Neighbours are aligned
to the reference with the full pyramid + ICA chain, warped with NaN fill
so that uncovered pixels are excluded, and averaged.

Sequences are streamed through a :class:`FrameBuffer` of capacity
``2 * temporal_radius + 1``: frame i is denoised as soon as frame
i + temporal_radius has been loaded, and the last frames are flushed with
windows truncated at the end of the sequence.
"""

from __future__ import annotations

import logging
import time
from collections import deque

import numpy as np

from .align import align_to_reference, prepare_reference
from .cli_output import create_progress_bar
from .config import DenoisingParams, RejectedFrame, RejectionReason, SequenceResult
from .errors import FrameFuseError, InvalidParameterError
from .fusion import FusionStatistics, compute_fusion_statistics, coverage_count, temporal_average
from .frame_buffer import FrameBuffer
from .image import as_image
from .io import frame_path, load_image, save_image
from .utils import format_duration
from .warp import warp_image

logger = logging.getLogger(__name__)


def denoise_frame(
    buffer: FrameBuffer,
    params: DenoisingParams,
    center: int | None = None,
    rejected: list[RejectedFrame] | None = None,
) -> tuple[np.ndarray, FusionStatistics]:
    """
    Denoise one buffered frame using its temporal neighbours.

    Parameters
    ----------
    buffer : FrameBuffer
        Frames of the sequence; must not be empty.
    params : DenoisingParams
        Temporal radius, noise level and alignment configuration.
    center : int, optional
        Buffer position of the frame to denoise. Defaults to
        ``buffer.center_index``.
    rejected : list[RejectedFrame], optional
        Neighbours that cannot be aligned are appended here.

    Returns
    -------
    tuple[np.ndarray, FusionStatistics]
        (denoised image (H, W, C) float32, fusion statistics)

    Notes
    -----
    The reference frame always contributes, so every output pixel has at
    least one valid sample. A neighbour whose alignment fails is logged
    and left out of the fusion. When frames carry sequence indices, a
    neighbour more than ``temporal_radius`` indices away from the
    reference is ignored even if it sits within the window in the buffer.
    """
    if buffer is None or len(buffer) == 0:
        raise InvalidParameterError("Cannot denoise from an empty frame buffer")
    params.validate()
    if params.buffer_capacity > buffer.capacity:
        raise InvalidParameterError(
            f"Temporal radius {params.temporal_radius} needs a buffer of "
            f"{params.buffer_capacity} frames, capacity is {buffer.capacity}"
        )
    if center is None:
        center = buffer.center_index

    ref_entry = buffer.get_entry(0, center)
    reference = as_image(ref_entry.image)
    alignment_params = params.alignment_params()
    prepared = None

    frames = [reference]
    for offset in buffer.available_offsets(params.temporal_radius, center):
        if offset == 0:
            continue
        entry = buffer.get_entry(offset, center)
        label = entry.path or f"frame {entry.index}"
        # Gaps left by unreadable frames must not widen the window
        if (
            entry.index >= 0
            and ref_entry.index >= 0
            and abs(entry.index - ref_entry.index) > params.temporal_radius
        ):
            logger.debug(
                "Skipping %s: %d frames from the reference",
                label,
                abs(entry.index - ref_entry.index),
            )
            continue
        neighbour = as_image(entry.image)

        if neighbour.shape != reference.shape:
            logger.warning(
                "Skipping %s: shape %s differs from reference %s",
                label,
                neighbour.shape,
                reference.shape,
            )
            if rejected is not None:
                rejected.append(
                    RejectedFrame(
                        path=entry.path,
                        reason=RejectionReason.SHAPE_MISMATCH,
                        detail=f"{neighbour.shape} vs {reference.shape}",
                    )
                )
            continue

        try:
            if prepared is None:
                prepared = prepare_reference(reference, alignment_params)
            result = align_to_reference(prepared, neighbour)
            warped = warp_image(neighbour, result.alignment, fill_value=np.nan)
        except FrameFuseError as e:
            logger.warning("Skipping %s: alignment failed (%s)", label, e)
            if rejected is not None:
                rejected.append(
                    RejectedFrame(
                        path=entry.path,
                        reason=RejectionReason.ALIGNMENT_FAILED,
                        detail=str(e),
                    )
                )
            continue

        mean = result.alignment.mean_displacement()
        logger.debug("Offset %+d (%s): mean motion (%.2f, %.2f) px", offset, label, mean.x, mean.y)
        frames.append(warped)

    fused = temporal_average(frames, reference=reference, noise_level=params.noise_level)
    stats = compute_fusion_statistics(fused, reference, coverage_count(frames), len(frames))
    logger.debug(
        "Denoised %s from %d frames: mean coverage %.2f, removed noise sigma %.4f",
        ref_entry.path or f"frame {ref_entry.index}",
        stats.n_frames,
        stats.mean_coverage,
        stats.removed_noise_sigma,
    )
    return fused, stats


def _buffer_position(buffer: FrameBuffer, index: int) -> int:
    for position, entry in enumerate(buffer.entries):
        if entry.index == index:
            return position
    raise IndexError(f"Frame {index} is no longer buffered")


def denoise_sequence(
    input_pattern: str,
    output_pattern: str,
    num_frames: int,
    params: DenoisingParams | None = None,
    show_progress: bool = False,
) -> SequenceResult:
    """
    Denoise a numbered frame sequence.

    Parameters
    ----------
    input_pattern : str
        Input frame pattern, e.g. ``frame_%04d.png``.
    output_pattern : str
        Output frame pattern; output i is written for input frame i.
    num_frames : int
        Number of input frames (indices 0 to num_frames - 1).
    params : DenoisingParams, optional
        Defaults to ``DenoisingParams()``.
    show_progress : bool, default False
        Show a tqdm progress bar over input frames.

    Returns
    -------
    SequenceResult
        Loaded inputs, written outputs and rejected frames.

    Notes
    -----
    A frame that cannot be loaded is recorded as rejected and simply
    missing from its neighbours' windows; it produces no output. A frame
    whose denoising or saving fails is also recorded and the run goes on.
    """
    if params is None:
        params = DenoisingParams()
    params.validate()
    if num_frames < 0:
        raise InvalidParameterError(f"num_frames must be >= 0, got {num_frames}")
    # Fail early on malformed patterns
    frame_path(input_pattern, 0)
    frame_path(output_pattern, 0)

    t_start = time.perf_counter()
    result = SequenceResult(
        input_pattern=input_pattern,
        output_pattern=output_pattern,
        params=params,
    )
    buffer = FrameBuffer(params.buffer_capacity)
    pending: deque[int] = deque()
    radius = params.temporal_radius

    logger.info(
        "Denoising %d frames: radius %d, block %d, search %d, noise level %g",
        num_frames,
        radius,
        params.block_size,
        params.search_radius,
        params.noise_level,
    )

    def process(index: int) -> None:
        center = _buffer_position(buffer, index)
        entry = buffer.entry(center)
        out_path = frame_path(output_pattern, index)
        try:
            fused, stats = denoise_frame(buffer, params, center=center, rejected=result.rejected)
        except FrameFuseError as e:
            logger.error("Failed to denoise frame %d: %s", index, e)
            result.rejected.append(
                RejectedFrame(path=entry.path, reason=RejectionReason.DENOISE_FAILED, detail=str(e))
            )
            return
        try:
            save_image(out_path, fused)
        except (OSError, ValueError) as e:
            logger.error("Failed to write %s: %s", out_path, e)
            result.rejected.append(
                RejectedFrame(path=entry.path, reason=RejectionReason.WRITE_FAILED, detail=str(e))
            )
            return
        result.outputs[index] = out_path
        logger.debug("Wrote %s (%d frames fused)", out_path, stats.n_frames)

    pbar = create_progress_bar(num_frames, "Denoising", disable=not show_progress)
    try:
        for index in range(num_frames):
            path = frame_path(input_pattern, index)
            try:
                frame = load_image(path)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load frame %d (%s): %s", index, path, e)
                result.rejected.append(
                    RejectedFrame(path=path, reason=RejectionReason.LOAD_FAILED, detail=str(e))
                )
                pbar.update(1)
                continue

            buffer.push(frame, index=index, path=path)
            result.inputs.append(path)
            pending.append(index)

            # The oldest pending frame has all its future neighbours
            if len(pending) > radius:
                process(pending.popleft())
            pbar.update(1)

        # Flush the tail with truncated windows
        while pending:
            process(pending.popleft())
    finally:
        pbar.close()

    result.elapsed_s = time.perf_counter() - t_start
    logger.info(
        "Denoised %d/%d frames (%d rejected) in %s",
        len(result.outputs),
        num_frames,
        len(result.rejected),
        format_duration(result.elapsed_s),
    )
    return result
