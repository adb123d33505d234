"""
Frame I/O for framefuse.

Handles:
- Raster images (PNG, JPEG, TIFF) through imageio, normalised to [0, 1]
- FITS images through astropy, 2D or channel-first cubes
- Numbered frame patterns for sequence processing

Every image returned here has the (height, width, channels) float32
layout used by the alignment engine.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import imageio.v3 as iio
import numpy as np
from astropy.io import fits

from .errors import InvalidParameterError
from .image import PIXEL_DTYPE, as_image
from .utils import ensure_parent_dir, to_uint16, to_uint8

logger = logging.getLogger(__name__)

FITS_SUFFIXES = (".fits", ".fit", ".fts")

_PRINTF_FIELD = re.compile(r"%0?\d*d")


def is_fits_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in FITS_SUFFIXES


def normalize_samples(data: np.ndarray) -> np.ndarray:
    """
    Scale integer samples to [0, 1].

    Unsigned integers are divided by their type's maximum; booleans map to
    {0, 1}; float data is passed through unchanged. Signed integer data in
    the 16-bit range (Pillow decodes some 16-bit files to int32) is divided
    by 65535.
    """
    data = np.asarray(data)
    if data.dtype == np.bool_:
        return data.astype(PIXEL_DTYPE)
    if np.issubdtype(data.dtype, np.unsignedinteger):
        return (data.astype(np.float64) / np.iinfo(data.dtype).max).astype(PIXEL_DTYPE)
    if np.issubdtype(data.dtype, np.integer):
        if data.size and data.min() >= 0 and data.max() <= 65535:
            scale = 255.0 if data.max() <= 255 and data.dtype.itemsize == 1 else 65535.0
            return (data.astype(np.float64) / scale).astype(PIXEL_DTYPE)
        info = np.iinfo(data.dtype)
        return ((data.astype(np.float64) - info.min) / (info.max - info.min)).astype(PIXEL_DTYPE)
    return data.astype(PIXEL_DTYPE)


def read_fits_image(path: str | Path) -> np.ndarray:
    """
    Read the primary HDU of a FITS file as an image.

    Cubes are stored channel-first (NAXIS3 = channels) and are transposed
    to channel-last. Data is returned as float32 without rescaling.
    """
    with fits.open(path) as hdul:
        data = hdul[0].data
        if data is None:
            raise InvalidParameterError(f"No image data in primary HDU of {path}")
        data = np.asarray(data, dtype=np.float32)

    if data.ndim == 3:
        data = np.moveaxis(data, 0, -1)
    return as_image(data)


def write_fits_image(path: str | Path, image: np.ndarray, overwrite: bool = True) -> None:
    """Write an image as float32 FITS, channel-first for multi-channel data."""
    img = as_image(image)
    data = img[:, :, 0] if img.shape[2] == 1 else np.moveaxis(img, -1, 0)
    header = fits.Header()
    header["CREATOR"] = "framefuse"
    hdu = fits.PrimaryHDU(data=np.ascontiguousarray(data, dtype=np.float32), header=header)
    hdu.writeto(ensure_parent_dir(path), overwrite=overwrite)


def load_image(path: str | Path) -> np.ndarray:
    """
    Load an image file as normalised float samples.

    Parameters
    ----------
    path : str or Path
        Image path. FITS files are recognised by their suffix; anything
        else goes through imageio.

    Returns
    -------
    np.ndarray
        Image of shape (height, width, channels), float32. 8- and 16-bit
        integer files are scaled to [0, 1].

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Image not found: {path}")

    if is_fits_path(path):
        img = read_fits_image(path)
    else:
        img = as_image(normalize_samples(iio.imread(path)))

    logger.debug("Loaded %s (%dx%dx%d)", path.name, *img.shape)
    return img


def save_image(path: str | Path, image: np.ndarray, bit_depth: int = 8) -> Path:
    """
    Save an image.

    Parameters
    ----------
    path : str or Path
        Output path. A FITS suffix writes float32 samples unchanged; any
        other suffix is written through imageio after clamping to [0, 1].
    image : np.ndarray
        Image (H, W) or (H, W, C).
    bit_depth : int, default 8
        8 or 16 bits per sample for raster output.

    Returns
    -------
    Path
        The written path.
    """
    if bit_depth not in (8, 16):
        raise InvalidParameterError(f"bit_depth must be 8 or 16, got {bit_depth}")
    img = as_image(image)
    path = ensure_parent_dir(path)

    if is_fits_path(path):
        write_fits_image(path, img)
    else:
        if bit_depth == 16 and img.shape[2] != 1:
            raise InvalidParameterError("16-bit raster output needs a single-channel image")
        data = to_uint8(img) if bit_depth == 8 else to_uint16(img)
        if data.shape[2] == 1:
            data = data[:, :, 0]
        iio.imwrite(path, data)

    logger.debug("Wrote %s", path)
    return path


def frame_path(pattern: str, index: int) -> str:
    """
    Expand a numbered frame pattern.

    Both printf-style (``frame_%04d.png``) and ``str.format`` style
    (``frame_{:04d}.png``) patterns are accepted.
    """
    if _PRINTF_FIELD.search(pattern):
        return pattern % index
    if "{" in pattern:
        return pattern.format(index)
    raise InvalidParameterError(f"Pattern has no frame number field: {pattern!r}")


def load_frame(pattern: str, index: int) -> np.ndarray:
    """Load frame ``index`` of a numbered sequence."""
    return load_image(frame_path(pattern, index))
