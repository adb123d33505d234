"""
Small helpers shared by the framefuse modules: version strings, sample
quantisation and formatting.
"""

from __future__ import annotations

import platform
import sys
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

__version__ = "0.1.0"
__version_info__ = {
    "major": 0,
    "minor": 1,
    "patch": 0,
    "status": "alpha",
}


def get_version_banner() -> str:
    """One-line banner used at the start of CLI runs."""
    return f"framefuse v{__version__} | multi-frame alignment and temporal denoising"


def get_version() -> str:
    return __version__


def get_platform_info() -> str:
    """Operating system and interpreter version, for log headers."""
    v = sys.version_info
    return f"{platform.system()} {platform.release()} / Python {v.major}.{v.minor}.{v.micro}"


def get_timestamp_iso() -> str:
    """Current UTC time in ISO 8601 form."""
    return datetime.now(timezone.utc).isoformat()


def to_uint8(data: np.ndarray) -> np.ndarray:
    """
    Quantise [0, 1] samples to 8 bits.

    Values are clamped and rounded to the nearest level, so 8-bit inputs
    survive a load/save round trip. NaN samples become 0.

    Parameters
    ----------
    data : np.ndarray
        Float samples, nominally in [0, 1].

    Returns
    -------
    np.ndarray
        Array of the same shape, dtype uint8.
    """
    clean = np.nan_to_num(np.asarray(data, dtype=np.float64), nan=0.0)
    return np.round(np.clip(clean, 0.0, 1.0) * 255).astype(np.uint8)


def to_uint16(data: np.ndarray) -> np.ndarray:
    """Quantise [0, 1] samples to 16 bits (NaN becomes 0)."""
    clean = np.nan_to_num(np.asarray(data, dtype=np.float64), nan=0.0)
    return np.round(np.clip(clean, 0.0, 1.0) * 65535).astype(np.uint16)


def ensure_parent_dir(path: str | Path) -> Path:
    """Create the directory that will hold ``path`` and return it as a Path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def format_duration(seconds: float) -> str:
    """
    Format a duration for humans.

    Returns strings like ``"45.2s"``, ``"3m 12s"`` or ``"1h 05m 00s"``.
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {seconds % 60:.0f}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes:02d}m {seconds % 60:02.0f}s"
