"""
Pytest configuration and fixtures.
"""

import numpy as np
import pytest
from scipy import ndimage


@pytest.fixture
def wave_image():
    """Smooth zero-mean separable sinusoid, evaluated at shifted coordinates."""
    def _create(height=64, width=64, dx=0.0, dy=0.0, phase=(0.3, 1.1)):
        """
        Return f(x - dx, y - dy) as a (height, width, 1) float32 image.

        With ``ref = _create()`` and ``alt = _create(dx=3, dy=2)``,
        ``alt(x + 3, y + 2) == ref(x, y)``, i.e. the expected displacement
        is (3, 2).
        """
        x = np.arange(width, dtype=np.float64) - dx
        y = np.arange(height, dtype=np.float64) - dy
        fx = 0.25 * np.sin(2 * np.pi * x / 20.0 + phase[0])
        fy = 0.25 * np.sin(2 * np.pi * y / 22.0 + phase[1])
        image = fy[:, np.newaxis] + fx[np.newaxis, :]
        return image[:, :, np.newaxis].astype(np.float32)

    return _create


@pytest.fixture
def textured_image():
    """Random smooth texture in [0, 1]."""
    def _create(height=64, width=64, channels=1, sigma=1.5, seed=42):
        rng = np.random.default_rng(seed)
        noise = rng.normal(0.0, 1.0, (height, width, channels))
        smooth = ndimage.gaussian_filter(noise, sigma=(sigma, sigma, 0))
        smooth -= smooth.min()
        smooth /= smooth.max()
        return smooth.astype(np.float32)

    return _create


@pytest.fixture
def shifted_pair(textured_image):
    """Reference and integer-translated copy (content moved by +dx, +dy)."""
    def _create(dx=3, dy=2, **kwargs):
        ref = textured_image(**kwargs)
        alt = np.roll(ref, shift=(dy, dx), axis=(0, 1))
        return ref, alt

    return _create
