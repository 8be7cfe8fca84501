"""Pytest fixtures: synthetic RGBA frames."""

import cv2
import numpy as np
import pytest

from tests.frames import to_rgba


@pytest.fixture
def texture() -> np.ndarray:
    """Smooth random texture (300 x 400 uint8) to crop test frames from."""
    rng = np.random.default_rng(1234)
    noise = rng.integers(0, 256, size=(300, 400), dtype=np.uint8)
    smooth = cv2.GaussianBlur(noise, (0, 0), 2.0)
    return cv2.normalize(smooth, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)


@pytest.fixture
def textured_frame(texture) -> np.ndarray:
    """240 x 320 textured RGBA frame."""
    return to_rgba(np.ascontiguousarray(texture[30:270, 40:360]))


@pytest.fixture
def shifted_frame(texture) -> np.ndarray:
    """`textured_frame` with its content moved 6 px to the right."""
    return to_rgba(np.ascontiguousarray(texture[30:270, 34:354]))


@pytest.fixture
def gray_frame() -> np.ndarray:
    return to_rgba(np.full((64, 64), 128, dtype=np.uint8))
