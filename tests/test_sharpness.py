"""Tests for the sharpness map."""

import numpy as np
import pytest

from scopestack.sharpness import compute_sharpness_map, sharpness_to_image
from tests.frames import make_checkerboard, make_red_ramp


class TestSharpnessMap:
    def test_red_channel_central_difference(self):
        frame = make_red_ramp(6, 8, step=10)
        sharp = compute_sharpness_map(frame)
        assert sharp.dtype == np.float32
        assert sharp.shape == (6, 8)
        assert np.allclose(sharp[1:-1, 1:-1], 20.0)

    def test_only_red_channel_counts(self):
        frame = make_red_ramp(6, 8, step=10)
        rng = np.random.default_rng(0)
        frame[..., 1] = rng.integers(0, 256, size=(6, 8))
        frame[..., 2] = rng.integers(0, 256, size=(6, 8))
        assert np.allclose(compute_sharpness_map(frame)[1:-1, 1:-1], 20.0)

    def test_horizontal_and_vertical_combine(self):
        frame = np.zeros((3, 3, 4), dtype=np.uint8)
        frame[1, 2, 0] = 30  # gh = 30
        frame[2, 1, 0] = 40  # gv = 40
        assert compute_sharpness_map(frame)[1, 1] == pytest.approx(50.0)

    def test_border_is_zero(self):
        sharp = compute_sharpness_map(make_checkerboard())
        assert np.all(sharp[0, :] == 0)
        assert np.all(sharp[-1, :] == 0)
        assert np.all(sharp[:, 0] == 0)
        assert np.all(sharp[:, -1] == 0)

    def test_checkerboard_edges(self):
        sharp = compute_sharpness_map(make_checkerboard(size=64, square=8))
        # Column 8 starts a new square: |R[7] - R[9]| = 255 on rows away from square corners.
        assert sharp[4, 8] == pytest.approx(255.0)
        assert sharp[4, 4] == 0

    def test_flat_frame(self, gray_frame):
        assert not np.any(compute_sharpness_map(gray_frame))


class TestSharpnessImage:
    def test_normalized(self):
        sharp = compute_sharpness_map(make_checkerboard())
        image = sharpness_to_image(sharp)
        assert image.dtype == np.uint8
        assert image.max() == 255
        assert image.min() == 0

    def test_fractional_range_reaches_full_scale(self):
        sharp = np.array([[0.0, 0.1], [0.3, 0.7]], dtype=np.float32)
        image = sharpness_to_image(sharp)
        assert image.dtype == np.uint8
        assert image.tolist() == [[0, 36], [109, 255]]

    def test_all_zero(self):
        assert not np.any(sharpness_to_image(np.zeros((4, 4), dtype=np.float32)))
