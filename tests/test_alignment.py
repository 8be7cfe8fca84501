"""Tests for frame alignment."""

import numpy as np
import pytest

from scopestack.alignment import (
    AlignmentResult,
    align_frames,
    apply_deadband,
    best_offset,
    refine_subpixel,
    score_offsets,
)
from scopestack.errors import InvalidInputError
from scopestack.preprocess import edge_map
from scopestack.settings import Settings


class TestAlignFrames:
    def test_identity(self, textured_frame):
        result = align_frames(textured_frame, textured_frame.copy())
        assert result.dx == 0.0
        assert result.dy == 0.0
        assert result.confidence >= 0.95

    def test_detects_horizontal_shift(self, textured_frame, shifted_frame):
        # 6 original px = 4 px at 128 wide (crop 192 px, scale 1.5)
        result = align_frames(textured_frame, shifted_frame)
        assert result.dx == pytest.approx(6.0, abs=0.8)
        assert result.dy == pytest.approx(0.0, abs=0.8)
        assert result.confidence == pytest.approx(1.0)

    def test_whole_number_float_window(self, textured_frame, shifted_frame):
        settings = Settings(search_window=40.0, alignment_downsample=128.0)
        result = align_frames(textured_frame, shifted_frame, settings)
        assert result.dx == pytest.approx(6.0, abs=0.8)

    def test_reverse_shift_is_negative(self, textured_frame, shifted_frame):
        result = align_frames(shifted_frame, textured_frame)
        assert result.dx == pytest.approx(-6.0, abs=0.8)

    def test_detects_vertical_shift(self, texture):
        from tests.frames import to_rgba

        prev = to_rgba(np.ascontiguousarray(texture[30:270, 40:360]))
        curr = to_rgba(np.ascontiguousarray(texture[27:267, 40:360]))  # content moves down 3 px
        result = align_frames(prev, curr)
        assert result.dy == pytest.approx(3.0, abs=0.8)
        assert result.dx == pytest.approx(0.0, abs=0.8)

    def test_flat_frames_have_no_drift(self, gray_frame):
        result = align_frames(gray_frame, gray_frame.copy())
        assert (result.dx, result.dy) == (0.0, 0.0)
        assert result.confidence == 1.0

    def test_too_small_for_window(self, textured_frame):
        settings = Settings(alignment_downsample=16)
        assert align_frames(textured_frame, textured_frame, settings) == AlignmentResult(0.0, 0.0, 0.0)

    def test_mismatched_sizes(self, textured_frame, gray_frame):
        with pytest.raises(InvalidInputError):
            align_frames(textured_frame, gray_frame)

    def test_confidence_in_unit_range(self, textured_frame):
        rng = np.random.default_rng(7)
        noise = rng.integers(0, 256, size=textured_frame.shape, dtype=np.uint8)
        noise[..., 3] = 255
        result = align_frames(textured_frame, noise)
        assert 0.0 <= result.confidence <= 1.0

    def test_inputs_untouched(self, textured_frame, shifted_frame):
        a, b = textured_frame.copy(), shifted_frame.copy()
        align_frames(textured_frame, shifted_frame)
        assert np.array_equal(a, textured_frame)
        assert np.array_equal(b, shifted_frame)

    def test_magnitude(self):
        assert AlignmentResult(3.0, 4.0, 1.0).magnitude == pytest.approx(5.0)


class TestScoreOffsets:
    def test_dense_table(self, textured_frame, shifted_frame):
        settings = Settings()
        scores = score_offsets(edge_map(textured_frame, settings), edge_map(shifted_frame, settings), 40)
        assert scores.shape == (81, 81)
        # exact match at dx = +4, dy = 0 in downsampled pixels
        assert scores[40, 44] == 0.0
        assert best_offset(scores) == (40, 44)

    def test_empty_when_window_too_large(self):
        edges = np.ones((20, 20), dtype=np.float32)
        assert score_offsets(edges, edges, 8) is None

    def test_shape_mismatch(self):
        with pytest.raises(InvalidInputError):
            score_offsets(np.zeros((50, 50), np.float32), np.zeros((50, 60), np.float32), 5)


class TestBestOffset:
    def test_first_in_scan_order_wins_ties(self):
        scores = np.ones((5, 5))
        scores[3, 1] = 0.0
        scores[1, 3] = 0.0
        scores[2, 2] = 0.0
        # dy outer, dx inner: row 1 is scanned before rows 2 and 3
        assert best_offset(scores) == (1, 3)

    def test_no_preference_for_zero_offset(self):
        scores = np.full((5, 5), 2.0)
        scores[0, 0] = 1.0
        scores[2, 2] = 1.0
        assert best_offset(scores) == (0, 0)


class TestRefineSubpixel:
    def test_parabola_vertex(self):
        rows, cols = np.mgrid[0:5, 0:5]
        scores = (cols - 2.3) ** 2 + (rows - 1.8) ** 2
        sub_x, sub_y = refine_subpixel(scores, (2, 2))
        assert sub_x == pytest.approx(0.3)
        assert sub_y == pytest.approx(-0.2)

    def test_flat_axis_not_refined(self):
        scores = np.zeros((5, 5))
        assert refine_subpixel(scores, (2, 3)) == (1.0, 0.0)

    def test_missing_neighbour_uses_best_score(self):
        scores = np.ones((5, 5))
        scores[2, 0] = 0.0
        # left neighbour missing -> treated as 0.0: shift = (0 - 1) / (2 * 1) = -0.5
        sub_x, sub_y = refine_subpixel(scores, (2, 0))
        assert sub_x == pytest.approx(-2.5)
        assert sub_y == pytest.approx(0.0)


class TestDeadband:
    def test_small_motion_snaps_to_zero(self):
        assert apply_deadband(0.5, 0.5, 0.8) == (0.0, 0.0)
        assert apply_deadband(-0.79, 0.0, 0.8) == (0.0, 0.0)

    def test_large_motion_passes(self):
        assert apply_deadband(0.6, 0.6, 0.8) == (0.6, 0.6)
        assert apply_deadband(0.8, 0.0, 0.8) == (0.8, 0.0)
