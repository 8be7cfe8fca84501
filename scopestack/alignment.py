"""Translational drift estimation between consecutive frames.

Both frames are reduced to a small edge map (see `preprocess.edge_map`). We
then try every integer shift (dx, dy) in [-search_window, search_window]^2 and
keep the one minimizing the sum of squared differences between
`edge_prev[y, x]` and `edge_curr[y + dy, x + dx]`, sampled on every 2nd
row/column of the interior. The integer optimum is refined per axis with a
parabola through its two neighbours, scaled back to original pixels, and
snapped to zero inside the drift deadband.

Equal scores keep the first offset in scan order (dy ascending, then dx
ascending); there is no preference for small shifts.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from scopestack.errors import InvalidInputError
from scopestack.preprocess import as_frame, edge_map
from scopestack.settings import DEFAULT_SETTINGS, Settings

logger = logging.getLogger(__name__)

# Curvatures at or below this are too flat for a parabolic fit.
_MIN_CURVATURE = 1e-5


@dataclass(frozen=True)
class AlignmentResult:
    """Shift from the previous frame into the current one, in original pixels."""

    dx: float
    dy: float
    confidence: float  # heuristic in [0, 1], not a probability

    @property
    def magnitude(self) -> float:
        return math.hypot(self.dx, self.dy)


def score_offsets(edge_prev: np.ndarray, edge_curr: np.ndarray, search_window: int) -> Optional[np.ndarray]:
    """SSD score of every integer offset.

    Args:
        edge_prev: Edge map of the previous frame (H, W).
        edge_curr: Edge map of the current frame (H, W).
        search_window: Largest shift tried along each axis.

    Returns:
        A (2 * search_window + 1, 2 * search_window + 1) float64 table where
        `scores[dy + search_window, dx + search_window]` is the score of
        (dx, dy), or None if the maps are too small to sample any pixel.
    """
    if edge_prev.shape != edge_curr.shape:
        raise InvalidInputError(f"Edge map shapes differ: {edge_prev.shape} vs {edge_curr.shape}")

    h, w = edge_prev.shape
    padding = search_window + 2
    ys = np.arange(padding, h - padding, 2)
    xs = np.arange(padding, w - padding, 2)
    if ys.size == 0 or xs.size == 0:
        return None

    offsets = np.arange(-search_window, search_window + 1)
    prev = edge_prev[np.ix_(ys, xs)].astype(np.float64)  # (ny, nx)
    cols = xs[np.newaxis, :] + offsets[:, np.newaxis]  # (n_dx, nx)

    scores = np.empty((offsets.size, offsets.size), dtype=np.float64)
    for i, dy in enumerate(offsets):
        rows = edge_curr[ys + dy].astype(np.float64)  # (ny, W)
        diff = rows[:, cols] - prev[:, np.newaxis, :]  # (ny, n_dx, nx)
        scores[i] = np.einsum("ijk,ijk->j", diff, diff)

    return scores


def best_offset(scores: np.ndarray) -> tuple[int, int]:
    """Index (row, col) of the first minimal score in row-major scan order."""
    flat_idx = int(np.argmin(scores))
    row, col = np.unravel_index(flat_idx, scores.shape)
    return int(row), int(col)


def refine_subpixel(scores: np.ndarray, best: tuple[int, int]) -> tuple[float, float]:
    """Parabolic sub-pixel refinement of an integer optimum.

    Args:
        scores: Dense score table from `score_offsets`.
        best: (row, col) index of the optimum in `scores`.

    Returns:
        (dx, dy) in search-window units (downsampled pixels). A neighbour
        outside the table counts as equal to the optimum; an axis whose
        curvature is near zero is left at its integer value.
    """
    search_window = scores.shape[0] // 2
    row, col = best
    v0 = scores[row, col]

    def at(r: int, c: int) -> float:
        if 0 <= r < scores.shape[0] and 0 <= c < scores.shape[1]:
            return scores[r, c]
        return v0

    vx_minus, vx_plus = at(row, col - 1), at(row, col + 1)
    vy_minus, vy_plus = at(row - 1, col), at(row + 1, col)

    sub_x = float(col - search_window)
    sub_y = float(row - search_window)

    denom_x = vx_minus - 2 * v0 + vx_plus
    denom_y = vy_minus - 2 * v0 + vy_plus
    if abs(denom_x) > _MIN_CURVATURE:
        sub_x += (vx_minus - vx_plus) / (2 * denom_x)
    if abs(denom_y) > _MIN_CURVATURE:
        sub_y += (vy_minus - vy_plus) / (2 * denom_y)

    return sub_x, sub_y


def apply_deadband(dx: float, dy: float, deadband: float) -> tuple[float, float]:
    """Snap shifts shorter than `deadband` to exactly (0.0, 0.0)."""
    if math.hypot(dx, dy) < deadband:
        return 0.0, 0.0
    return dx, dy


def align_frames(
    previous: np.ndarray,
    current: np.ndarray,
    settings: Settings = DEFAULT_SETTINGS,
) -> AlignmentResult:
    """Estimate the translation from `previous` to `current`.

    Args:
        previous: RGBA frame (H, W, 4) captured first.
        current: RGBA frame with the same dimensions.
        settings: Alignment resolution, search window, crop ratio, deadband.

    Returns:
        The shift in original pixel units and a confidence score. Frames too
        small to sample yield (0, 0) with confidence 0.

    Raises:
        InvalidInputError: If the frames differ in size or are not RGBA.
    """
    previous = as_frame(previous)
    current = as_frame(current)
    if previous.shape != current.shape:
        raise InvalidInputError(f"Cannot align frames of different sizes: {previous.shape} vs {current.shape}")

    edge_prev = edge_map(previous, settings)
    edge_curr = edge_map(current, settings)
    h, w = edge_prev.shape

    scores = score_offsets(edge_prev, edge_curr, settings.search_window)
    if scores is None:
        logger.debug("Frame %s too small for search window %d", previous.shape[:2], settings.search_window)
        return AlignmentResult(0.0, 0.0, 0.0)

    best = best_offset(scores)
    min_diff = float(scores[best])
    confidence = max(0.0, 1.0 - min_diff / (w * h * 100))

    if min_diff == float(scores.max()):
        # Every offset scores the same (no texture): nothing to track.
        return AlignmentResult(0.0, 0.0, confidence)

    sub_x, sub_y = refine_subpixel(scores, best)

    scale = previous.shape[1] * settings.crop_ratio / settings.alignment_downsample
    dx, dy = apply_deadband(sub_x * scale, sub_y * scale, settings.drift_deadband)

    return AlignmentResult(dx, dy, confidence)
