"""Average colour of a frame, used as a backdrop hint for viewers."""

from __future__ import annotations

import math

import numpy as np

from scopestack.preprocess import as_frame, round_half_up

# One sample every 10 pixels (40 bytes of RGBA).
_SAMPLE_STRIDE = 10


def average_color(frame: np.ndarray) -> tuple[int, int, int]:
    """Approximate mean (R, G, B) of a frame from a sparse pixel sample."""
    frame = as_frame(frame)
    pixels = frame.reshape(-1, 4)
    if pixels.shape[0] == 0:
        return (0, 0, 0)

    samples = pixels[::_SAMPLE_STRIDE, :3].astype(np.int64)
    count = math.ceil(pixels.size / (4 * _SAMPLE_STRIDE))
    totals = samples.sum(axis=0)
    r, g, b = (round_half_up(total / count) for total in totals)
    return (r, g, b)


def format_css_rgb(rgb: tuple[int, int, int]) -> str:
    return "rgb({}, {}, {})".format(*rgb)
