"""Incremental focus-stack fusion.

The composite is an RGBA image plus the sharpness map of whatever is shown
at each pixel. Each new layer is shifted by its alignment offset and merged
pixel by pixel:

- out-of-bounds source pixels leave the accumulator untouched
- a new pixel above `threshold` wins if it beats the old value by more than
  `sensitivity`, or if the old pixel is not above `threshold` itself
- otherwise, a pixel whose old value is not above `threshold` becomes fully
  transparent with zero sharpness
- otherwise the old pixel is kept

In debug mode every new-winning or kept-sharp pixel is painted magenta.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from scopestack.errors import InvalidInputError
from scopestack.preprocess import as_frame
from scopestack.sharpness import compute_sharpness_map

DEBUG_COLOR = np.array([255, 0, 255, 255], dtype=np.uint8)


@dataclass(frozen=True, eq=False)
class FocusAccumulator:
    """Running composite: RGBA pixels (H, W, 4) and float32 sharpness (H, W)."""

    pixels: np.ndarray
    sharpness: np.ndarray

    def __post_init__(self) -> None:
        as_frame(self.pixels)
        if self.pixels.shape[2] != 4:
            raise InvalidInputError(f"Accumulator pixels must be RGBA, got {self.pixels.shape}")
        if self.sharpness.shape != self.pixels.shape[:2]:
            raise InvalidInputError(
                f"Sharpness map {self.sharpness.shape} does not match pixels {self.pixels.shape[:2]}"
            )

    @classmethod
    def empty(cls, width: int, height: int) -> "FocusAccumulator":
        """A fully transparent, zero-sharpness accumulator."""
        if width <= 0 or height <= 0:
            raise InvalidInputError(f"Accumulator size must be positive, got {width}x{height}")
        return cls(
            pixels=np.zeros((height, width, 4), dtype=np.uint8),
            sharpness=np.zeros((height, width), dtype=np.float32),
        )

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        return self.height, self.width

    def matches(self, frame: np.ndarray) -> bool:
        """True if `frame` has the accumulator's width and height."""
        return frame.shape[:2] == self.shape


def _source_indices(length: int, offset: float) -> tuple[np.ndarray, np.ndarray]:
    """Rounded (half-up) source coordinates along one axis and their validity."""
    src = np.floor(np.arange(length, dtype=np.float64) + offset + 0.5).astype(np.int64)
    valid = (src >= 0) & (src < length)
    return np.clip(src, 0, length - 1), valid


def merge_focus_stack(
    acc: FocusAccumulator,
    new_frame: np.ndarray,
    offset_x: float,
    offset_y: float,
    sensitivity: float,
    threshold: float,
    debug: bool = False,
) -> FocusAccumulator:
    """Merge an aligned frame into the accumulator.

    Args:
        acc: Current accumulator.
        new_frame: RGBA frame with the accumulator's dimensions.
        offset_x: Horizontal offset; accumulator pixel x samples the new frame
            at round(x + offset_x).
        offset_y: Vertical offset, same convention.
        sensitivity: Margin by which a new pixel must beat a sharp old one.
        threshold: Sharpness above which a pixel counts as in focus.
        debug: Paint contributing in-focus pixels magenta.

    Returns:
        A new accumulator of the same dimensions; the inputs are not modified.

    Raises:
        InvalidInputError: If `new_frame` does not match the accumulator size.
    """
    new_frame = as_frame(new_frame)
    if not acc.matches(new_frame):
        raise InvalidInputError(f"Frame size {new_frame.shape[:2]} does not match accumulator {acc.shape}")

    height, width = acc.shape
    new_sharpness = compute_sharpness_map(new_frame)

    src_x, valid_x = _source_indices(width, offset_x)
    src_y, valid_y = _source_indices(height, offset_y)
    in_bounds = valid_y[:, np.newaxis] & valid_x[np.newaxis, :]

    new_val = new_sharpness[np.ix_(src_y, src_x)].astype(np.float64)
    new_pix = new_frame[np.ix_(src_y, src_x)]
    old_val = acc.sharpness.astype(np.float64)

    is_new_sharp = new_val > threshold
    is_old_sharp = old_val > threshold

    take_new = in_bounds & is_new_sharp & ((new_val > old_val + sensitivity) | ~is_old_sharp)
    clear = in_bounds & ~take_new & ~is_old_sharp
    keep_sharp = in_bounds & ~take_new & is_old_sharp

    pixels = acc.pixels.copy()
    sharpness = acc.sharpness.copy()

    pixels[take_new, :3] = new_pix[take_new, :3]
    pixels[take_new, 3] = 255
    sharpness[take_new] = new_val[take_new]

    pixels[clear, 3] = 0
    sharpness[clear] = 0

    if debug:
        pixels[take_new | keep_sharp] = DEBUG_COLOR

    return FocusAccumulator(pixels=pixels, sharpness=sharpness)


def start_focus_stack(
    new_frame: np.ndarray,
    sensitivity: float,
    threshold: float,
    debug: bool = False,
) -> FocusAccumulator:
    """Merge the first layer into an empty accumulator at offset (0, 0)."""
    new_frame = as_frame(new_frame)
    height, width = new_frame.shape[:2]
    empty = FocusAccumulator.empty(width, height)
    return merge_focus_stack(empty, new_frame, 0.0, 0.0, sensitivity, threshold, debug)


def flatten_composite(acc: FocusAccumulator, background: Sequence[int] = (0, 0, 0)) -> np.ndarray:
    """Alpha-composite the accumulator over a solid RGB background.

    Returns:
        An (H, W, 3) uint8 RGB image.
    """
    rgb = acc.pixels[..., :3].astype(np.float32)
    alpha = acc.pixels[..., 3:4].astype(np.float32) / 255.0
    bg = np.asarray(background, dtype=np.float32).reshape(1, 1, 3)
    flat = rgb * alpha + bg * (1.0 - alpha)
    return np.clip(np.rint(flat), 0, 255).astype(np.uint8)
