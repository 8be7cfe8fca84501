"""Caller-side loops around the core: stage tracking and manual stacking.

`StageTracker` runs on every captured frame, accumulating accepted drift
estimates into a stage position. `FocusStackSession` runs on explicit
capture actions and owns the focus accumulator:

    NoAccumulator --capture--> Accumulating --capture--> Accumulating
          ^                          |
          +---------- reset ---------+

Neither class is thread-safe; serialize calls per instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from scopestack.alignment import AlignmentResult, align_frames
from scopestack.color import average_color
from scopestack.fusion import FocusAccumulator, merge_focus_stack, start_focus_stack
from scopestack.preprocess import as_frame
from scopestack.settings import DEFAULT_SETTINGS, Settings, StackingPolicy, TrackingPolicy

logger = logging.getLogger(__name__)


class StageTracker:
    """Integrates frame-to-frame drift into a stage position.

    When the image content moves by (dx, dy) the stage moved the opposite way,
    so accepted results move the position by (-dx, -dy). Results at or below
    `policy.min_confidence` are treated as "no motion".
    """

    def __init__(self, settings: Settings = DEFAULT_SETTINGS, policy: Optional[TrackingPolicy] = None) -> None:
        self.settings = settings
        self.policy = policy or TrackingPolicy()

        self._last_frame: Optional[np.ndarray] = None
        self.position: tuple[float, float] = (0.0, 0.0)
        self.relative_offset: tuple[float, float] = (0.0, 0.0)
        self.frames_seen: int = 0

    def update(self, frame: np.ndarray) -> Optional[AlignmentResult]:
        """Feed the next frame; returns the raw alignment (None for the first frame)."""
        frame = as_frame(frame)
        result: Optional[AlignmentResult] = None

        if self._last_frame is not None and self._last_frame.shape == frame.shape:
            result = align_frames(self._last_frame, frame, self.settings)
            if result.confidence > self.policy.min_confidence:
                self.relative_offset = (result.dx, result.dy)
                x, y = self.position
                self.position = (x - result.dx, y - result.dy)
            else:
                logger.debug("Rejected alignment with confidence %.3f", result.confidence)
                self.relative_offset = (0.0, 0.0)
        elif self._last_frame is not None:
            logger.info("Frame size changed from %s to %s; tracking restarts", self._last_frame.shape, frame.shape)
            self.relative_offset = (0.0, 0.0)

        self._last_frame = frame
        self.frames_seen += 1
        return result

    def reset(self) -> None:
        self._last_frame = None
        self.position = (0.0, 0.0)
        self.relative_offset = (0.0, 0.0)
        self.frames_seen = 0


@dataclass(frozen=True, eq=False)
class CaptureResult:
    """Outcome of one `FocusStackSession.capture` call."""

    accumulator: FocusAccumulator
    offset_x: float
    offset_y: float
    alignment: Optional[AlignmentResult]  # None when the capture started a new stack
    forced_zero: bool
    depth: int


class FocusStackSession:
    """Owns the focus accumulator across a sequence of manual captures."""

    def __init__(self, settings: Settings = DEFAULT_SETTINGS, policy: Optional[StackingPolicy] = None) -> None:
        self.settings = settings
        self.policy = policy or StackingPolicy()
        self.accumulator: Optional[FocusAccumulator] = None
        self.depth: int = 0
        self.max_depth: int = 1
        self.background: tuple[int, int, int] = (0, 0, 0)

    @property
    def threshold(self) -> float:
        return self.policy.resolve_threshold(self.settings)

    @property
    def is_accumulating(self) -> bool:
        return self.accumulator is not None

    @property
    def relative_depth(self) -> float:
        """Current depth as a fraction of the deepest layer reached."""
        return self.depth / self.max_depth

    def reset(self) -> None:
        self.accumulator = None
        self.depth = 0
        self.max_depth = 1
        self.background = (0, 0, 0)

    def capture(self, frame: np.ndarray) -> CaptureResult:
        """Merge a newly captured layer into the stack.

        The first frame (or one whose size differs from the current stack)
        starts a new stack. Later frames are aligned against the composite;
        unreliable alignments are replaced by a zero offset.
        """
        frame = as_frame(frame)
        policy = self.policy

        if self.accumulator is None or not self.accumulator.matches(frame):
            if self.accumulator is not None:
                logger.info(
                    "Frame size %s differs from stack %s; starting a new stack", frame.shape[:2], self.accumulator.shape
                )
            self.background = average_color(frame)
            self.accumulator = start_focus_stack(frame, policy.sensitivity, self.threshold, policy.debug)
            self._set_depth(1)
            return CaptureResult(self.accumulator, 0.0, 0.0, None, False, self.depth)

        alignment = align_frames(self.accumulator.pixels, frame, self.settings)
        offset_x, offset_y = alignment.dx, alignment.dy
        forced_zero = (
            alignment.confidence <= policy.min_confidence
            or abs(alignment.dx) > policy.max_offset
            or abs(alignment.dy) > policy.max_offset
        )
        if forced_zero:
            logger.warning(
                "Alignment poor (dx=%.2f, dy=%.2f, confidence=%.3f), stacking at 0,0",
                alignment.dx,
                alignment.dy,
                alignment.confidence,
            )
            offset_x, offset_y = 0.0, 0.0

        self.accumulator = merge_focus_stack(
            self.accumulator,
            frame,
            offset_x,
            offset_y,
            policy.sensitivity,
            self.threshold,
            policy.debug,
        )
        self._set_depth(self.depth + 1)
        return CaptureResult(self.accumulator, offset_x, offset_y, alignment, forced_zero, self.depth)

    def _set_depth(self, depth: int) -> None:
        self.depth = depth
        if depth > self.max_depth:
            self.max_depth = depth
