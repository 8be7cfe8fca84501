"""Offline driver for drift tracking + focus stacking.

Replays an image folder, a video file or a camera through the same loops a
live viewer would run: drift tracking on every frame and a stack capture on
every N-th frame (every image for folders).

Example (run from repo root):
    python -m scopestack.cli_main Imgs/slide_01 --output outputs/ --debug
"""

from __future__ import annotations

import argparse
import dataclasses
import itertools
import logging
import os
from pathlib import Path
from typing import Generator, Optional, Sequence, Union

import cv2
import numpy as np
from tqdm import tqdm

from scopestack.color import format_css_rgb
from scopestack.errors import SourceError
from scopestack.fusion import flatten_composite
from scopestack.preprocess import frame_to_bgra, iter_video_frames, load_frames_from_folder
from scopestack.session import FocusStackSession, StageTracker
from scopestack.settings import Config, load_config
from scopestack.sharpness import sharpness_to_image

logger = logging.getLogger(__name__)


def _open_source(source: str) -> tuple[Generator[np.ndarray, None, None], bool]:
    """Return (frames, is_folder) for a folder path, camera index or video path."""
    if os.path.isdir(source):
        return load_frames_from_folder(source), True
    capture: Union[str, int] = int(source) if source.isdigit() else source
    return iter_video_frames(capture), False


def _output_name(source: str, is_folder: bool) -> str:
    if is_folder:
        return Path(source).name
    if source.isdigit():
        return f"camera{source}"
    return Path(source).stem


def run_live_stacking(
    *,
    source: str,
    output_dir: Path,
    config: Optional[Config] = None,
    stack_every: int = 15,
    max_frames: Optional[int] = None,
) -> Path:
    """Track drift over a frame source and focus-stack the captured layers.

    Args:
        source: Image folder, video file path, or camera index (as a string).
        output_dir: Directory where the composite images are written.
        config: Settings and policies; defaults apply when None.
        stack_every: For video/camera sources, capture one layer every N frames.
        max_frames: Stop after this many frames.

    Returns:
        Path to the written RGBA stack image.
    """
    if stack_every <= 0:
        raise ValueError(f"stack_every must be positive, got {stack_every}")
    config = config or Config()

    tracker = StageTracker(config.settings, config.tracking)
    session = FocusStackSession(config.settings, config.stacking)

    print("Reading frames from", source)
    frames, is_folder = _open_source(source)
    base_name = _output_name(source, is_folder)

    try:
        for index, frame in enumerate(tqdm(itertools.islice(frames, max_frames), total=max_frames, unit="frame")):
            tracker.update(frame)
            if is_folder or index % stack_every == 0:
                result = session.capture(frame)
                logger.debug(
                    "Layer %d stacked at offset (%.2f, %.2f)%s",
                    result.depth,
                    result.offset_x,
                    result.offset_y,
                    " [forced]" if result.forced_zero else "",
                )
    finally:
        # releases the capture device before the outputs are written
        frames.close()

    if session.accumulator is None:
        raise SourceError(f"No frames could be read from {source}")

    accumulator = session.accumulator
    output_dir.mkdir(parents=True, exist_ok=True)

    stack_path = output_dir / f"{base_name}_stack.png"
    cv2.imwrite(str(stack_path), frame_to_bgra(accumulator.pixels))

    flat = flatten_composite(accumulator, session.background)
    cv2.imwrite(str(output_dir / f"{base_name}_flat.png"), cv2.cvtColor(flat, cv2.COLOR_RGB2BGR))
    cv2.imwrite(str(output_dir / f"{base_name}_sharpness.png"), sharpness_to_image(accumulator.sharpness))

    x, y = tracker.position
    print(f"Frames tracked: {tracker.frames_seen}, stage position: ({x:.1f}, {y:.1f})")
    print(f"Layers stacked: {session.depth}, background: {format_css_rgb(session.background)}")
    print(f"Saved focus stack to: {stack_path}")
    return stack_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live drift tracking and focus stacking")
    parser.add_argument("source", type=str, help="Image folder, video file, or camera index")
    parser.add_argument("--output", type=str, help="Output directory", default="outputs/focus_stacking")
    parser.add_argument("--config", type=str, help="[Optional] YAML config file", default="")
    parser.add_argument(
        "--stack-every",
        type=int,
        help="Capture one stack layer every N frames (video/camera sources)",
        default=15,
    )
    parser.add_argument("--sensitivity", type=float, help="Override stacking sensitivity", default=None)
    parser.add_argument("--threshold", type=float, help="Override sharpness threshold", default=None)
    parser.add_argument("--debug", action="store_true", help="Paint in-focus contributions magenta")
    parser.add_argument("--max-frames", type=int, help="Stop after N frames", default=None)
    parser.add_argument("--verbose", action="store_true", help="Log per-layer details")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config) if args.config else Config()

    overrides = {}
    if args.sensitivity is not None:
        overrides["sensitivity"] = args.sensitivity
    if args.threshold is not None:
        overrides["threshold"] = args.threshold
    if args.debug:
        overrides["debug"] = True
    if overrides:
        config = dataclasses.replace(config, stacking=dataclasses.replace(config.stacking, **overrides))

    run_live_stacking(
        source=args.source,
        output_dir=Path(args.output),
        config=config,
        stack_every=args.stack_every,
        max_frames=args.max_frames,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
