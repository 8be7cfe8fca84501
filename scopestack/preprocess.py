"""Frame preprocessing shared by alignment and fingerprinting.

This module validates RGBA frames, crops/resizes them to a working
resolution, and derives grayscale, blurred and Sobel edge buffers. It also
loads frames from image folders and video sources for offline runs.
"""

from __future__ import annotations

import glob
import logging
import math
import os
from typing import Iterator, Optional, Sequence, Union

import cv2
import numpy as np

from scopestack.errors import InvalidInputError, SourceError, SurfaceError
from scopestack.settings import DEFAULT_SETTINGS, Settings

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +inf."""
    return int(math.floor(value + 0.5))


def as_frame(image: np.ndarray) -> np.ndarray:
    """Validate an RGBA frame, adding an opaque alpha channel to RGB input.

    Args:
        image: uint8 array with shape (H, W, 4) or (H, W, 3).

    Returns:
        A (H, W, 4) uint8 array. RGBA input is returned as-is (not copied).

    Raises:
        InvalidInputError: If the array is not a uint8 RGB/RGBA image.
    """
    if not isinstance(image, np.ndarray):
        raise InvalidInputError(f"Frame must be a numpy array, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidInputError(f"Frame must have shape (H, W, 4) or (H, W, 3), got {image.shape}")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Frame must be uint8, got {image.dtype}")

    if image.shape[2] == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([image, alpha], axis=2)
    return image


def frame_from_bgr(image: np.ndarray) -> np.ndarray:
    """Convert an OpenCV BGR(A) image to an RGBA frame."""
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)


def frame_to_bgra(frame: np.ndarray) -> np.ndarray:
    """Convert an RGBA frame to BGRA for `cv2.imwrite`."""
    return cv2.cvtColor(as_frame(frame), cv2.COLOR_RGBA2BGRA)


def crop_and_resize(
    frame: np.ndarray,
    target_width: int,
    crop_ratio: float = DEFAULT_SETTINGS.crop_ratio,
    target_height: Optional[int] = None,
) -> np.ndarray:
    """Crop the centered `crop_ratio` region of a frame and resize it.

    Args:
        frame: RGBA frame (H, W, 4).
        target_width: Output width in pixels.
        crop_ratio: Fraction of width and height kept around the center.
        target_height: Output height; defaults to the crop's aspect ratio
            applied to `target_width`.

    Returns:
        A new (target_height, target_width, 4) uint8 frame.
    """
    frame = as_frame(frame)
    h, w = frame.shape[:2]
    if w <= 0 or h <= 0:
        raise InvalidInputError(f"Cannot crop a frame with size {w}x{h}")
    if target_width <= 0:
        raise InvalidInputError(f"target_width must be positive, got {target_width}")

    crop_w = w * crop_ratio
    crop_h = h * crop_ratio
    crop_x = (w - crop_w) / 2
    crop_y = (h - crop_h) / 2

    if target_height is None:
        target_height = max(1, round_half_up(crop_h * target_width / crop_w))
    elif target_height <= 0:
        raise InvalidInputError(f"target_height must be positive, got {target_height}")

    x0 = round_half_up(crop_x)
    y0 = round_half_up(crop_y)
    x1 = max(x0 + 1, round_half_up(crop_x + crop_w))
    y1 = max(y0 + 1, round_half_up(crop_y + crop_h))
    region = np.ascontiguousarray(frame[y0:y1, x0:x1])

    try:
        resized = cv2.resize(region, (int(target_width), int(target_height)), interpolation=cv2.INTER_AREA)
    except cv2.error as e:
        raise SurfaceError(f"Resize to {target_width}x{target_height} failed: {e}") from e
    if resized is None:
        raise SurfaceError(f"Resize to {target_width}x{target_height} produced no image")

    return resized


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    """Luma (0.299 R + 0.587 G + 0.114 B) truncated to uint8."""
    frame = as_frame(frame)
    rgb = frame[..., :3].astype(np.float64)
    gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    return gray.astype(np.uint8)


def box_blur_3x3(gray: np.ndarray) -> np.ndarray:
    """Unweighted 3x3 mean filter; the 1-pixel border is set to zero."""
    _check_gray(gray)
    h, w = gray.shape
    blurred = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return blurred

    # Window sums are small integers, exact in float32.
    sums = cv2.filter2D(gray, cv2.CV_32F, np.ones((3, 3), dtype=np.float32), borderType=cv2.BORDER_CONSTANT)
    blurred[1:-1, 1:-1] = (sums[1:-1, 1:-1].astype(np.int32) // 9).astype(np.uint8)
    return blurred


def sobel_magnitude(gray: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude of the interior pixels; border is zero."""
    _check_gray(gray)
    h, w = gray.shape
    edges = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return edges

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3).astype(np.float64)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3).astype(np.float64)
    magnitude = np.sqrt(gx**2 + gy**2)
    edges[1:-1, 1:-1] = magnitude[1:-1, 1:-1]
    return edges


def edge_map(frame: np.ndarray, settings: Settings = DEFAULT_SETTINGS) -> np.ndarray:
    """Crop/resize to the alignment resolution, then grayscale -> blur -> Sobel."""
    small = crop_and_resize(frame, settings.alignment_downsample, settings.crop_ratio)
    return sobel_magnitude(box_blur_3x3(to_grayscale(small)))


def _check_gray(gray: np.ndarray) -> None:
    if not isinstance(gray, np.ndarray) or gray.ndim != 2 or gray.dtype != np.uint8:
        shape = getattr(gray, "shape", None)
        dtype = getattr(gray, "dtype", None)
        raise InvalidInputError(f"Expected a (H, W) uint8 grayscale buffer, got shape={shape} dtype={dtype}")


def load_frames_from_folder(
    folder_path: str,
    extensions: Sequence[str] = ("png", "jpg", "jpeg", "tif", "tiff", "bmp"),
) -> Iterator[np.ndarray]:
    """Yield RGBA frames for every readable image in a folder (sorted by name).

    Raises:
        SourceError: If `folder_path` is not a directory.
    """
    if not os.path.isdir(folder_path):
        raise SourceError(f"Not a directory: {folder_path}")

    image_files: list[str] = []
    for ext in extensions:
        image_files += glob.glob(os.path.join(folder_path, f"*.{ext}"))

    for image_file in sorted(set(image_files)):
        image = cv2.imread(image_file, cv2.IMREAD_UNCHANGED)
        if image is None:
            logger.warning("Skipping unreadable image %s", image_file)
            continue
        if image.dtype != np.uint8:
            image = cv2.convertScaleAbs(image, alpha=255.0 / max(1.0, float(image.max())))
        yield frame_from_bgr(image)


def iter_video_frames(source: Union[str, int]) -> Iterator[np.ndarray]:
    """Yield RGBA frames from a video file or camera index.

    Raises:
        SourceError: If the capture cannot be opened.
    """
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise SourceError(f"Cannot open video source {source!r}")
    try:
        while True:
            ret, image = cap.read()
            if not ret:
                break
            yield frame_from_bgr(image)
    finally:
        cap.release()
