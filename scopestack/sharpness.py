"""Sharpness map computation for focus stacking.

We use a cheap per-pixel proxy: the gradient magnitude built from the red
channel's horizontal and vertical central differences,

    gh = |R[y, x-1] - R[y, x+1]|
    gv = |R[y-1, x] - R[y+1, x]|
    sharpness = sqrt(gh^2 + gv^2)

evaluated at full resolution. Border pixels are zero.
"""

from __future__ import annotations

import cv2
import numpy as np

from scopestack.preprocess import as_frame


def compute_sharpness_map(frame: np.ndarray) -> np.ndarray:
    """Compute the (H, W) float32 sharpness map of an RGBA frame."""
    frame = as_frame(frame)
    h, w = frame.shape[:2]
    sharpness = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return sharpness

    red = frame[..., 0].astype(np.float64)
    gh = np.abs(red[1:-1, :-2] - red[1:-1, 2:])
    gv = np.abs(red[:-2, 1:-1] - red[2:, 1:-1])
    sharpness[1:-1, 1:-1] = np.sqrt(gh * gh + gv * gv)
    return sharpness


def sharpness_to_image(sharpness: np.ndarray) -> np.ndarray:
    """Normalize a sharpness map to uint8 [0, 255] for visualization."""
    if not np.any(sharpness):
        return np.zeros(sharpness.shape, dtype=np.uint8)
    return cv2.normalize(sharpness, None, 0, 255, cv2.NORM_MINMAX, dtype=cv2.CV_8U)
