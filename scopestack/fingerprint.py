"""Tiny grayscale fingerprints for cheap frame-similarity checks."""

from __future__ import annotations

import numpy as np

from scopestack.errors import InvalidInputError
from scopestack.preprocess import crop_and_resize, to_grayscale
from scopestack.settings import DEFAULT_SETTINGS, Settings


def compute_fingerprint(frame: np.ndarray, settings: Settings = DEFAULT_SETTINGS) -> np.ndarray:
    """Return a (size, size) uint8 thumbnail of the frame's centered crop."""
    size = settings.fingerprint_size
    small = crop_and_resize(frame, size, settings.crop_ratio, target_height=size)
    return to_grayscale(small)


def fingerprint_similarity(fp1: np.ndarray, fp2: np.ndarray) -> float:
    """Similarity in [0, 1]: one minus the mean absolute difference over 255.

    Raises:
        InvalidInputError: If the fingerprints differ in shape or are empty.
    """
    if fp1.shape != fp2.shape:
        raise InvalidInputError(f"Fingerprint shapes differ: {fp1.shape} vs {fp2.shape}")
    if fp1.size == 0:
        raise InvalidInputError("Cannot compare empty fingerprints")

    diff = np.abs(fp1.astype(np.int32) - fp2.astype(np.int32))
    return float(1.0 - diff.sum() / (fp1.size * 255.0))


def is_stable(fp1: np.ndarray, fp2: np.ndarray, min_similarity: float = 0.95) -> bool:
    """True when two fingerprints are similar enough to call the view steady."""
    return fingerprint_similarity(fp1, fp2) >= min_similarity
