"""Error types raised by the stacking pipeline."""

from __future__ import annotations


class ScopeStackError(Exception):
    """Base class for all pipeline errors."""


class InvalidInputError(ScopeStackError, ValueError):
    """A buffer violates a precondition (shape, dtype, matching dimensions)."""


class InvalidConfigError(ScopeStackError, ValueError):
    """A configuration value or file is invalid."""


class SurfaceError(ScopeStackError, RuntimeError):
    """OpenCV could not produce a resampled image surface."""


class SourceError(ScopeStackError, RuntimeError):
    """A capture source (video file, camera, folder) cannot be read."""
