"""Tunable parameters for tracking and stacking.

Every pipeline call receives its configuration explicitly; `DEFAULT_SETTINGS`
is an immutable snapshot, never a process-wide knob. A YAML file can override
any subset of fields:

    settings:
      alignment_downsample: 96
      search_window: 30
    tracking:
      min_confidence: 0.7
    stacking:
      sensitivity: 8
      debug: true
"""

from __future__ import annotations

import dataclasses
import logging
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from scopestack.errors import InvalidConfigError

logger = logging.getLogger(__name__)


def _require_positive(owner: object, names: tuple[str, ...]) -> None:
    for name in names:
        value = getattr(owner, name)
        if isinstance(value, bool) or not isinstance(value, numbers.Real) or value <= 0:
            raise InvalidConfigError(f"{type(owner).__name__}.{name} must be positive, got {value!r}")


def _require_integral(owner: object, names: tuple[str, ...]) -> None:
    """Coerce whole-number values (e.g. 40.0 from YAML) to int; reject fractions."""
    for name in names:
        value = getattr(owner, name)
        if isinstance(value, bool) or not float(value).is_integer():
            raise InvalidConfigError(f"{type(owner).__name__}.{name} must be an integer, got {value!r}")
        object.__setattr__(owner, name, int(value))


@dataclass(frozen=True)
class Settings:
    """Numeric knobs shared by alignment, fingerprinting and stacking."""

    alignment_downsample: int = 128  # width (px) frames are reduced to before alignment
    search_window: int = 40  # max integer shift (downsampled px) tried per axis
    sharpness_threshold: float = 20.0
    crop_ratio: float = 0.6  # centered fraction of width/height kept before resizing
    drift_deadband: float = 0.8  # motion below this magnitude (original px) is noise
    fingerprint_size: int = 16

    def __post_init__(self) -> None:
        _require_positive(
            self,
            (
                "alignment_downsample",
                "search_window",
                "sharpness_threshold",
                "crop_ratio",
                "drift_deadband",
                "fingerprint_size",
            ),
        )
        _require_integral(self, ("alignment_downsample", "search_window", "fingerprint_size"))
        if self.crop_ratio > 1:
            raise InvalidConfigError(f"Settings.crop_ratio must be <= 1, got {self.crop_ratio!r}")

    def replace(self, **changes: Any) -> "Settings":
        """Return a validated copy with `changes` applied."""
        return dataclasses.replace(self, **changes)


DEFAULT_SETTINGS = Settings()


@dataclass(frozen=True)
class TrackingPolicy:
    """Acceptance rule for the continuous drift-tracking loop."""

    min_confidence: float = 0.6

    def __post_init__(self) -> None:
        if not 0 <= self.min_confidence <= 1:
            raise InvalidConfigError(f"TrackingPolicy.min_confidence must be in [0, 1], got {self.min_confidence!r}")


@dataclass(frozen=True)
class StackingPolicy:
    """Parameters of a manual focus-stacking session.

    `threshold` falls back to `Settings.sharpness_threshold` when left as None.
    Alignments at or below `min_confidence`, or with an offset component larger
    than `max_offset`, are replaced by a zero offset.
    """

    sensitivity: float = 5.0
    threshold: Optional[float] = None
    debug: bool = False
    min_confidence: float = 0.5
    max_offset: float = 100.0

    def __post_init__(self) -> None:
        if self.sensitivity < 0:
            raise InvalidConfigError(f"StackingPolicy.sensitivity must be >= 0, got {self.sensitivity!r}")
        if self.threshold is not None:
            _require_positive(self, ("threshold",))
        _require_positive(self, ("max_offset",))
        if not 0 <= self.min_confidence <= 1:
            raise InvalidConfigError(f"StackingPolicy.min_confidence must be in [0, 1], got {self.min_confidence!r}")

    def resolve_threshold(self, settings: Settings) -> float:
        return float(self.threshold if self.threshold is not None else settings.sharpness_threshold)


@dataclass(frozen=True)
class Config:
    """All configuration records loaded from one file."""

    settings: Settings = DEFAULT_SETTINGS
    tracking: TrackingPolicy = TrackingPolicy()
    stacking: StackingPolicy = StackingPolicy()


_SECTIONS = {
    "settings": Settings,
    "tracking": TrackingPolicy,
    "stacking": StackingPolicy,
}


def _build_section(name: str, values: Any) -> Any:
    cls = _SECTIONS[name]
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise InvalidConfigError(f"Section '{name}' must be a mapping, got {type(values).__name__}")

    known = {f.name for f in dataclasses.fields(cls)}
    for key in values:
        if key not in known:
            raise InvalidConfigError(f"Unknown key '{name}.{key}'")
    try:
        return cls(**values)
    except TypeError as exc:
        raise InvalidConfigError(f"Invalid values in section '{name}': {exc}") from exc


def config_from_dict(data: Optional[dict]) -> Config:
    """Build a `Config` from a parsed mapping (missing sections use defaults)."""
    if not data:
        return Config()
    if not isinstance(data, dict):
        raise InvalidConfigError(f"Config root must be a mapping, got {type(data).__name__}")

    for key in data:
        if key not in _SECTIONS:
            raise InvalidConfigError(f"Unknown config section '{key}'")

    return Config(**{name: _build_section(name, data.get(name)) for name in _SECTIONS})


def load_config(path: Union[str, Path]) -> Config:
    """Load a YAML config file.

    Args:
        path: Path to a YAML file with optional `settings`, `tracking` and
            `stacking` sections.

    Returns:
        A validated `Config`.

    Raises:
        FileNotFoundError: If `path` does not exist.
        InvalidConfigError: If the YAML is malformed or holds invalid values.
    """
    with open(path, "r") as stream:
        try:
            data = yaml.safe_load(stream)
        except yaml.YAMLError as exc:
            logger.error("Failed to parse config %s: %s", path, exc)
            raise InvalidConfigError(f"Malformed YAML in {path}") from exc

    config = config_from_dict(data)
    logger.debug("Loaded config from %s: %s", path, config)
    return config
