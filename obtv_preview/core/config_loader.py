"""Typed preview configuration and its ``key = value`` file loader."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .device_profile import DeviceProfile
from .logging_utils import get_module_logger

logger = get_module_logger("ConfigLoader")


@dataclass(frozen=True)
class PreviewConfig:
    """Budget and timing for the preview core.

    All durations are in seconds.
    """

    max_concurrent: int = 2
    snapshot_interval: float = 30.0
    initial_snapshot_delay: float = 1.0
    capture_timeout: float = 10.0
    inter_item_delay: float = 0.5
    snapshot_max_width: int = 320
    jpeg_quality: int = 80
    device_is_constrained: bool = False

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1 (got {self.max_concurrent})")
        if self.snapshot_interval <= 0:
            raise ValueError("snapshot_interval must be positive")
        if self.capture_timeout <= 0:
            raise ValueError("capture_timeout must be positive")
        if self.initial_snapshot_delay < 0 or self.inter_item_delay < 0:
            raise ValueError("delays must not be negative")
        if self.snapshot_max_width < 1:
            raise ValueError("snapshot_max_width must be positive")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be between 1 and 100")

    @classmethod
    def from_profile(cls, profile: DeviceProfile, **overrides: Any) -> "PreviewConfig":
        values: Dict[str, Any] = {
            "max_concurrent": profile.max_concurrent,
            "snapshot_interval": profile.snapshot_interval,
            "device_is_constrained": profile.device_is_constrained,
        }
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, overrides: Dict[str, Any]) -> "PreviewConfig":
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_FIELD_TYPES = {f.name: f.type for f in fields(PreviewConfig)}
_TRUE_VALUES = ("true", "yes", "on", "1")


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key = value`` lines, skipping blanks, comments and junk."""
    config: Dict[str, str] = {}

    for line_num, raw_line in enumerate(lines, 1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            logger.warning("Invalid config line %d (missing '='): %s", line_num, line)
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        value = value.strip()

        if '#' in value:
            value = value.split('#', 1)[0].strip()

        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        config[key] = value

    return config


def _coerce(key: str, value: str) -> Any:
    target = _FIELD_TYPES[key]
    if target in (bool, "bool"):
        return value.lower() in _TRUE_VALUES
    if target in (int, "int"):
        return int(value, 0)
    if target in (float, "float"):
        return float(value)
    return value


def coerce_overrides(raw: Dict[str, str], *, strict: bool = True) -> Dict[str, Any]:
    """Convert raw string values to the types declared on PreviewConfig."""
    overrides: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in _FIELD_TYPES:
            if strict:
                logger.warning("Unknown config key '%s' - ignored", key)
            continue
        try:
            overrides[key] = _coerce(key, value)
        except ValueError:
            logger.warning("Failed to parse '%s' for %s, using default", value, key)
    return overrides


def load_preview_config(
    config_path: Optional[Path],
    profile: DeviceProfile,
    *,
    strict: bool = True,
) -> PreviewConfig:
    """Build a PreviewConfig from ``profile`` plus optional file overrides."""
    base = PreviewConfig.from_profile(profile)
    if config_path is None:
        return base

    if not config_path.exists():
        logger.debug("Config file not found at %s, using device defaults", config_path)
        return base

    try:
        with open(config_path, 'r', encoding='utf-8') as fh:
            raw = parse_config_lines(fh)
    except OSError as exc:
        logger.error("Failed to read config %s: %s", config_path, exc)
        return base

    overrides = coerce_overrides(raw, strict=strict)
    config = base.with_overrides(overrides)
    logger.info("Loaded config from %s (%d overrides)", config_path, len(overrides))
    return config


__all__ = [
    "PreviewConfig",
    "coerce_overrides",
    "load_preview_config",
    "parse_config_lines",
]
