"""Typed settings for the capture pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from .config_loader import ConfigLoader

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config.txt"


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Limits, timings and encoder settings used across the pipeline.

    The defaults mirror what field devices have been tuned against; the
    config file and CLI flags only ever override individual keys.
    """

    # Validation
    max_file_size_bytes: int = 25 * 1024 * 1024
    min_image_dimension: int = 200

    # HEIC conversion
    heic_quality: float = 0.8

    # Resolution normalizer
    normalize_quality: float = 0.8
    max_width: int = 1920
    max_height: int = 1080
    normalize_timeout: float = 15.0
    normalize_attempts: int = 3
    backoff_base: float = 1.0
    resize_uploads: bool = False

    # Capture session
    capture_quality: float = 0.9
    capture_review: bool = False
    fallback_picker_delay: float = 1.0

    # Diagnostics
    banner_duration: float = 15.0
    log_level: str = "info"

    @classmethod
    def defaults(cls) -> dict[str, Any]:
        return asdict(cls())

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PipelineSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in values.items() if key in known})

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "PipelineSettings":
        path = config_path or DEFAULT_CONFIG_PATH
        return cls.from_mapping(ConfigLoader.load(path, cls.defaults(), strict=True))

    def with_overrides(self, **overrides: Any) -> "PipelineSettings":
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = ["DEFAULT_CONFIG_PATH", "PipelineSettings"]
