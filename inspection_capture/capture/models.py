"""Value types shared by the capture pipeline."""

from __future__ import annotations

import asyncio
import mimetypes
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import aiofiles

# mimetypes has no entry for Apple's containers on most platforms.
_EXTRA_MIME_TYPES = {
    ".heic": "image/heic",
    ".heif": "image/heif",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def guess_mime_type(name: str) -> str:
    suffix = Path(name).suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or ""


@dataclass(frozen=True, slots=True)
class ImageFile:
    """An in-memory file with the metadata the pipeline relies on."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = ""
    last_modified: int = field(default_factory=now_ms)  # epoch milliseconds

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        return Path(self.name).stem

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix

    @classmethod
    async def from_path(cls, path: Path | str, mime_type: Optional[str] = None) -> "ImageFile":
        path = Path(path)
        async with aiofiles.open(path, "rb") as fh:
            data = await fh.read()
        stat = await asyncio.to_thread(path.stat)
        return cls(
            name=path.name,
            data=data,
            mime_type=mime_type if mime_type is not None else guess_mime_type(path.name),
            last_modified=int(stat.st_mtime * 1000),
        )


class CameraSlot(Enum):
    """Physical inspection positions a photo can be attached to."""

    PASSENGER_FRONT = "passenger_front"
    DRIVER_FRONT = "driver_front"
    DRIVER_REAR = "driver_rear"
    PASSENGER_REAR = "passenger_rear"
    SPARE = "spare"
    UNDERCARRIAGE = "undercarriage_photos"
    FRONT_BRAKES = "front_brakes"
    REAR_BRAKES = "rear_brakes"
    TPMS_PLACARD = "tpms_placard"
    WASHER_FLUID = "washer_fluid"
    ENGINE_AIR_FILTER = "engine_air_filter"
    BATTERY = "battery"
    TPMS_TOOL = "tpms_tool"
    DASH_LIGHTS = "dashLights"

    @property
    def shows_alignment_guide(self) -> bool:
        return self in _GUIDED_SLOTS

    @classmethod
    def parse(cls, value: "CameraSlot | str") -> "CameraSlot":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown camera slot: {value!r}") from None


_GUIDED_SLOTS = frozenset({
    CameraSlot.TPMS_PLACARD,
    CameraSlot.UNDERCARRIAGE,
    CameraSlot.PASSENGER_FRONT,
    CameraSlot.DRIVER_FRONT,
    CameraSlot.DRIVER_REAR,
    CameraSlot.PASSENGER_REAR,
    CameraSlot.SPARE,
    CameraSlot.FRONT_BRAKES,
    CameraSlot.REAR_BRAKES,
})


@dataclass(frozen=True, slots=True)
class CameraDevice:
    device_id: str
    label: str = ""
    kind: str = "videoinput"


class BrowserFamily(Enum):
    SAFARI_IOS = "Safari iOS"
    SAFARI_DESKTOP = "Safari Desktop"
    CHROME = "Chrome"
    FIREFOX = "Firefox"
    UNKNOWN = "Unknown"

    @property
    def is_safari(self) -> bool:
        return self in (BrowserFamily.SAFARI_IOS, BrowserFamily.SAFARI_DESKTOP)


@dataclass(frozen=True, slots=True)
class CapabilityReport:
    file_input_supported: bool = False
    camera_supported: bool = False
    heic_supported: bool = False
    file_api_supported: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "fileInputSupported": self.file_input_supported,
            "cameraSupported": self.camera_supported,
            "heicSupported": self.heic_supported,
            "fileAPISupported": self.file_api_supported,
        }


@dataclass(frozen=True, slots=True)
class FileDetails:
    name: str
    size: int
    mime_type: str
    last_modified: int

    @classmethod
    def of(cls, file: ImageFile) -> "FileDetails":
        return cls(file.name, file.size, file.mime_type, file.last_modified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "type": self.mime_type,
            "lastModified": self.last_modified,
        }


@dataclass(frozen=True, slots=True)
class DebugLogEntry:
    """One immutable telemetry record."""

    timestamp: str
    user_agent: str
    browser: BrowserFamily
    capabilities: CapabilityReport
    file_details: Optional[FileDetails] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "userAgent": self.user_agent,
            "browser": self.browser.value,
            **self.capabilities.to_dict(),
            "fileDetails": self.file_details.to_dict() if self.file_details else None,
            "uploadError": self.error,
        }


@dataclass(slots=True)
class ImageUpload:
    """A photo as tracked by its gallery while it moves through the pipeline.

    ``error`` and ``remote_url`` are mutually exclusive; use the ``mark_*``
    helpers rather than assigning them directly.
    """

    source_file: ImageFile
    progress: int = 0
    remote_url: Optional[str] = None
    error: Optional[str] = None
    position: Optional[int] = None
    is_deleted: bool = False

    def set_progress(self, value: int) -> None:
        self.progress = max(0, min(100, int(value)))

    def mark_uploaded(self, remote_url: Optional[str]) -> None:
        self.error = None
        self.remote_url = remote_url
        self.progress = 100

    def mark_failed(self, message: str) -> None:
        self.remote_url = None
        self.error = message


__all__ = [
    "BrowserFamily",
    "CameraDevice",
    "CameraSlot",
    "CapabilityReport",
    "DebugLogEntry",
    "FileDetails",
    "ImageFile",
    "ImageUpload",
    "guess_mime_type",
    "now_ms",
]
