"""Unit test fixtures for isolated, fast test execution.

This conftest provides:
- Image factories (JPEG/PNG bytes synthesized with Pillow)
- Fake collaborators: camera host and track, file picker, upload sink
- A recording sleep so retry/backoff tests never wait
- Pre-wired pipeline builders (probe, telemetry, orchestrator)
"""

from __future__ import annotations

from io import BytesIO
from typing import Callable, Optional

import numpy as np
import pytest
from PIL import Image

from inspection_capture.capture.capability import CapabilityProbe
from inspection_capture.capture.models import CameraDevice, CameraSlot, ImageFile
from inspection_capture.capture.orchestrator import UploadOrchestrator
from inspection_capture.capture.telemetry import TelemetryLog
from inspection_capture.core.errors import CameraPermissionError
from inspection_capture.core.settings import PipelineSettings

SAFARI_IOS_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


# =============================================================================
# Image Factories
# =============================================================================

def encode_image(size: tuple[int, int], fmt: str = "JPEG", color=(200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image_file() -> Callable[..., ImageFile]:
    """Factory for in-memory image files.

    Example:
        file = make_image_file((640, 480), name="dash.png", fmt="PNG")
    """

    def _make(
        size: tuple[int, int] = (640, 480),
        *,
        name: str = "photo.jpg",
        fmt: str = "JPEG",
        mime_type: Optional[str] = None,
        last_modified: int = 1_700_000_000_000,
    ) -> ImageFile:
        if mime_type is None:
            mime_type = "image/png" if fmt == "PNG" else "image/jpeg"
        return ImageFile(
            name=name,
            data=encode_image(size, fmt),
            mime_type=mime_type,
            last_modified=last_modified,
        )

    return _make


# =============================================================================
# Fake Collaborators
# =============================================================================

class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingSink:
    """Upload sink that remembers what it received."""

    def __init__(self, *, fail_with: Optional[Exception] = None) -> None:
        self.calls: list[tuple[ImageFile, CameraSlot]] = []
        self.fail_with = fail_with

    async def __call__(self, file: ImageFile, slot: CameraSlot) -> Optional[str]:
        self.calls.append((file, slot))
        if self.fail_with is not None:
            raise self.fail_with
        return f"https://uploads.example/{slot.value}/{file.name}"


class FakeTrack:
    def __init__(self, device_id: str = "cam-0", *, torch: bool = False) -> None:
        self.device_id = device_id
        self.stop_calls = 0
        self.torch = torch
        self.torch_state: Optional[bool] = None
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)

    async def read_frame(self) -> np.ndarray:
        return self.frame

    def supports_torch(self) -> bool:
        return self.torch

    async def set_torch(self, enabled: bool) -> None:
        self.torch_state = enabled

    def stop(self) -> None:
        self.stop_calls += 1


class FakeMediaHost:
    """Camera host whose behavior each test scripts.

    ``deny`` makes every acquisition fail; ``gate`` (an asyncio.Event) holds
    acquisition until the test sets it.
    """

    def __init__(self, devices: Optional[list[CameraDevice]] = None, *, deny: bool = False) -> None:
        self.devices = devices if devices is not None else [CameraDevice("cam-0", "Back Camera")]
        self.deny = deny
        self.gate = None
        self.tracks: list[FakeTrack] = []
        self.requested: list[Optional[str]] = []

    def supports_user_media(self) -> bool:
        return True

    async def get_user_media(self, device_id: Optional[str] = None, *, facing_mode: str = "environment") -> FakeTrack:
        self.requested.append(device_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.deny:
            raise CameraPermissionError("Permission denied")
        track = FakeTrack(device_id or self.devices[0].device_id)
        self.tracks.append(track)
        return track

    async def enumerate_devices(self) -> list[CameraDevice]:
        return list(self.devices)


class FakePicker:
    def __init__(self, files: list[ImageFile]) -> None:
        self.files = files
        self.requests: list[dict] = []

    async def pick(self, *, accept: str = "image/*", capture: Optional[str] = None, multiple: bool = False):
        self.requests.append({"accept": accept, "capture": capture, "multiple": multiple})
        return list(self.files) if multiple else list(self.files[:1])


# =============================================================================
# Pipeline Fixtures
# =============================================================================

@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def chrome_probe() -> CapabilityProbe:
    return CapabilityProbe(CHROME_UA)


@pytest.fixture
def safari_probe() -> CapabilityProbe:
    return CapabilityProbe(SAFARI_IOS_UA)


@pytest.fixture
def telemetry(chrome_probe) -> TelemetryLog:
    return TelemetryLog(chrome_probe, clock=lambda: "2024-01-01T00:00:00.000Z")


@pytest.fixture
def errors() -> list[str]:
    return []


@pytest.fixture
def orchestrator(sink, telemetry, settings, errors) -> UploadOrchestrator:
    return UploadOrchestrator(sink, telemetry=telemetry, settings=settings, on_error=errors.append)
