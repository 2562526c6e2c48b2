"""Camera access: the host/track protocols and an OpenCV implementation."""

from __future__ import annotations

import asyncio
import glob
from pathlib import Path
from typing import Any, Optional, Protocol

import cv2
import numpy as np

from ..core.errors import CameraPermissionError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import CameraDevice


class VideoTrack(Protocol):
    device_id: str

    async def read_frame(self) -> np.ndarray: ...

    def supports_torch(self) -> bool: ...

    async def set_torch(self, enabled: bool) -> None: ...

    def stop(self) -> None: ...


class MediaHost(Protocol):
    def supports_user_media(self) -> bool: ...

    async def get_user_media(
        self, device_id: Optional[str] = None, *, facing_mode: str = "environment"
    ) -> VideoTrack: ...

    async def enumerate_devices(self) -> list[CameraDevice]: ...


class OpenCVVideoTrack:
    """A single opened ``cv2.VideoCapture``. ``stop()`` releases it once."""

    def __init__(self, cap: Any, device_id: str, *, logger: LoggerLike = None) -> None:
        self._cap = cap
        self.device_id = device_id
        self.logger = ensure_structured_logger(logger, component="VideoTrack", fallback_name="VideoTrack")

    @property
    def stopped(self) -> bool:
        return self._cap is None

    @property
    def resolution(self) -> tuple[int, int]:
        if self._cap is None:
            return (0, 0)
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )

    async def read_frame(self) -> np.ndarray:
        cap = self._cap
        if cap is None:
            raise RuntimeError(f"Camera {self.device_id} is stopped")
        ok, frame = await asyncio.to_thread(cap.read)
        if not ok or frame is None:
            raise RuntimeError(f"Camera {self.device_id} returned no frame")
        return frame

    def supports_torch(self) -> bool:
        # OpenCV exposes no portable torch/flash control.
        return False

    async def set_torch(self, enabled: bool) -> None:
        raise NotImplementedError("Torch control is not supported by OpenCV cameras")

    def stop(self) -> None:
        cap, self._cap = self._cap, None
        if cap is None:
            return
        cap.release()
        self.logger.info("Camera %s released", self.device_id)


class OpenCVMediaHost:
    """Opens local cameras through OpenCV, enumerating ``/dev/video*`` nodes."""

    def __init__(
        self,
        *,
        default_device: Optional[str] = None,
        resolution: Optional[tuple[int, int]] = None,
        max_devices: int = 8,
        logger: LoggerLike = None,
    ) -> None:
        self.default_device = default_device
        self.resolution = resolution
        self.max_devices = max_devices
        self.logger = ensure_structured_logger(logger, component="MediaHost", fallback_name="MediaHost")

    def supports_user_media(self) -> bool:
        return hasattr(cv2, "VideoCapture")

    async def enumerate_devices(self) -> list[CameraDevice]:
        devices = await asyncio.to_thread(self._list_devices)
        self.logger.debug("Found %d video devices", len(devices))
        return devices

    async def get_user_media(
        self, device_id: Optional[str] = None, *, facing_mode: str = "environment"
    ) -> OpenCVVideoTrack:
        if device_id is None:
            device_id = self.default_device
        if device_id is None:
            devices = await self.enumerate_devices()
            if not devices:
                raise CameraPermissionError("No camera found")
            device_id = devices[0].device_id
        self.logger.debug("Opening camera %s (facing=%s)", device_id, facing_mode)
        cap = await asyncio.to_thread(self._open, device_id)
        if cap is None:
            raise CameraPermissionError(f"Unable to open camera {device_id}")
        return OpenCVVideoTrack(cap, device_id, logger=self.logger.getChild("Track"))

    def _open(self, device_id: str) -> Optional[Any]:
        source: int | str = int(device_id) if device_id.isdigit() else device_id
        cap = cv2.VideoCapture(source)
        if not cap or not cap.isOpened():
            if cap is not None:
                cap.release()
            self.logger.error("Failed to open camera: %s", device_id)
            return None
        if self.resolution:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        return cap

    def _list_devices(self) -> list[CameraDevice]:
        devices = []
        for path in sorted(glob.glob("/dev/video*"))[: self.max_devices]:
            index = Path(path).name.replace("video", "")
            if not index.isdigit():
                continue
            devices.append(CameraDevice(device_id=path, label=_read_sysfs_name(index) or Path(path).name))
        if devices:
            return devices
        # No device nodes (non-Linux hosts): probe the first indices directly.
        for index in range(2):
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(CameraDevice(device_id=str(index), label=f"Camera {index}"))
            finally:
                cap.release()
        return devices


def _read_sysfs_name(index: str) -> Optional[str]:
    sys_name = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        text = sys_name.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


__all__ = ["MediaHost", "OpenCVMediaHost", "OpenCVVideoTrack", "VideoTrack"]
