"""
Capture Session - camera acquisition, preview and capture for one dialog.

States:
- IDLE: no dialog, no camera
- REQUESTING: waiting for the camera
- PREVIEWING: camera granted, live preview
- CAPTURED: a frame has been taken and encoded
- DENIED: camera unavailable; the native picker opens after a short delay

close() is valid from every state, always ends in IDLE and releases the
camera. Uploads dispatched by the session are never cancelled by it.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..core.asyncio_utils import cancel_task_safely, create_logged_task, drain_pending
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from ..core.settings import PipelineSettings
from .frame_convert import frame_to_jpeg
from .media import MediaHost, VideoTrack
from .models import CameraDevice, CameraSlot, ImageFile, now_ms
from .orchestrator import UploadOrchestrator
from .pickers import IMAGE_ACCEPT, FilePicker, open_photo_library

FALLBACK_NOTICE = "Camera access denied. Using file picker instead."
PICKER_FAILURE_MESSAGE = "Could not read the selected files"


class SessionState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    PREVIEWING = "previewing"
    CAPTURED = "captured"
    DENIED = "denied"


class Permission(Enum):
    PROMPT = "prompt"
    GRANTED = "granted"
    DENIED = "denied"


StateChangeCallback = Callable[[SessionState], None]
SleepFunc = Callable[[float], Awaitable[None]]


class CaptureSession:
    """State machine for the in-app camera dialog of one inspection slot."""

    def __init__(
        self,
        media_host: MediaHost,
        orchestrator: UploadOrchestrator,
        *,
        picker: Optional[FilePicker] = None,
        settings: Optional[PipelineSettings] = None,
        sleep: Optional[SleepFunc] = None,
        on_state_change: Optional[StateChangeCallback] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.media_host = media_host
        self.orchestrator = orchestrator
        self.picker = picker
        self.settings = settings or orchestrator.settings
        self._sleep = sleep or asyncio.sleep
        self._on_state_change = on_state_change
        self.logger = ensure_structured_logger(logger, component="CaptureSession", fallback_name="CaptureSession")

        self.state = SessionState.IDLE
        self.slot: Optional[CameraSlot] = None
        self.devices: list[CameraDevice] = []
        self.current_device_index = 0
        self.flash_on = False
        self.flash_supported = False
        self.permission = Permission.PROMPT
        self.last_error: Optional[str] = None
        self.captured_preview: Optional[ImageFile] = None

        self._track: Optional[VideoTrack] = None
        self._generation = 0
        self._fallback_task: Optional[asyncio.Task[Any]] = None
        self._fallback_opened = False
        self._pending: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Properties

    @property
    def active(self) -> bool:
        return self.state is not SessionState.IDLE

    @property
    def track(self) -> Optional[VideoTrack]:
        return self._track

    @property
    def fallback_task(self) -> Optional[asyncio.Task[Any]]:
        return self._fallback_task

    @property
    def pending_uploads(self) -> set[asyncio.Task[Any]]:
        return set(self._pending)

    @property
    def show_alignment_guide(self) -> bool:
        return self.slot is not None and self.slot.shows_alignment_guide

    # ------------------------------------------------------------------
    # Lifecycle

    async def __aenter__(self) -> "CaptureSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self, slot: CameraSlot | str) -> SessionState:
        if self.active:
            raise RuntimeError(f"Capture session already open ({self.state.value})")

        self.slot = CameraSlot.parse(slot)
        self.last_error = None
        self.captured_preview = None
        self.flash_on = False
        self._fallback_opened = False
        generation = self._generation
        self._set_state(SessionState.REQUESTING)
        self.logger.info("Opening camera for %s", self.slot.value)

        try:
            track = await self.media_host.get_user_media(facing_mode="environment")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation == self._generation:
                self._deny(exc)
            return self.state

        if generation != self._generation:
            # Closed while we were waiting for the camera.
            self._stop_track(track)
            return self.state

        self._track = track
        await self._load_devices(track)
        if generation != self._generation:
            return self.state

        self.permission = Permission.GRANTED
        self._set_state(SessionState.PREVIEWING)
        return self.state

    async def close(self) -> None:
        """Release everything and return to IDLE. Never raises."""
        self._generation += 1
        fallback = self._fallback_task
        if fallback is not None and not self._fallback_opened and fallback is not asyncio.current_task():
            await cancel_task_safely(fallback, "fallback picker", logger=self.logger)
        self._fallback_task = None

        track, self._track = self._track, None
        if track is not None:
            self._stop_track(track)

        self.captured_preview = None
        if self.state is not SessionState.IDLE:
            self.logger.info("Capture session closed")
        self._set_state(SessionState.IDLE)

    async def wait_for_uploads(self) -> None:
        await drain_pending(self._pending)

    # ------------------------------------------------------------------
    # Preview controls

    async def capture(self) -> ImageFile:
        if self.state is not SessionState.PREVIEWING or self._track is None:
            raise RuntimeError(f"Cannot capture while {self.state.value}")

        frame = await self._track.read_frame()
        data = await asyncio.to_thread(frame_to_jpeg, frame, self.settings.capture_quality)
        file = ImageFile(
            name=f"camera-capture-{now_ms()}.jpg",
            data=data,
            mime_type="image/jpeg",
        )
        self.captured_preview = file
        self._set_state(SessionState.CAPTURED)
        self.logger.info("Captured %s (%d bytes)", file.name, file.size)

        if not self.settings.capture_review:
            self._dispatch(file)
        return file

    def accept(self) -> asyncio.Task[Any]:
        if self.state is not SessionState.CAPTURED or self.captured_preview is None:
            raise RuntimeError(f"Nothing to accept while {self.state.value}")
        file, self.captured_preview = self.captured_preview, None
        task = self._dispatch(file)
        self._set_state(SessionState.PREVIEWING)
        return task

    def retake(self) -> None:
        if self.state is not SessionState.CAPTURED:
            raise RuntimeError(f"Nothing to retake while {self.state.value}")
        discarded, self.captured_preview = self.captured_preview, None
        if discarded is not None:
            self.logger.debug("Discarded %s", discarded.name)
        self._set_state(SessionState.PREVIEWING)

    async def switch_camera(self) -> SessionState:
        if self.state is not SessionState.PREVIEWING:
            raise RuntimeError(f"Cannot switch camera while {self.state.value}")
        if not self.devices:
            return self.state

        self.current_device_index = (self.current_device_index + 1) % len(self.devices)
        device = self.devices[self.current_device_index]
        generation = self._generation

        old, self._track = self._track, None
        if old is not None:
            self._stop_track(old)

        self.logger.info("Switching to camera %s", device.label or device.device_id)
        try:
            track = await self.media_host.get_user_media(device.device_id, facing_mode="environment")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation == self._generation:
                self._deny(exc)
            return self.state

        if generation != self._generation:
            self._stop_track(track)
            return self.state

        self._track = track
        self.flash_supported = self._torch_supported(track)
        if self.flash_on:
            await self._apply_torch()
        return self.state

    async def toggle_flash(self) -> bool:
        self.flash_on = not self.flash_on
        await self._apply_torch()
        return self.flash_on

    async def open_photo_library(self) -> list[bool]:
        """Pick from storage instead of the camera, then close the dialog."""
        if self.picker is None or self.slot is None:
            raise RuntimeError("No photo library available")
        slot = self.slot
        try:
            return await open_photo_library(self.picker, self.orchestrator, slot)
        finally:
            await self.close()

    # ------------------------------------------------------------------
    # Internals

    def _deny(self, exc: BaseException) -> None:
        self.logger.warning("Camera access failed, falling back to file picker: %s", exc)
        self.permission = Permission.DENIED
        self.last_error = FALLBACK_NOTICE
        self._set_state(SessionState.DENIED)
        if self.picker is None:
            self.logger.warning("No file picker configured; nothing to fall back to")
            return
        self._fallback_task = create_logged_task(
            self._run_fallback(self._generation),
            logger=self.logger,
            context="fallback picker",
        )

    async def _run_fallback(self, generation: int) -> None:
        await self._sleep(self.settings.fallback_picker_delay)
        if generation != self._generation or self.slot is None:
            return
        self._fallback_opened = True
        slot = self.slot
        try:
            try:
                files = await self.picker.pick(accept=IMAGE_ACCEPT, capture="environment", multiple=True)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.orchestrator.report_error(PICKER_FAILURE_MESSAGE, error=exc)
                return
            self.logger.info("Fallback picker returned %d file(s)", len(files))
            await self.orchestrator.handle_many(files, slot)
        finally:
            if generation == self._generation:
                await self.close()

    async def _load_devices(self, track: VideoTrack) -> None:
        try:
            devices = await self.media_host.enumerate_devices()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Device enumeration failed: %s", exc)
            devices = []
        self.devices = [device for device in devices if device.kind == "videoinput"]
        self.current_device_index = next(
            (index for index, device in enumerate(self.devices) if device.device_id == track.device_id),
            0,
        )
        self.flash_supported = self._torch_supported(track)

    def _torch_supported(self, track: VideoTrack) -> bool:
        try:
            return bool(track.supports_torch())
        except Exception as exc:
            self.logger.debug("Torch capability check failed: %s", exc)
            return False

    async def _apply_torch(self) -> None:
        track = self._track
        if track is None or not self.flash_supported:
            return
        try:
            await track.set_torch(self.flash_on)
        except Exception as exc:
            self.logger.debug("Torch not applied: %s", exc)

    def _dispatch(self, file: ImageFile) -> asyncio.Task[Any]:
        slot = self.slot
        return create_logged_task(
            self.orchestrator.handle(file, slot),
            logger=self.logger,
            context=f"upload {file.name} ({slot.value})",
            pending=self._pending,
        )

    def _stop_track(self, track: VideoTrack) -> None:
        try:
            track.stop()
        except Exception as exc:
            self.logger.warning("Error stopping camera %s: %s", getattr(track, "device_id", "?"), exc)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        self.logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                self.logger.error("State change callback error: %s", e)


__all__ = ["CaptureSession", "FALLBACK_NOTICE", "PICKER_FAILURE_MESSAGE", "Permission", "SessionState"]
