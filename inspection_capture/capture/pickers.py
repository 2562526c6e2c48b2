"""File picker protocol and the picker-based entry points into the pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, Sequence

from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import CameraSlot, ImageFile

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .orchestrator import UploadOrchestrator

IMAGE_ACCEPT = "image/*"


class FilePicker(Protocol):
    async def pick(
        self,
        *,
        accept: str = IMAGE_ACCEPT,
        capture: Optional[str] = None,
        multiple: bool = False,
    ) -> list[ImageFile]: ...


class PathFilePicker:
    """Picker backed by a fixed list of paths, e.g. from the command line.

    Every ``pick`` re-reads the files so callers always get current bytes.
    """

    def __init__(self, paths: Iterable[Path | str], *, logger: LoggerLike = None) -> None:
        self.paths = [Path(path) for path in paths]
        self.logger = ensure_structured_logger(logger, component="FilePicker", fallback_name="FilePicker")
        self.requests: list[dict[str, object]] = []

    async def pick(
        self,
        *,
        accept: str = IMAGE_ACCEPT,
        capture: Optional[str] = None,
        multiple: bool = False,
    ) -> list[ImageFile]:
        self.requests.append({"accept": accept, "capture": capture, "multiple": multiple})
        selected = self.paths if multiple else self.paths[:1]
        files = []
        for path in selected:
            files.append(await ImageFile.from_path(path))
        self.logger.debug("Picked %d file(s) (accept=%s, capture=%s)", len(files), accept, capture)
        return files


async def route_files(
    orchestrator: "UploadOrchestrator",
    files: Sequence[ImageFile],
    slot: CameraSlot | str,
) -> list[bool]:
    return await orchestrator.handle_many(files, slot)


async def choose_files(
    picker: FilePicker,
    orchestrator: "UploadOrchestrator",
    slot: CameraSlot | str,
) -> list[bool]:
    """Multi-select from storage without the camera."""
    files = await picker.pick(accept=IMAGE_ACCEPT, multiple=True)
    return await route_files(orchestrator, files, slot)


async def open_tire_camera(
    picker: FilePicker,
    orchestrator: "UploadOrchestrator",
    slot: CameraSlot | str,
) -> list[bool]:
    """Hand tire shots to the native camera, bypassing the in-app preview."""
    files = await picker.pick(accept=IMAGE_ACCEPT, capture="environment", multiple=True)
    return await route_files(orchestrator, files, slot)


async def open_photo_library(
    picker: FilePicker,
    orchestrator: "UploadOrchestrator",
    slot: CameraSlot | str,
) -> list[bool]:
    files = await picker.pick(accept=IMAGE_ACCEPT, multiple=True)
    return await route_files(orchestrator, files, slot)


__all__ = [
    "FilePicker",
    "IMAGE_ACCEPT",
    "PathFilePicker",
    "choose_files",
    "open_photo_library",
    "open_tire_camera",
    "route_files",
]
