"""Per-slot photo collections and slideshow navigation."""

from __future__ import annotations

from typing import Callable, Optional

from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import CameraSlot, ImageFile, ImageUpload

DeleteNotifier = Callable[[CameraSlot, int], None]
ClickNotifier = Callable[[list[ImageUpload], Optional[CameraSlot]], None]


class PhotoGallery:
    """Visible uploads for each slot, in capture order."""

    def __init__(self, *, logger: LoggerLike = None) -> None:
        self.logger = ensure_structured_logger(logger, component="Gallery", fallback_name="Gallery")
        self._photos: dict[CameraSlot, list[ImageUpload]] = {}

    def photos(self, slot: CameraSlot) -> list[ImageUpload]:
        return list(self._photos.get(slot, ()))

    def slots(self) -> list[CameraSlot]:
        return [slot for slot, photos in self._photos.items() if photos]

    def add(self, slot: CameraSlot, file: ImageFile) -> ImageUpload:
        photos = self._photos.setdefault(slot, [])
        upload = ImageUpload(source_file=file, position=len(photos))
        photos.append(upload)
        self.logger.debug("Added %s to %s at position %d", file.name, slot.value, upload.position)
        return upload

    def replace_file(self, upload: ImageUpload, file: ImageFile) -> None:
        upload.source_file = file

    def delete(self, slot: CameraSlot, index: int) -> ImageUpload:
        photos = self._photos.get(slot, [])
        if not 0 <= index < len(photos):
            raise IndexError(f"No photo at index {index} for {slot.value}")
        upload = photos.pop(index)
        upload.is_deleted = True
        upload.position = None
        self._renumber(photos)
        self.logger.info("Deleted photo %d from %s", index, slot.value)
        return upload

    @staticmethod
    def _renumber(photos: list[ImageUpload]) -> None:
        for position, upload in enumerate(photos):
            upload.position = position


class Slideshow:
    """Full-screen viewer state: wrap-around navigation and deletion.

    The slideshow works on its own copy of the photo list so deleting here
    and in the owning gallery never double-removes.
    """

    def __init__(
        self,
        *,
        on_image_click: Optional[ClickNotifier] = None,
        on_delete_image: Optional[DeleteNotifier] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.on_image_click = on_image_click
        self.on_delete_image = on_delete_image
        self.logger = ensure_structured_logger(logger, component="Slideshow", fallback_name="Slideshow")
        self.is_open = False
        self.photos: list[ImageUpload] = []
        self.slot: Optional[CameraSlot] = None
        self.current_index = 0

    @property
    def current(self) -> Optional[ImageUpload]:
        if not self.photos:
            return None
        return self.photos[min(self.current_index, len(self.photos) - 1)]

    def open(self, photos: list[ImageUpload], slot: Optional[CameraSlot] = None) -> None:
        self.is_open = True
        self.photos = list(photos)
        self.slot = slot
        self.current_index = 0
        if self.on_image_click is not None:
            try:
                self.on_image_click(list(photos), slot)
            except Exception:
                self.logger.exception("Image click callback failed")

    def close(self) -> None:
        self.is_open = False

    def next(self) -> Optional[ImageUpload]:
        if self.photos:
            self.current_index = self.current_index + 1 if self.current_index < len(self.photos) - 1 else 0
        return self.current

    def previous(self) -> Optional[ImageUpload]:
        if self.photos:
            self.current_index = self.current_index - 1 if self.current_index > 0 else len(self.photos) - 1
        return self.current

    def delete(self, index: int) -> ImageUpload:
        if not 0 <= index < len(self.photos):
            raise IndexError(f"No photo at index {index}")
        removed = self.photos.pop(index)
        if self.photos:
            self.current_index = min(self.current_index, len(self.photos) - 1)
        else:
            self.current_index = 0
        if self.slot is not None and self.on_delete_image is not None:
            try:
                self.on_delete_image(self.slot, index)
            except Exception:
                self.logger.exception("Delete callback failed for %s[%d]", self.slot.value, index)
        return removed


__all__ = ["ClickNotifier", "DeleteNotifier", "PhotoGallery", "Slideshow"]
