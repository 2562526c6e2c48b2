"""Validates incoming photos and drives them through conversion, resizing and upload."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Awaitable, Callable, Iterable, Optional

from PIL import Image

from ..core.errors import CaptureError, UploadSinkError, ValidationError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from ..core.settings import PipelineSettings
from .banner import DiagnosticBanner
from .converter import FormatConverter
from .gallery import PhotoGallery
from .models import CameraSlot, ImageFile, ImageUpload
from .normalizer import ResolutionNormalizer
from .telemetry import TelemetryLog

UploadSink = Callable[[ImageFile, CameraSlot], Awaitable[Optional[str]]]
ErrorSink = Callable[[str], None]

UNSUPPORTED_TYPE_MESSAGE = "Please upload an image file (JPEG, PNG, HEIC, etc.)"
INVALID_IMAGE_MESSAGE = "Invalid image file"
GENERIC_FAILURE_MESSAGE = "Failed to process image"


def read_dimensions(data: bytes) -> tuple[int, int]:
    with Image.open(BytesIO(data)) as image:
        return image.size


class UploadOrchestrator:
    """Entry point for every photo, whether from the camera or a picker.

    ``handle`` never raises for pipeline failures: the failure is recorded in
    telemetry, reported through ``on_error`` and ``False`` is returned.
    """

    def __init__(
        self,
        sink: UploadSink,
        *,
        telemetry: TelemetryLog,
        settings: Optional[PipelineSettings] = None,
        converter: Optional[FormatConverter] = None,
        normalizer: Optional[ResolutionNormalizer] = None,
        on_error: Optional[ErrorSink] = None,
        banner: Optional[DiagnosticBanner] = None,
        gallery: Optional[PhotoGallery] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.sink = sink
        self.telemetry = telemetry
        self.logger = ensure_structured_logger(logger, component="Orchestrator", fallback_name="Orchestrator")
        self.converter = converter or FormatConverter(self.settings.heic_quality, logger=self.logger.getChild("Converter"))
        self.normalizer = normalizer or ResolutionNormalizer.from_settings(
            self.settings, logger=self.logger.getChild("Normalizer")
        )
        self.on_error = on_error
        self.banner = banner
        self.gallery = gallery

    async def handle(
        self,
        file: ImageFile,
        slot: CameraSlot | str,
        *,
        resize: Optional[bool] = None,
    ) -> bool:
        slot = CameraSlot.parse(slot)
        if resize is None:
            resize = self.settings.resize_uploads
        upload = self.gallery.add(slot, file) if self.gallery is not None else None

        self.logger.info("Processing %s for %s (%d bytes)", file.name, slot.value, file.size)
        self.telemetry.record(file)

        try:
            await self.validate(file)
            self._progress(upload, 10)

            processed = file
            if self.converter.is_convertible(processed):
                processed = await self.converter.convert(processed)
                self._progress(upload, 40)

            if resize:
                processed = await self.normalizer.normalize(processed)
                self._progress(upload, 70)

            if upload is not None:
                if upload.is_deleted:
                    self.logger.info("%s was deleted before upload; skipping", file.name)
                    return False
                self.gallery.replace_file(upload, processed)

            remote_url = await self._send(processed, slot)
        except asyncio.CancelledError:
            raise
        except ValidationError as exc:
            self.logger.warning("Rejected %s: %s", file.name, exc.message)
            self._fail(file, exc.message, upload, error=exc)
            return False
        except CaptureError as exc:
            self.logger.error("Failed to process %s: %s", file.name, exc.message)
            self._fail(file, exc.message, upload, error=exc)
            return False
        except Exception as exc:
            self.logger.exception("Unexpected error while processing %s", file.name)
            self._fail(file, GENERIC_FAILURE_MESSAGE, upload, error=exc)
            return False

        if upload is not None:
            upload.mark_uploaded(remote_url)
        self.logger.info("Uploaded %s for %s -> %s", processed.name, slot.value, remote_url)
        return True

    async def handle_many(
        self,
        files: Iterable[ImageFile],
        slot: CameraSlot | str,
        *,
        resize: Optional[bool] = None,
    ) -> list[bool]:
        """Process a batch strictly in order, one file at a time."""
        results = []
        for file in files:
            results.append(await self.handle(file, slot, resize=resize))
        return results

    async def validate(self, file: ImageFile) -> None:
        """Raise ``ValidationError`` for the first rule the file breaks."""
        heif = self.converter.is_convertible(file)
        if not (file.mime_type or "").startswith("image/") and not heif:
            raise ValidationError(UNSUPPORTED_TYPE_MESSAGE)

        limit = self.settings.max_file_size_bytes
        if file.size > limit:
            raise ValidationError(f"File size should be less than {limit // (1024 * 1024)}MB")

        # HEIC dimensions are only known after conversion.
        if heif:
            return

        try:
            width, height = await asyncio.to_thread(read_dimensions, file.data)
        except Exception as exc:
            raise ValidationError(INVALID_IMAGE_MESSAGE) from exc

        minimum = self.settings.min_image_dimension
        if width < minimum or height < minimum:
            raise ValidationError(
                f"Image resolution should be at least {minimum}x{minimum} pixels"
            )

    async def _send(self, file: ImageFile, slot: CameraSlot) -> Optional[str]:
        try:
            return await self.sink(file, slot)
        except asyncio.CancelledError:
            raise
        except CaptureError:
            raise
        except Exception as exc:
            raise UploadSinkError(f"Upload failed: {exc}") from exc

    def _progress(self, upload: Optional[ImageUpload], value: int) -> None:
        if upload is not None:
            upload.set_progress(value)

    def report_error(
        self,
        message: str,
        *,
        file: Optional[ImageFile] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Record a failure that happened before a file reached ``handle``.

        Unreadable paths and picker failures take this route so they land in
        telemetry and the error sink like any pipeline failure.
        """
        self.logger.error("%s", message if error is None else f"{message} ({error})")
        self.telemetry.record(file, message)
        self._notify(message)

    def _fail(
        self,
        file: ImageFile,
        message: str,
        upload: Optional[ImageUpload],
        *,
        error: BaseException,
    ) -> None:
        self.telemetry.record(file, message if isinstance(error, CaptureError) else f"{message}: {error}")
        if upload is not None:
            upload.mark_failed(message)
        self._notify(message)

    def _notify(self, message: str) -> None:
        if self.banner is not None and self.telemetry.probe.browser.is_safari:
            self.banner.show(f"Image upload failed: {message}. Check the logs for details.")
        self._report(message)

    def _report(self, message: str) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(message)
        except Exception:
            self.logger.exception("Error callback failed")


__all__ = [
    "ErrorSink",
    "GENERIC_FAILURE_MESSAGE",
    "INVALID_IMAGE_MESSAGE",
    "UNSUPPORTED_TYPE_MESSAGE",
    "UploadOrchestrator",
    "UploadSink",
    "read_dimensions",
]
