"""HEIC/HEIF detection and conversion to JPEG."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Any, Callable, Optional

from PIL import Image

from ..core.errors import ConversionError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import ImageFile

HEIF_MIME_TYPES = frozenset({"image/heic", "image/heif"})
HEIF_SUFFIXES = frozenset({".heic", ".heif"})

HeifDecoder = Callable[[bytes], Any]


def is_heif(file: ImageFile) -> bool:
    """True when the MIME type or the file extension names HEIC/HEIF."""
    if (file.mime_type or "").lower() in HEIF_MIME_TYPES:
        return True
    return file.suffix.lower() in HEIF_SUFFIXES


def decode_heif(data: bytes) -> Any:
    import pillow_heif

    return pillow_heif.open_heif(BytesIO(data))


def jpeg_name(name: str) -> str:
    """``photo.HEIC`` -> ``photo.jpg``; names without a HEIF suffix gain ``.jpg``."""
    lowered = name.lower()
    for suffix in HEIF_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)] + ".jpg"
    return name + ".jpg"


def encode_jpeg(image: Image.Image, quality: float) -> bytes:
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=jpeg_quality(quality))
        return buffer.getvalue()
    finally:
        buffer.close()


def jpeg_quality(quality: float) -> int:
    """Map a 0..1 encoder quality onto Pillow's 1..95 JPEG scale."""
    return max(1, min(95, int(round(quality * 100))))


def _first_image(decoded: Any) -> Image.Image:
    # A HEIF container may hold several images (bursts, live photos).
    if isinstance(decoded, Image.Image):
        return decoded
    candidate = decoded
    if isinstance(decoded, (list, tuple)) or hasattr(decoded, "__getitem__"):
        if len(decoded) == 0:
            raise ValueError("HEIF container holds no images")
        candidate = decoded[0]
    if isinstance(candidate, Image.Image):
        return candidate
    to_pillow = getattr(candidate, "to_pillow", None)
    if to_pillow is None:
        raise TypeError(f"Unsupported HEIF decode result: {type(candidate).__name__}")
    return to_pillow()


class FormatConverter:
    """Turns HEIC/HEIF uploads into JPEG files the rest of the pipeline accepts."""

    def __init__(
        self,
        quality: float = 0.8,
        *,
        decoder: Optional[HeifDecoder] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.quality = quality
        self._decoder = decoder or decode_heif
        self.logger = ensure_structured_logger(
            logger, component="FormatConverter", fallback_name="FormatConverter"
        )

    def is_convertible(self, file: ImageFile) -> bool:
        return is_heif(file)

    async def convert(self, file: ImageFile) -> ImageFile:
        self.logger.info("Converting %s (%d bytes) to JPEG", file.name, file.size)
        try:
            data = await asyncio.to_thread(self._render, file.data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("HEIC conversion failed for %s: %s", file.name, exc)
            raise ConversionError(f"Failed to convert HEIC image: {exc}") from exc

        converted = ImageFile(
            name=jpeg_name(file.name),
            data=data,
            mime_type="image/jpeg",
            last_modified=file.last_modified,
        )
        self.logger.info("Converted %s -> %s (%d bytes)", file.name, converted.name, converted.size)
        return converted

    def _render(self, data: bytes) -> bytes:
        image = _first_image(self._decoder(data))
        try:
            return encode_jpeg(image, self.quality)
        finally:
            image.close()


__all__ = [
    "FormatConverter",
    "HEIF_MIME_TYPES",
    "HEIF_SUFFIXES",
    "decode_heif",
    "encode_jpeg",
    "is_heif",
    "jpeg_name",
    "jpeg_quality",
]
