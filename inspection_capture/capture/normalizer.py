"""Bounding-box JPEG re-encoding with per-attempt timeout and retry."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Awaitable, Callable, Optional

from PIL import Image, ImageOps

from ..core.errors import NormalizationError
from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .converter import encode_jpeg
from .models import ImageFile, now_ms

SleepFunc = Callable[[float], Awaitable[None]]


def _discard_result(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Largest size with the same aspect ratio that fits the bounding box.

    Never upscales.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image dimensions {width}x{height}")
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, int(width * scale + 0.5)), max(1, int(height * scale + 0.5))


class ResolutionNormalizer:
    """Re-encodes images so that they fit ``max_width`` x ``max_height``.

    Every attempt decodes and encodes in a worker thread under
    ``asyncio.wait_for``.  Failed attempts are retried with exponential
    backoff (``backoff_base * 2 ** (n - 1)`` seconds after the n-th failure)
    until ``attempts`` have been made.
    """

    def __init__(
        self,
        *,
        quality: float = 0.8,
        max_width: int = 1920,
        max_height: int = 1080,
        timeout: float = 15.0,
        attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Optional[SleepFunc] = None,
        logger: LoggerLike = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.quality = quality
        self.max_width = max_width
        self.max_height = max_height
        self.timeout = timeout
        self.attempts = attempts
        self.backoff_base = backoff_base
        self._sleep = sleep or asyncio.sleep
        self.logger = ensure_structured_logger(
            logger, component="ResolutionNormalizer", fallback_name="ResolutionNormalizer"
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ResolutionNormalizer":
        return cls(
            quality=settings.normalize_quality,
            max_width=settings.max_width,
            max_height=settings.max_height,
            timeout=settings.normalize_timeout,
            attempts=settings.normalize_attempts,
            backoff_base=settings.backoff_base,
            **kwargs,
        )

    def backoff_delay(self, failed_attempt: int) -> float:
        return self.backoff_base * (2 ** (failed_attempt - 1))

    async def normalize(
        self,
        file: ImageFile,
        *,
        quality: Optional[float] = None,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> ImageFile:
        quality = self.quality if quality is None else quality
        max_width = self.max_width if max_width is None else max_width
        max_height = self.max_height if max_height is None else max_height

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.attempts + 1):
            worker = asyncio.ensure_future(
                asyncio.to_thread(self._render, file.data, quality, max_width, max_height)
            )
            try:
                self.logger.debug("Normalizing %s: attempt %d/%d", file.name, attempt, self.attempts)
                data, resized = await asyncio.wait_for(asyncio.shield(worker), timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                last_error = exc
                reason = f"timed out after {self.timeout:.1f}s"
                # The render thread cannot be interrupted; it must finish
                # before another decode starts.
                if attempt < self.attempts:
                    await asyncio.gather(worker, return_exceptions=True)
                else:
                    worker.add_done_callback(_discard_result)
            except asyncio.CancelledError:
                worker.add_done_callback(_discard_result)
                raise
            except Exception as exc:
                last_error = exc
                reason = str(exc) or type(exc).__name__
            else:
                if attempt > 1:
                    self.logger.info("Normalized %s on attempt %d", file.name, attempt)
                suffix = "_1080p.jpg" if resized else ".jpg"
                return ImageFile(
                    name=f"{file.stem}{suffix}",
                    data=data,
                    mime_type="image/jpeg",
                    last_modified=now_ms(),
                )

            if attempt < self.attempts:
                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    "Normalizing %s: attempt %d failed (%s), retrying in %.1fs",
                    file.name, attempt, reason, delay,
                )
                await self._sleep(delay)
            else:
                self.logger.error(
                    "Normalizing %s: all %d attempts failed (%s)", file.name, self.attempts, reason
                )

        raise NormalizationError(
            f"Failed to resize image after {self.attempts} attempts", attempts=self.attempts
        ) from last_error

    def _render(self, data: bytes, quality: float, max_width: int, max_height: int) -> tuple[bytes, bool]:
        with Image.open(BytesIO(data)) as source:
            source.load()
            # Bound the displayed orientation, not the stored sensor layout.
            with ImageOps.exif_transpose(source) as upright:
                width, height = upright.size
                if width <= max_width and height <= max_height:
                    return encode_jpeg(upright, quality), False

                target = fit_within(width, height, max_width, max_height)
                with upright.resize(target, Image.Resampling.LANCZOS) as resized:
                    return encode_jpeg(resized, quality), True


__all__ = ["ResolutionNormalizer", "fit_within"]
