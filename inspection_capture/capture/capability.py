"""Browser classification and upload capability probing.

The report is a snapshot: callers that care about correctness probe again
instead of caching, since camera permission can change mid-session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from PIL import Image

from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .models import BrowserFamily, CapabilityReport

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .media import MediaHost
    from .pickers import FilePicker

_MOBILE_TOKENS = ("Mobile", "Android")


def detect_browser(user_agent: str) -> BrowserFamily:
    """Classify a user agent string.

    The Safari check runs first because Chrome's agent string also names
    Safari.
    """
    ua = user_agent or ""
    if "Safari" in ua and "Chrome" not in ua:
        if "iPhone" in ua or "iPad" in ua:
            return BrowserFamily.SAFARI_IOS
        if not any(token in ua for token in _MOBILE_TOKENS):
            return BrowserFamily.SAFARI_DESKTOP
    if "Chrome" in ua:
        return BrowserFamily.CHROME
    if "Firefox" in ua:
        return BrowserFamily.FIREFOX
    return BrowserFamily.UNKNOWN


def heic_library_available() -> bool:
    import pillow_heif

    return callable(getattr(pillow_heif, "open_heif", None))


def jpeg_codec_available() -> bool:
    Image.init()
    return "JPEG" in Image.OPEN and "JPEG" in Image.SAVE


class CapabilityProbe:
    """Answers "what can this client do right now?" without ever raising."""

    def __init__(
        self,
        user_agent: str = "",
        *,
        media_host: Optional["MediaHost"] = None,
        file_picker: Optional["FilePicker"] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.user_agent = user_agent
        self.media_host = media_host
        self.file_picker = file_picker
        self.logger = ensure_structured_logger(
            logger, component="CapabilityProbe", fallback_name="CapabilityProbe"
        )

    @property
    def browser(self) -> BrowserFamily:
        return detect_browser(self.user_agent)

    def probe(self) -> CapabilityReport:
        return CapabilityReport(
            file_input_supported=self._check("file input", self._detect_file_input),
            camera_supported=self._check("camera", self._detect_camera),
            heic_supported=self._check("HEIC conversion", heic_library_available),
            file_api_supported=self._check("file API", jpeg_codec_available),
        )

    def _check(self, label: str, detector: Callable[[], bool]) -> bool:
        try:
            return bool(detector())
        except Exception as exc:
            self.logger.warning("%s support check failed: %s", label, exc)
            return False

    def _detect_file_input(self) -> bool:
        return self.file_picker is not None

    def _detect_camera(self) -> bool:
        return self.media_host is not None and self.media_host.supports_user_media()


__all__ = [
    "CapabilityProbe",
    "detect_browser",
    "heic_library_available",
    "jpeg_codec_available",
]
