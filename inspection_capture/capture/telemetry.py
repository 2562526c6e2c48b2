"""Append-only log of upload attempts and the diagnostics view built on it."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from ..core.logging_utils import LoggerLike, ensure_structured_logger
from .capability import CapabilityProbe
from .converter import HEIF_MIME_TYPES
from .models import DebugLogEntry, FileDetails, ImageFile

DEFAULT_SIZE_LIMIT = 25 * 1024 * 1024


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _flag(value: bool) -> str:
    return "yes" if value else "no"


def diagnostic_hints(entry: DebugLogEntry, *, size_limit: int = DEFAULT_SIZE_LIMIT) -> list[str]:
    """Likely causes for a failed attempt, derived from the entry alone."""
    hints: list[str] = []
    details = entry.file_details
    if details is not None:
        if details.mime_type.lower() in HEIF_MIME_TYPES:
            hints.append("iPhone HEIC format detected, conversion required")
        if details.size > size_limit:
            hints.append(f"File size exceeds {size_limit / 1024 / 1024:.0f}MB limit")

    error = entry.error or ""
    if "NetworkError" in error or "Load failed" in error:
        hints.append("Network issue: check that the upload server is reachable and the protocol matches")
    if "HEIC" in error or "heic" in error:
        hints.append("HEIC conversion issue: the image may be corrupted, try selecting it again")
    if "Permission" in error or "denied" in error:
        hints.append("Camera access denied: check camera permissions or use the file picker instead")
    return hints


class TelemetryLog:
    """Records one entry per upload attempt, snapshotting current capabilities.

    Entries are never mutated or dropped. The log is owned by whoever builds
    the pipeline and handed to the components that write to it.
    """

    def __init__(
        self,
        probe: CapabilityProbe,
        *,
        size_limit: int = DEFAULT_SIZE_LIMIT,
        clock: Optional[Callable[[], str]] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.probe = probe
        self.size_limit = size_limit
        self._clock = clock or utc_timestamp
        self._entries: list[DebugLogEntry] = []
        self.logger = ensure_structured_logger(logger, component="Telemetry", fallback_name="Telemetry")

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        file: Optional[ImageFile] = None,
        error: Optional[BaseException | str] = None,
    ) -> DebugLogEntry:
        entry = DebugLogEntry(
            timestamp=self._clock(),
            user_agent=self.probe.user_agent,
            browser=self.probe.browser,
            capabilities=self.probe.probe(),
            file_details=FileDetails.of(file) if file is not None else None,
            error=str(error) if error is not None else None,
        )
        self._entries.append(entry)
        self._log_entry(entry)
        return entry

    def report(self) -> list[DebugLogEntry]:
        return list(self._entries)

    def latest(self) -> Optional[DebugLogEntry]:
        return self._entries[-1] if self._entries else None

    def summary(self) -> str:
        latest = self.latest()
        if latest is None:
            return "No debug data available"
        return render_entry(latest)

    def _log_entry(self, entry: DebugLogEntry) -> None:
        caps = entry.capabilities
        self.logger.debug(
            "Upload attempt | browser=%s file_input=%s camera=%s heic=%s file_api=%s",
            entry.browser.value,
            _flag(caps.file_input_supported),
            _flag(caps.camera_supported),
            _flag(caps.heic_supported),
            _flag(caps.file_api_supported),
        )
        if entry.file_details is not None:
            self.logger.debug("File details: %s", entry.file_details.to_dict())
        if entry.error is not None:
            self.logger.error("Upload error: %s", entry.error)
            for hint in diagnostic_hints(entry, size_limit=self.size_limit):
                self.logger.warning("Hint: %s", hint)


def render_entry(entry: DebugLogEntry) -> str:
    caps = entry.capabilities
    lines = [
        "IMAGE UPLOAD DEBUG",
        f"Browser: {entry.browser.value}",
        f"File Input: {_flag(caps.file_input_supported)}",
        f"Camera: {_flag(caps.camera_supported)}",
        f"HEIC Support: {_flag(caps.heic_supported)}",
        f"File API: {_flag(caps.file_api_supported)}",
    ]
    details = entry.file_details
    if details is not None:
        lines.append(
            f"File: {details.name} ({details.mime_type or 'unknown'}, "
            f"{details.size / 1024 / 1024:.2f}MB)"
        )
    else:
        lines.append("No file selected")
    lines.append(f"Error: {entry.error}" if entry.error else "No errors")
    lines.append(f"Time: {entry.timestamp}")
    return "\n".join(lines)


class DiagnosticsPanel:
    """Presentation view over a telemetry log.

    ``clear()`` only hides what is currently shown; the log keeps every entry.
    """

    def __init__(self, log: TelemetryLog) -> None:
        self.log = log
        self._hidden = 0

    @property
    def entries(self) -> list[DebugLogEntry]:
        return self.log.report()[self._hidden:]

    def clear(self) -> None:
        self._hidden = len(self.log)

    def render(self) -> str:
        visible = self.entries
        if not visible:
            return "No debug data available"
        return "\n\n".join(render_entry(entry) for entry in visible)


__all__ = [
    "DiagnosticsPanel",
    "TelemetryLog",
    "diagnostic_hints",
    "render_entry",
    "utc_timestamp",
]
