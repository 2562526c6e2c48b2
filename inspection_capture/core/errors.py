"""Error kinds raised inside the capture pipeline.

All of them are caught at the upload orchestrator boundary and turned into a
telemetry entry plus a call to the error sink; none crosses into the capture
session's lifecycle management.
"""

from __future__ import annotations

from typing import Optional


class CaptureError(Exception):
    """Base pipeline error carrying a stable machine-readable code."""

    code = "CAPTURE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(CaptureError):
    """Bad type, size or resolution. Terminal, never retried."""

    code = "VALIDATION_ERROR"


class ConversionError(CaptureError):
    """The HEIC/HEIF library failed. Terminal, never retried."""

    code = "CONVERSION_ERROR"


class NormalizationError(CaptureError):
    """Decode/encode/timeout failure that survived every retry."""

    code = "NORMALIZATION_ERROR"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class CameraPermissionError(CaptureError):
    """Camera access was denied or no camera exists."""

    code = "CAMERA_PERMISSION_DENIED"


class UploadSinkError(CaptureError):
    """The external upload sink rejected the file. Not retried here."""

    code = "UPLOAD_SINK_ERROR"


__all__ = [
    "CaptureError",
    "ValidationError",
    "ConversionError",
    "NormalizationError",
    "CameraPermissionError",
    "UploadSinkError",
]
