from .errors import (
    CameraPermissionError,
    CaptureError,
    ConversionError,
    NormalizationError,
    UploadSinkError,
    ValidationError,
)
from .logging_utils import get_module_logger
from .settings import PipelineSettings

__all__ = [
    'CameraPermissionError',
    'CaptureError',
    'ConversionError',
    'NormalizationError',
    'PipelineSettings',
    'UploadSinkError',
    'ValidationError',
    'get_module_logger',
]
