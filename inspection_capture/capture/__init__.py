from .banner import DiagnosticBanner
from .capability import CapabilityProbe, detect_browser
from .converter import FormatConverter
from .gallery import PhotoGallery, Slideshow
from .media import MediaHost, OpenCVMediaHost, OpenCVVideoTrack, VideoTrack
from .models import (
    BrowserFamily,
    CameraDevice,
    CameraSlot,
    CapabilityReport,
    DebugLogEntry,
    FileDetails,
    ImageFile,
    ImageUpload,
)
from .normalizer import ResolutionNormalizer
from .orchestrator import UploadOrchestrator
from .pickers import FilePicker, PathFilePicker, choose_files, open_photo_library, open_tire_camera
from .session import CaptureSession, Permission, SessionState
from .sinks import DirectoryUploadSink, HttpUploadSink
from .telemetry import DiagnosticsPanel, TelemetryLog

__all__ = [
    'BrowserFamily',
    'CameraDevice',
    'CameraSlot',
    'CapabilityProbe',
    'CapabilityReport',
    'CaptureSession',
    'DebugLogEntry',
    'DiagnosticBanner',
    'DiagnosticsPanel',
    'DirectoryUploadSink',
    'FileDetails',
    'FilePicker',
    'FormatConverter',
    'HttpUploadSink',
    'ImageFile',
    'ImageUpload',
    'MediaHost',
    'OpenCVMediaHost',
    'OpenCVVideoTrack',
    'PathFilePicker',
    'Permission',
    'PhotoGallery',
    'ResolutionNormalizer',
    'SessionState',
    'Slideshow',
    'TelemetryLog',
    'UploadOrchestrator',
    'VideoTrack',
    'choose_files',
    'detect_browser',
    'open_photo_library',
    'open_tire_camera',
]
