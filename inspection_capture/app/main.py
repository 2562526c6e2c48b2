"""Command-line entry point: probe capabilities, process files, or capture."""

import argparse
import asyncio
import contextlib
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from inspection_capture.capture.banner import DiagnosticBanner
from inspection_capture.capture.capability import CapabilityProbe
from inspection_capture.capture.media import MediaHost, OpenCVMediaHost
from inspection_capture.capture.models import CameraSlot, ImageFile
from inspection_capture.capture.orchestrator import UploadOrchestrator, UploadSink
from inspection_capture.capture.pickers import PathFilePicker
from inspection_capture.capture.session import CaptureSession, SessionState
from inspection_capture.capture.sinks import DirectoryUploadSink, HttpUploadSink
from inspection_capture.capture.telemetry import TelemetryLog
from inspection_capture.core.config_loader import ConfigLoader
from inspection_capture.core.logging_config import LOG_LEVELS, configure_logging
from inspection_capture.core.logging_utils import get_module_logger
from inspection_capture.core.settings import DEFAULT_CONFIG_PATH, PipelineSettings

logger = get_module_logger("Main")

DEFAULT_USER_AGENT = "inspection-capture"


def _slot(value: str) -> CameraSlot:
    try:
        return CameraSlot.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments with config file defaults."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=Path, default=None)
    known, _ = pre.parse_known_args(argv)
    config = ConfigLoader.load(known.config or DEFAULT_CONFIG_PATH, {"log_level": "info"})
    default_log_level = str(config.get("log_level", "info")).lower()

    parser = argparse.ArgumentParser(
        prog="inspection-capture",
        description="Vehicle inspection photo capture and upload pipeline",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: bundled config.txt)",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=default_log_level if default_log_level in LOG_LEVELS else "info",
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write logs to (rotated)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    probe = subparsers.add_parser("probe", help="Report browser family and upload capabilities")
    probe.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User agent string to classify")

    process = subparsers.add_parser("process", help="Validate, convert and upload image files")
    process.add_argument("files", nargs="+", type=Path, help="Image files, processed in order")
    process.add_argument("--slot", type=_slot, required=True, help="Inspection slot, e.g. driver_front")
    process.add_argument("--resize", action="store_true", default=None, help="Normalize to 1920x1080")
    process.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    process.add_argument("--debug-report", action="store_true", help="Include the telemetry log in the output")
    _add_sink_arguments(process)

    capture = subparsers.add_parser("capture", help="Capture one photo from a local camera")
    capture.add_argument("--slot", type=_slot, required=True)
    capture.add_argument("--device", default=None, help="Camera index or device path")
    capture.add_argument(
        "--fallback",
        nargs="*",
        type=Path,
        default=[],
        help="Files to upload instead if the camera cannot be opened",
    )
    capture.add_argument("--resize", action="store_true", default=None)
    capture.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    _add_sink_arguments(capture)

    return parser.parse_args(argv)


def _add_sink_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--output-dir",
        type=Path,
        default=Path("uploads"),
        help="Store uploads under this directory (default: uploads/)",
    )
    group.add_argument("--upload-url", default=None, help="POST uploads to this URL instead")


@contextlib.asynccontextmanager
async def open_sink(args: argparse.Namespace) -> AsyncIterator[UploadSink]:
    if args.upload_url:
        async with HttpUploadSink(args.upload_url) as sink:
            yield sink
    else:
        yield DirectoryUploadSink(args.output_dir)


def load_settings(args: argparse.Namespace) -> PipelineSettings:
    settings = PipelineSettings.load(args.config)
    return settings.with_overrides(
        log_level=args.log_level,
        resize_uploads=getattr(args, "resize", None),
    )


def build_orchestrator(
    settings: PipelineSettings,
    sink: UploadSink,
    probe: CapabilityProbe,
    errors: list[str],
) -> UploadOrchestrator:
    telemetry = TelemetryLog(probe, size_limit=settings.max_file_size_bytes)
    return UploadOrchestrator(
        sink,
        telemetry=telemetry,
        settings=settings,
        on_error=errors.append,
        banner=DiagnosticBanner(settings.banner_duration),
    )


def _emit(payload: dict[str, Any]) -> None:
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")


async def run_probe(args: argparse.Namespace) -> int:
    probe = CapabilityProbe(
        args.user_agent,
        media_host=OpenCVMediaHost(),
        file_picker=PathFilePicker([]),
    )
    _emit({"browser": probe.browser.value, "capabilities": probe.probe().to_dict()})
    return 0


async def load_files(paths: list[Path], orchestrator: UploadOrchestrator) -> list[tuple[str, Optional[ImageFile]]]:
    """Read every path; unreadable ones are reported and kept as ``None``."""
    loaded: list[tuple[str, Optional[ImageFile]]] = []
    for path in paths:
        try:
            loaded.append((path.name, await ImageFile.from_path(path)))
        except OSError as exc:
            orchestrator.report_error(f"Failed to read {path.name}: {exc.strerror or exc}", error=exc)
            loaded.append((path.name, None))
    return loaded


async def run_process(args: argparse.Namespace, settings: PipelineSettings) -> int:
    probe = CapabilityProbe(args.user_agent, file_picker=PathFilePicker(args.files))
    errors: list[str] = []

    async with open_sink(args) as sink:
        orchestrator = build_orchestrator(settings, sink, probe, errors)
        results = []
        for name, file in await load_files(args.files, orchestrator):
            ok = file is not None and await orchestrator.handle(file, args.slot)
            results.append({"file": name, "uploaded": ok})

    payload: dict[str, Any] = {
        "slot": args.slot.value,
        "results": results,
        "errors": errors,
    }
    if args.debug_report:
        payload["debug"] = [entry.to_dict() for entry in orchestrator.telemetry.report()]
    _emit(payload)
    return 0 if all(result["uploaded"] for result in results) else 1


async def run_capture(
    args: argparse.Namespace,
    settings: PipelineSettings,
    *,
    media_host: Optional[MediaHost] = None,
) -> int:
    media_host = media_host or OpenCVMediaHost(default_device=args.device)
    picker = PathFilePicker(args.fallback) if args.fallback else None
    probe = CapabilityProbe(args.user_agent, media_host=media_host, file_picker=picker)
    errors: list[str] = []
    captured: Optional[ImageFile] = None

    async with open_sink(args) as sink:
        orchestrator = build_orchestrator(settings, sink, probe, errors)
        session = CaptureSession(media_host, orchestrator, picker=picker, settings=settings)
        async with session:
            state = await session.open(args.slot)
            if state is SessionState.PREVIEWING:
                captured = await session.capture()
                if settings.capture_review:
                    session.accept()
                await session.wait_for_uploads()
            elif state is SessionState.DENIED and session.fallback_task is not None:
                await session.fallback_task
            else:
                errors.append(session.last_error or "Camera unavailable")

    _emit({
        "slot": args.slot.value,
        "captured": captured.name if captured else None,
        "errors": errors,
        "debug": [entry.to_dict() for entry in orchestrator.telemetry.report()],
    })
    return 1 if errors else 0


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, force=True, log_file=args.log_file)

    if args.command == "probe":
        return await run_probe(args)

    settings = load_settings(args)
    logger.debug("Settings: %s", settings.to_dict())
    if args.command == "process":
        return await run_process(args, settings)
    return await run_capture(args, settings)


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
