"""Unit tests for validation and sequencing in the upload orchestrator."""

from io import BytesIO
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from inspection_capture.capture.banner import DiagnosticBanner
from inspection_capture.capture.converter import FormatConverter
from inspection_capture.capture.gallery import PhotoGallery
from inspection_capture.capture.models import CameraSlot, ImageFile
from inspection_capture.capture.orchestrator import (
    GENERIC_FAILURE_MESSAGE,
    INVALID_IMAGE_MESSAGE,
    UNSUPPORTED_TYPE_MESSAGE,
    UploadOrchestrator,
)
from inspection_capture.capture.telemetry import TelemetryLog
from inspection_capture.core.errors import ConversionError, NormalizationError
from tests.unit.conftest import RecordingSink


def fake_heic(size: int = 1024) -> ImageFile:
    return ImageFile(name="IMG_0042.HEIC", data=b"h" * size, mime_type="image/heic")


class TestValidation:

    @pytest.mark.asyncio
    async def test_valid_jpeg_reaches_sink(self, orchestrator, sink, errors, make_image_file):
        file = make_image_file((640, 480))

        assert await orchestrator.handle(file, CameraSlot.DRIVER_FRONT) is True

        assert [(f.name, slot) for f, slot in sink.calls] == [("photo.jpg", CameraSlot.DRIVER_FRONT)]
        assert errors == []

    @pytest.mark.asyncio
    async def test_non_image_rejected_before_conversion(self, sink, telemetry, errors):
        converter = MagicMock(spec=FormatConverter)
        converter.is_convertible.return_value = False
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, converter=converter, on_error=errors.append)
        file = ImageFile(name="notes.pdf", data=b"%PDF-1.7", mime_type="application/pdf")

        assert await orchestrator.handle(file, "battery") is False

        converter.convert.assert_not_called()
        assert sink.calls == []
        assert errors == [UNSUPPORTED_TYPE_MESSAGE]

    @pytest.mark.asyncio
    async def test_oversized_file_never_reaches_sink(self, orchestrator, sink, errors):
        file = ImageFile(name="huge.jpg", data=b"\xff" * (25 * 1024 * 1024 + 1), mime_type="image/jpeg")

        assert await orchestrator.handle(file, CameraSlot.SPARE) is False

        assert sink.calls == []
        assert errors == ["File size should be less than 25MB"]

    @pytest.mark.asyncio
    async def test_file_at_size_limit_passes_size_check(self, sink, telemetry, settings, errors, make_image_file):
        valid = make_image_file((300, 300))
        limited = settings.with_overrides(max_file_size_bytes=valid.size)
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, settings=limited, on_error=errors.append)

        assert await orchestrator.handle(valid, CameraSlot.SPARE) is True

    @pytest.mark.asyncio
    async def test_low_resolution_rejected(self, orchestrator, sink, errors, make_image_file):
        assert await orchestrator.handle(make_image_file((199, 400)), CameraSlot.BATTERY) is False

        assert sink.calls == []
        assert errors == ["Image resolution should be at least 200x200 pixels"]

    @pytest.mark.asyncio
    async def test_minimum_resolution_accepted(self, orchestrator, make_image_file):
        assert await orchestrator.handle(make_image_file((200, 200)), CameraSlot.BATTERY) is True

    @pytest.mark.asyncio
    async def test_undecodable_image_rejected(self, orchestrator, errors):
        file = ImageFile(name="broken.jpg", data=b"\xff\xd8garbage", mime_type="image/jpeg")

        assert await orchestrator.handle(file, CameraSlot.BATTERY) is False

        assert errors == [INVALID_IMAGE_MESSAGE]

    @pytest.mark.asyncio
    async def test_heic_by_extension_skips_dimension_check(self, sink, telemetry, errors):
        converter = FormatConverter(decoder=lambda data: Image.new("RGB", (50, 50)))
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, converter=converter, on_error=errors.append)
        file = ImageFile(name="IMG_0042.HEIC", data=b"not decodable by pillow", mime_type="")

        assert await orchestrator.handle(file, CameraSlot.TPMS_PLACARD) is True

        uploaded, slot = sink.calls[0]
        assert uploaded.name == "IMG_0042.jpg"
        assert uploaded.mime_type == "image/jpeg"
        assert errors == []


class TestPipeline:

    @pytest.mark.asyncio
    async def test_resize_normalizes_before_upload(self, orchestrator, sink, make_image_file):
        assert await orchestrator.handle(make_image_file((4000, 3000)), CameraSlot.UNDERCARRIAGE, resize=True)

        uploaded, _ = sink.calls[0]
        assert uploaded.name == "photo_1080p.jpg"
        with Image.open(BytesIO(uploaded.data)) as image:
            assert image.size == (1440, 1080)

    @pytest.mark.asyncio
    async def test_no_resize_by_default(self, orchestrator, sink, make_image_file):
        file = make_image_file((4000, 3000))

        await orchestrator.handle(file, CameraSlot.UNDERCARRIAGE)

        assert sink.calls[0][0] is file

    @pytest.mark.asyncio
    async def test_conversion_failure_reported(self, sink, telemetry, errors):
        converter = FormatConverter(decoder=MagicMock(side_effect=ValueError("bad heic")))
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, converter=converter, on_error=errors.append)

        assert await orchestrator.handle(fake_heic(), CameraSlot.SPARE) is False

        assert sink.calls == []
        assert errors == ["Failed to convert HEIC image: bad heic"]

    @pytest.mark.asyncio
    async def test_normalization_failure_reported(self, sink, telemetry, errors, make_image_file):
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(side_effect=NormalizationError("Failed to resize image after 3 attempts", 3))
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, normalizer=normalizer, on_error=errors.append)

        assert await orchestrator.handle(make_image_file(), CameraSlot.SPARE, resize=True) is False

        assert errors == ["Failed to resize image after 3 attempts"]
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_sink_failure_is_wrapped(self, telemetry, errors, make_image_file):
        sink = RecordingSink(fail_with=ConnectionError("Load failed"))
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, on_error=errors.append)

        assert await orchestrator.handle(make_image_file(), CameraSlot.SPARE) is False

        assert errors == ["Upload failed: Load failed"]

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_generic_message(self, sink, telemetry, errors, make_image_file):
        converter = MagicMock(spec=FormatConverter)
        converter.is_convertible.side_effect = [False, KeyError("surprise")]
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, converter=converter, on_error=errors.append)

        assert await orchestrator.handle(make_image_file(), CameraSlot.SPARE) is False

        assert errors == [GENERIC_FAILURE_MESSAGE]

    @pytest.mark.asyncio
    async def test_broken_error_sink_is_contained(self, sink, telemetry):
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, on_error=MagicMock(side_effect=RuntimeError))
        file = ImageFile(name="x.txt", data=b"x", mime_type="text/plain")

        assert await orchestrator.handle(file, CameraSlot.SPARE) is False

    @pytest.mark.asyncio
    async def test_batch_is_processed_in_order(self, orchestrator, sink, errors, make_image_file):
        files = [
            make_image_file(name="one.jpg"),
            ImageFile(name="two.txt", data=b"x", mime_type="text/plain"),
            make_image_file(name="three.jpg"),
        ]

        results = await orchestrator.handle_many(files, CameraSlot.WASHER_FLUID)

        assert results == [True, False, True]
        assert [f.name for f, _ in sink.calls] == ["one.jpg", "three.jpg"]
        assert len(errors) == 1


class TestTelemetryAndBanner:

    @pytest.mark.asyncio
    async def test_failure_records_two_entries(self, orchestrator, telemetry, make_image_file):
        await orchestrator.handle(make_image_file((100, 100)), CameraSlot.SPARE)

        report = telemetry.report()
        assert len(report) == 2
        assert report[0].error is None
        assert "at least 200x200" in report[1].error

    @pytest.mark.asyncio
    async def test_success_records_one_entry(self, orchestrator, telemetry, make_image_file):
        await orchestrator.handle(make_image_file(), CameraSlot.SPARE)

        assert len(telemetry.report()) == 1

    @pytest.mark.asyncio
    async def test_safari_failure_shows_banner(self, sink, safari_probe, errors):
        banner = DiagnosticBanner(60.0)
        orchestrator = UploadOrchestrator(
            sink, telemetry=TelemetryLog(safari_probe), banner=banner, on_error=errors.append
        )

        await orchestrator.handle(ImageFile(name="a.txt", data=b"x", mime_type="text/plain"), CameraSlot.SPARE)

        assert len(banner.visible) == 1
        assert UNSUPPORTED_TYPE_MESSAGE in banner.visible[0].message
        banner.dismiss_all()

    @pytest.mark.asyncio
    async def test_chrome_failure_shows_no_banner(self, sink, telemetry):
        banner = DiagnosticBanner(60.0)
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, banner=banner)

        await orchestrator.handle(ImageFile(name="a.txt", data=b"x", mime_type="text/plain"), CameraSlot.SPARE)

        assert banner.visible == []

    @pytest.mark.asyncio
    async def test_report_error_outside_pipeline(self, sink, safari_probe, errors):
        banner = DiagnosticBanner(60.0)
        telemetry = TelemetryLog(safari_probe)
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, banner=banner, on_error=errors.append)

        orchestrator.report_error("Failed to read nope.jpg: No such file or directory", error=FileNotFoundError())

        assert errors == ["Failed to read nope.jpg: No such file or directory"]
        assert len(telemetry) == 1
        assert telemetry.latest().file_details is None
        assert telemetry.latest().error == errors[0]
        assert len(banner.visible) == 1
        assert sink.calls == []
        banner.dismiss_all()


class TestGalleryIntegration:

    @pytest.mark.asyncio
    async def test_success_marks_upload(self, sink, telemetry, make_image_file):
        gallery = PhotoGallery()
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, gallery=gallery)

        await orchestrator.handle(make_image_file(), CameraSlot.FRONT_BRAKES)

        [upload] = gallery.photos(CameraSlot.FRONT_BRAKES)
        assert upload.progress == 100
        assert upload.remote_url == "https://uploads.example/front_brakes/photo.jpg"
        assert upload.error is None

    @pytest.mark.asyncio
    async def test_failure_marks_upload(self, sink, telemetry, make_image_file):
        gallery = PhotoGallery()
        orchestrator = UploadOrchestrator(sink, telemetry=telemetry, gallery=gallery)

        await orchestrator.handle(make_image_file((50, 50)), CameraSlot.FRONT_BRAKES)

        [upload] = gallery.photos(CameraSlot.FRONT_BRAKES)
        assert upload.error is not None
        assert upload.remote_url is None

    @pytest.mark.asyncio
    async def test_deleted_upload_never_reaches_sink(self, telemetry, errors, make_image_file):
        gallery = PhotoGallery()

        async def delete_then_upload(file, slot):
            raise AssertionError("sink must not be called")

        normalizer = MagicMock()

        async def normalize(file):
            gallery.delete(CameraSlot.REAR_BRAKES, 0)
            return file

        normalizer.normalize = normalize
        orchestrator = UploadOrchestrator(
            delete_then_upload,
            telemetry=telemetry,
            normalizer=normalizer,
            gallery=gallery,
            on_error=errors.append,
        )

        assert await orchestrator.handle(make_image_file(), CameraSlot.REAR_BRAKES, resize=True) is False

        assert gallery.photos(CameraSlot.REAR_BRAKES) == []
        assert errors == []
