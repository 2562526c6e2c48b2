"""Unit tests for HEIC/HEIF detection and conversion."""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
from PIL import Image

from inspection_capture.capture.converter import FormatConverter, is_heif, jpeg_name, jpeg_quality
from inspection_capture.capture.models import ImageFile
from inspection_capture.core.errors import ConversionError


def heic_file(name="IMG_0001.HEIC", mime_type="image/heic") -> ImageFile:
    return ImageFile(name=name, data=b"\x00\x00\x00\x18ftypheic", mime_type=mime_type, last_modified=1234)


class TestDetection:

    @pytest.mark.parametrize(
        "name, mime_type",
        [
            ("IMG_0001.HEIC", ""),
            ("photo.heif", "application/octet-stream"),
            ("photo.bin", "image/heic"),
            ("photo.bin", "image/heif"),
        ],
    )
    def test_heif_by_mime_or_suffix(self, name, mime_type):
        assert is_heif(ImageFile(name=name, data=b"", mime_type=mime_type))

    def test_jpeg_is_not_heif(self):
        assert not is_heif(ImageFile(name="photo.jpg", data=b"", mime_type="image/jpeg"))

    def test_jpeg_name(self):
        assert jpeg_name("IMG_0001.HEIC") == "IMG_0001.jpg"
        assert jpeg_name("shot.heif") == "shot.jpg"
        assert jpeg_name("upload") == "upload.jpg"

    def test_quality_mapping(self):
        assert jpeg_quality(0.8) == 80
        assert jpeg_quality(0.9) == 90
        assert jpeg_quality(1.0) == 95


class TestConvert:

    @pytest.mark.asyncio
    async def test_converts_single_image(self):
        decoder = MagicMock(return_value=Image.new("RGB", (320, 240), "blue"))
        converter = FormatConverter(decoder=decoder)

        result = await converter.convert(heic_file())

        assert result.name == "IMG_0001.jpg"
        assert result.mime_type == "image/jpeg"
        assert result.last_modified == 1234
        with Image.open(BytesIO(result.data)) as image:
            assert image.format == "JPEG"
            assert image.size == (320, 240)
        decoder.assert_called_once()

    @pytest.mark.asyncio
    async def test_first_image_of_sequence_is_used(self):
        frames = [Image.new("RGB", (100, 50)), Image.new("RGB", (40, 40))]
        converter = FormatConverter(decoder=lambda data: frames)

        result = await converter.convert(heic_file())

        with Image.open(BytesIO(result.data)) as image:
            assert image.size == (100, 50)

    @pytest.mark.asyncio
    async def test_heif_image_objects_are_converted_with_to_pillow(self):
        heif_image = MagicMock()
        heif_image.to_pillow.return_value = Image.new("RGB", (64, 48))
        converter = FormatConverter(decoder=lambda data: [heif_image])

        result = await converter.convert(heic_file())

        heif_image.to_pillow.assert_called_once()
        with Image.open(BytesIO(result.data)) as image:
            assert image.size == (64, 48)

    @pytest.mark.asyncio
    async def test_decoder_failure_raises_conversion_error(self):
        cause = ValueError("corrupt container")
        converter = FormatConverter(decoder=MagicMock(side_effect=cause))

        with pytest.raises(ConversionError) as excinfo:
            await converter.convert(heic_file())

        assert excinfo.value.__cause__ is cause
        assert excinfo.value.code == "CONVERSION_ERROR"

    @pytest.mark.asyncio
    async def test_empty_container_is_a_conversion_error(self):
        converter = FormatConverter(decoder=lambda data: [])

        with pytest.raises(ConversionError):
            await converter.convert(heic_file())

    @pytest.mark.asyncio
    async def test_conversion_is_not_retried(self):
        decoder = MagicMock(side_effect=OSError("decode failed"))
        converter = FormatConverter(decoder=decoder)

        with pytest.raises(ConversionError):
            await converter.convert(heic_file())

        assert decoder.call_count == 1


class TestPillowHeifDecoding:

    @pytest.mark.asyncio
    async def test_real_heif_is_converted(self):
        pillow_heif = pytest.importorskip("pillow_heif")
        heif = pillow_heif.from_pillow(Image.new("RGB", (64, 48), (0, 128, 255)))
        buffer = BytesIO()
        heif.save(buffer, quality=90)
        source = ImageFile(name="photo.HEIC", data=buffer.getvalue(), mime_type="image/heic", last_modified=4321)

        result = await FormatConverter().convert(source)

        assert result.name == "photo.jpg"
        assert result.mime_type == "image/jpeg"
        assert result.last_modified == 4321
        with Image.open(BytesIO(result.data)) as image:
            assert image.format == "JPEG"
            assert image.size == (64, 48)
