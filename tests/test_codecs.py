# tests/test_codecs.py
"""Tests for image_transformer/infra/codecs.py: Pillow codecs and the init guard."""
from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image, features

from image_transformer.core.domain import RawImage
from image_transformer.core.errors import CodecError, CodecInitError
from image_transformer.core.formats import ImageFormat, detect_format
from image_transformer.core.resize_policy import FitMethod
from image_transformer.infra.codecs import (
    CodecInitializer,
    CodecInitState,
    PillowCodecs,
    missing_codecs,
)

requires_avif = pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF")


@pytest.fixture
def codecs():
    return PillowCodecs()


def _pixel(raw, x, y):
    offset = (y * raw.width + x) * 4
    return tuple(raw.data[offset:offset + 4])


# ============================================================================
# Decode
# ============================================================================

class TestDecode:
    @pytest.mark.asyncio
    async def test_jpeg_to_rgba(self, codecs, jpeg_bytes):
        raw = await codecs.decode(jpeg_bytes, ImageFormat.JPEG)
        assert (raw.width, raw.height) == (64, 32)
        assert len(raw.data) == 64 * 32 * 4
        assert _pixel(raw, 0, 0)[3] == 255

    @pytest.mark.asyncio
    async def test_png_keeps_alpha(self, codecs, png_bytes):
        raw = await codecs.decode(png_bytes, ImageFormat.PNG)
        assert _pixel(raw, 10, 10) == (0, 128, 255, 128)

    @pytest.mark.asyncio
    async def test_webp(self, codecs, webp_bytes):
        raw = await codecs.decode(webp_bytes, ImageFormat.WEBP)
        assert (raw.width, raw.height) == (40, 40)

    @pytest.mark.asyncio
    async def test_garbage_raises_codec_error(self, codecs):
        with pytest.raises(CodecError):
            await codecs.decode(b"\xff\xd8\xff" + b"\x00" * 32, ImageFormat.JPEG)

    @pytest.mark.asyncio
    async def test_wrong_format_raises_codec_error(self, codecs, png_bytes):
        with pytest.raises(CodecError):
            await codecs.decode(png_bytes, ImageFormat.JPEG)

    @pytest.mark.asyncio
    async def test_palette_png(self, codecs):
        img = Image.new("RGB", (8, 8), (5, 6, 7)).convert("P")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        raw = await codecs.decode(buf.getvalue(), ImageFormat.PNG)
        assert len(raw.data) == 8 * 8 * 4


# ============================================================================
# Encode
# ============================================================================

class TestEncode:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("fmt", [ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.WEBP])
    async def test_output_sniffs_as_requested_format(self, codecs, make_raw_image, fmt):
        data = await codecs.encode(make_raw_image(16, 8), fmt)
        assert detect_format(data) == fmt

    @requires_avif
    @pytest.mark.asyncio
    async def test_avif(self, codecs, make_raw_image):
        data = await codecs.encode(make_raw_image(16, 16), ImageFormat.AVIF)
        assert detect_format(data) == ImageFormat.AVIF

    @pytest.mark.asyncio
    async def test_jpeg_flattens_transparency_onto_white(self, codecs, make_raw_image):
        transparent = make_raw_image(8, 8, rgba=(0, 0, 0, 0))
        data = await codecs.encode(transparent, ImageFormat.JPEG)

        with Image.open(io.BytesIO(data)) as img:
            r, g, b = img.convert("RGB").getpixel((4, 4))
        assert min(r, g, b) > 240

    @pytest.mark.asyncio
    async def test_png_round_trip_is_lossless(self, codecs, make_raw_image):
        raw = make_raw_image(5, 3, rgba=(1, 2, 3, 4))
        decoded = await codecs.decode(await codecs.encode(raw, ImageFormat.PNG), ImageFormat.PNG)
        assert decoded.data == raw.data


# ============================================================================
# Resample
# ============================================================================

class TestResample:
    @pytest.mark.asyncio
    async def test_stretch(self, codecs, raw_image):
        out = await codecs.resample(raw_image, 40, 40, FitMethod.STRETCH)
        assert (out.width, out.height) == (40, 40)
        assert len(out.data) == 40 * 40 * 4

    @pytest.mark.asyncio
    async def test_crop_to_fill_keeps_center(self, codecs):
        # Left and right thirds red, middle green: a square crop keeps only green
        img = Image.new("RGBA", (90, 30), (255, 0, 0, 255))
        img.paste((0, 255, 0, 255), (30, 0, 60, 30))
        raw = RawImage(90, 30, img.tobytes())

        out = await codecs.resample(raw, 10, 10, FitMethod.CROP_TO_FILL)
        assert (out.width, out.height) == (10, 10)
        r, g, b, a = _pixel(out, 5, 5)
        assert g > 200 and r < 50

    @pytest.mark.asyncio
    async def test_upscale(self, codecs, make_raw_image):
        out = await codecs.resample(make_raw_image(2, 2), 20, 20, FitMethod.STRETCH)
        assert (out.width, out.height) == (20, 20)


# ============================================================================
# CodecInitializer
# ============================================================================

class TestCodecInitializer:
    @pytest.mark.asyncio
    async def test_initialises_once_under_concurrency(self):
        calls = []

        def init(max_pixels):
            calls.append(max_pixels)

        guard = CodecInitializer(PillowCodecs(), max_image_pixels=1234, init_func=init)
        assert guard.state is CodecInitState.NOT_STARTED

        results = await asyncio.gather(*(guard.get() for _ in range(10)))

        assert calls == [1234]
        assert guard.state is CodecInitState.READY
        assert guard.is_ready
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_failure_is_remembered_until_reset(self):
        calls = []

        def init(max_pixels):
            calls.append(max_pixels)
            if len(calls) == 1:
                raise CodecInitError("no avif")

        guard = CodecInitializer(PillowCodecs(), max_image_pixels=1, init_func=init)

        with pytest.raises(CodecInitError, match="no avif"):
            await guard.get()
        with pytest.raises(CodecInitError, match="no avif"):
            await guard.get()
        assert guard.state is CodecInitState.FAILED
        assert len(calls) == 1

        guard.reset()
        assert guard.state is CodecInitState.NOT_STARTED
        await guard.get()
        assert guard.is_ready
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_init_error(self):
        def init(max_pixels):
            raise RuntimeError("plugin exploded")

        guard = CodecInitializer(PillowCodecs(), max_image_pixels=1, init_func=init)
        with pytest.raises(CodecInitError, match="plugin exploded"):
            await guard.get()
        assert isinstance(guard.error.__cause__, RuntimeError)

    @requires_avif
    @pytest.mark.asyncio
    async def test_real_pillow_initialisation(self):
        previous = Image.MAX_IMAGE_PIXELS
        try:
            guard = CodecInitializer(PillowCodecs(), max_image_pixels=50_000_000)
            codecs = await guard.get()
            assert isinstance(codecs, PillowCodecs)
            assert Image.MAX_IMAGE_PIXELS == 50_000_000
        finally:
            Image.MAX_IMAGE_PIXELS = previous

    @requires_avif
    def test_no_missing_codecs(self):
        assert missing_codecs() == []
