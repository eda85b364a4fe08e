# tests/test_formats.py
"""Tests for image_transformer/core/formats.py: sniffing and format names."""
from __future__ import annotations

import pytest

from image_transformer.core.formats import (
    ImageFormat,
    content_type_for,
    detect_format,
    parse_output_format,
)

AVIF_HEADER = b"\x00\x00\x00\x1cftypavif\x00\x00\x00\x00mif1"


# ============================================================================
# Magic bytes
# ============================================================================

class TestDetectFormatSignatures:
    def test_jpeg(self, jpeg_bytes):
        assert detect_format(jpeg_bytes) == ImageFormat.JPEG

    def test_png(self, png_bytes):
        assert detect_format(png_bytes) == ImageFormat.PNG

    def test_webp(self, webp_bytes):
        assert detect_format(webp_bytes) == ImageFormat.WEBP

    def test_avif_brand(self):
        assert detect_format(AVIF_HEADER) == ImageFormat.AVIF

    @pytest.mark.parametrize("brand", [b"avis", b"av01"])
    def test_other_avif_brands(self, brand):
        data = b"\x00\x00\x00\x1cftyp" + brand + b"\x00" * 8
        assert detect_format(data) == ImageFormat.AVIF

    def test_heic_brand_is_not_avif(self):
        data = b"\x00\x00\x00\x1cftypheic" + b"\x00" * 8
        assert detect_format(data) is None

    def test_riff_without_webp_tag(self):
        assert detect_format(b"RIFF\x00\x00\x00\x00WAVEfmt ") is None

    @pytest.mark.parametrize("data", [b"", b"\xff", b"\xff\xd8"])
    def test_short_buffers_never_match(self, data):
        assert detect_format(data) is None

    def test_three_byte_jpeg_prefix(self):
        assert detect_format(b"\xff\xd8\xff") == ImageFormat.JPEG

    def test_truncated_png_signature(self):
        assert detect_format(b"\x89PNG\r\n") is None

    def test_garbage(self):
        assert detect_format(b"<html><body>not an image</body></html>") is None


# ============================================================================
# Declared content type
# ============================================================================

class TestDetectFormatContentType:
    def test_declared_type_wins_over_bytes(self, jpeg_bytes):
        assert detect_format(jpeg_bytes, "image/png") == ImageFormat.PNG

    def test_declared_type_with_parameters(self):
        assert detect_format(b"", "image/webp; charset=binary") == ImageFormat.WEBP

    def test_declared_type_case_insensitive(self):
        assert detect_format(b"", "IMAGE/AVIF") == ImageFormat.AVIF

    def test_image_jpg_alias(self):
        assert detect_format(b"", "image/jpg") == ImageFormat.JPEG

    def test_unknown_declared_type_falls_back_to_sniffing(self, png_bytes):
        assert detect_format(png_bytes, "application/octet-stream") == ImageFormat.PNG

    def test_unknown_declared_type_and_unknown_bytes(self):
        assert detect_format(b"GIF89a......", "image/gif") is None


# ============================================================================
# Names
# ============================================================================

class TestFormatNames:
    @pytest.mark.parametrize("fmt,expected", [
        (ImageFormat.JPEG, "image/jpeg"),
        (ImageFormat.PNG, "image/png"),
        (ImageFormat.WEBP, "image/webp"),
        (ImageFormat.AVIF, "image/avif"),
    ])
    def test_content_type_for(self, fmt, expected):
        assert content_type_for(fmt) == expected

    @pytest.mark.parametrize("value,expected", [
        ("jpeg", ImageFormat.JPEG),
        ("jpg", ImageFormat.JPEG),
        ("JPG", ImageFormat.JPEG),
        ("png", ImageFormat.PNG),
        (" webp ", ImageFormat.WEBP),
        ("avif", ImageFormat.AVIF),
    ])
    def test_parse_output_format(self, value, expected):
        assert parse_output_format(value) == expected

    @pytest.mark.parametrize("value", [None, "", "gif", "tiff"])
    def test_parse_output_format_rejects(self, value):
        assert parse_output_format(value) is None
