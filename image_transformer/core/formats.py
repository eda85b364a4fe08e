# image_transformer/core/formats.py
"""
Image container format detection.

The declared Content-Type wins when it names a supported format;
otherwise the format is sniffed from magic bytes. Anything else is
"no format" (None), which callers treat as unsupported client input.
"""
from __future__ import annotations

from enum import Enum


class ImageFormat(str, Enum):
    """Supported container formats (closed set)"""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"


MIME_TO_FORMAT: dict[str, ImageFormat] = {
    "image/jpeg": ImageFormat.JPEG,
    "image/jpg": ImageFormat.JPEG,
    "image/png": ImageFormat.PNG,
    "image/webp": ImageFormat.WEBP,
    "image/avif": ImageFormat.AVIF,
}

FORMAT_TO_CONTENT_TYPE: dict[ImageFormat, str] = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.AVIF: "image/avif",
}

# Query-string aliases accepted for the output format
FORMAT_ALIASES: dict[str, ImageFormat] = {
    "jpeg": ImageFormat.JPEG,
    "jpg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
    "webp": ImageFormat.WEBP,
    "avif": ImageFormat.AVIF,
}

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
AVIF_BRANDS = frozenset({b"avif", b"avis", b"av01"})


def _format_from_content_type(content_type: str | None) -> ImageFormat | None:
    if not content_type:
        return None
    normalised = content_type.split(";", 1)[0].strip().lower()
    return MIME_TO_FORMAT.get(normalised)


def _is_jpeg(data: bytes) -> bool:
    return len(data) >= 3 and data[:3] == JPEG_MAGIC


def _is_png(data: bytes) -> bool:
    return len(data) >= 8 and data[:8] == PNG_MAGIC


def _is_webp(data: bytes) -> bool:
    # RIFF chunk size at offset 4 is not validated
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _is_avif(data: bytes) -> bool:
    return len(data) >= 12 and data[4:8] == b"ftyp" and data[8:12] in AVIF_BRANDS


# Evaluated in order, first match wins
_SIGNATURES = (
    (_is_jpeg, ImageFormat.JPEG),
    (_is_png, ImageFormat.PNG),
    (_is_webp, ImageFormat.WEBP),
    (_is_avif, ImageFormat.AVIF),
)


def detect_format(data: bytes, content_type: str | None = None) -> ImageFormat | None:
    """
    Classify a buffer as one of the supported formats.

    A recognised declared content type takes priority over sniffing.
    Buffers too short for a signature simply don't match it.
    """
    declared = _format_from_content_type(content_type)
    if declared is not None:
        return declared

    for matches, fmt in _SIGNATURES:
        if matches(data):
            return fmt

    return None


def content_type_for(fmt: ImageFormat) -> str:
    return FORMAT_TO_CONTENT_TYPE[fmt]


def parse_output_format(value: str | None) -> ImageFormat | None:
    """Map a `format` query value (jpeg/jpg/png/webp/avif) to ImageFormat"""
    if value is None:
        return None
    return FORMAT_ALIASES.get(value.strip().lower())
