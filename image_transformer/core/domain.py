# image_transformer/core/domain.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from image_transformer.core.dimensions import Dimensions
from image_transformer.core.formats import ImageFormat


# ============================================================================
# PIXEL DATA
# ============================================================================

@dataclass
class RawImage:
    """
    Decoded image: row-major RGBA, 8 bits per channel.
    Handed from step to step (decode -> resample -> encode), never shared.
    """
    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width < 1 or self.height < 1:
            raise ValueError(f"Image dimensions must be positive, got {self.width}x{self.height}")
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"RGBA buffer size mismatch: expected {expected} bytes, got {len(self.data)}"
            )

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(self.width, self.height)


# ============================================================================
# REQUEST-SCOPED VALUES
# ============================================================================

@dataclass(frozen=True)
class RemoteImage:
    """Fetched upstream bytes; the declared content type may be absent or wrong"""
    data: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class TransformedImage:
    data: bytes
    format: ImageFormat
    width: int
    height: int
    source_format: ImageFormat
    resampled: bool


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    thumb_hash: str  # base64
