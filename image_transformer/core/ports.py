# image_transformer/core/ports.py
from __future__ import annotations

from typing import Protocol

from image_transformer.core.domain import RawImage, RemoteImage
from image_transformer.core.formats import ImageFormat
from image_transformer.core.resize_policy import FitMethod


# ============================================================================
# ASYNC PROTOCOLS (implemented in image_transformer.infra)
# ============================================================================

class ImageSource(Protocol):
    async def fetch(self, url: str) -> RemoteImage:
        """
        Raises:
            InvalidUrlError, UnsupportedSchemeError: before any network I/O
            FetchImageError: upstream unreachable or non-OK
        """
        ...


class ImageCodecs(Protocol):
    """Each operation raises CodecError on failure"""

    async def decode(self, data: bytes, fmt: ImageFormat) -> RawImage: ...
    async def encode(self, image: RawImage, fmt: ImageFormat) -> bytes: ...
    async def resample(self, image: RawImage, width: int, height: int, fit: FitMethod) -> RawImage: ...


class CodecProvider(Protocol):
    async def get(self) -> ImageCodecs:
        """
        Return the initialised codec set, initialising at most once.

        Raises:
            CodecInitError
        """
        ...


class PlaceholderHasher(Protocol):
    async def __call__(self, image: RawImage, codecs: ImageCodecs) -> str:
        """Base64 placeholder hash of a decoded image"""
        ...
