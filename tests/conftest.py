# tests/conftest.py
"""Pytest configuration and fixtures"""
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from image_transformer.core.domain import RawImage  # noqa: E402


def _encode(fmt: str, size: tuple[int, int], color, mode: str) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image_bytes():
    """Factory: encode a solid-color image in memory"""
    def factory(fmt: str = "JPEG", size: tuple[int, int] = (64, 32), color=(200, 40, 40), mode: str = "RGB") -> bytes:
        return _encode(fmt, size, color, mode)
    return factory


@pytest.fixture
def make_raw_image():
    """Factory: solid-color RawImage"""
    def factory(width: int, height: int, rgba=(10, 20, 30, 255)) -> RawImage:
        return RawImage(width=width, height=height, data=bytes(rgba) * (width * height))
    return factory


@pytest.fixture
def jpeg_bytes():
    """64x32 red JPEG"""
    return _encode("JPEG", (64, 32), (200, 40, 40), "RGB")


@pytest.fixture
def png_bytes():
    """64x32 semi-transparent PNG"""
    return _encode("PNG", (64, 32), (0, 128, 255, 128), "RGBA")


@pytest.fixture
def webp_bytes():
    return _encode("WEBP", (40, 40), (20, 200, 20), "RGB")


@pytest.fixture
def raw_image(make_raw_image):
    """100x50 opaque RawImage"""
    return make_raw_image(100, 50)
