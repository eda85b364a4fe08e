# image_transformer/infra/codecs.py
"""
Pillow-backed pixel codecs.

- Decode: any supported format -> RawImage (RGBA, 8 bits per channel)
- Encode: RawImage -> JPEG / PNG / WEBP / AVIF bytes
- Resample: bilinear stretch, or center crop to the target aspect first
- All Pillow work runs in the default executor (CPU bound)

CodecInitializer is the one-time initialization guard: plugin
registration and the decompression-bomb ceiling are applied once per
process, concurrent callers share the same attempt, and a failure is
remembered until reset().
"""
from __future__ import annotations

import asyncio
import io
from enum import Enum
from functools import partial
from typing import Callable

from PIL import Image, ImageFile, ImageOps, features

from image_transformer.core.domain import RawImage
from image_transformer.core.errors import CodecError, CodecInitError
from image_transformer.core.formats import ImageFormat
from image_transformer.core.resize_policy import FitMethod
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

# Reject truncated uploads instead of decoding partial images
ImageFile.LOAD_TRUNCATED_IMAGES = False

# Pillow plugin names per format
PIL_FORMAT_NAMES: dict[ImageFormat, str] = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.AVIF: "AVIF",
}

# Compiled-in modules the plugins depend on
_REQUIRED_FEATURES = {
    ImageFormat.WEBP: "webp",
    ImageFormat.AVIF: "avif",
}

RESAMPLE_FILTER = Image.Resampling.BILINEAR
JPEG_BACKGROUND = (255, 255, 255)


def _to_pil(image: RawImage) -> Image.Image:
    return Image.frombytes("RGBA", (image.width, image.height), image.data)


def _from_pil(img: Image.Image) -> RawImage:
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return RawImage(width=img.width, height=img.height, data=img.tobytes())


class PillowCodecs:
    """Decode/encode/resample tables, total over ImageFormat"""

    def __init__(self, *, jpeg_quality: int = 75, webp_quality: int = 75, avif_quality: int = 60):
        self.jpeg_quality = jpeg_quality
        self.webp_quality = webp_quality
        self.avif_quality = avif_quality

        self._encoders: dict[ImageFormat, Callable[[Image.Image, io.BytesIO], None]] = {
            ImageFormat.JPEG: self._save_jpeg,
            ImageFormat.PNG: self._save_png,
            ImageFormat.WEBP: self._save_webp,
            ImageFormat.AVIF: self._save_avif,
        }

    # ------------------------------------------------------------------
    # Encoders (sync, executor side)
    # ------------------------------------------------------------------

    def _save_jpeg(self, img: Image.Image, out: io.BytesIO) -> None:
        # JPEG has no alpha channel: flatten onto white
        background = Image.new("RGB", img.size, JPEG_BACKGROUND)
        background.paste(img, mask=img.getchannel("A"))
        background.save(out, format="JPEG", quality=self.jpeg_quality)

    @staticmethod
    def _save_png(img: Image.Image, out: io.BytesIO) -> None:
        img.save(out, format="PNG")

    def _save_webp(self, img: Image.Image, out: io.BytesIO) -> None:
        img.save(out, format="WEBP", quality=self.webp_quality)

    def _save_avif(self, img: Image.Image, out: io.BytesIO) -> None:
        img.save(out, format="AVIF", quality=self.avif_quality)

    # ------------------------------------------------------------------
    # Sync implementations
    # ------------------------------------------------------------------

    @staticmethod
    def decode_sync(data: bytes, fmt: ImageFormat) -> RawImage:
        try:
            with Image.open(io.BytesIO(data), formats=[PIL_FORMAT_NAMES[fmt]]) as img:
                img.load()
                return _from_pil(img)
        except Image.DecompressionBombError as e:
            raise CodecError(f"Decompression bomb rejected: {e}") from e
        except Exception as e:
            raise CodecError(f"{fmt.value} decode failed: {type(e).__name__}: {e}") from e

    def encode_sync(self, image: RawImage, fmt: ImageFormat) -> bytes:
        try:
            out = io.BytesIO()
            self._encoders[fmt](_to_pil(image), out)
            return out.getvalue()
        except Exception as e:
            raise CodecError(f"{fmt.value} encode failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def resample_sync(image: RawImage, width: int, height: int, fit: FitMethod) -> RawImage:
        try:
            img = _to_pil(image)
            if fit is FitMethod.CROP_TO_FILL:
                resized = ImageOps.fit(img, (width, height), method=RESAMPLE_FILTER, centering=(0.5, 0.5))
            else:
                resized = img.resize((width, height), resample=RESAMPLE_FILTER)
            return _from_pil(resized)
        except Exception as e:
            raise CodecError(
                f"resample to {width}x{height} ({fit.value}) failed: {type(e).__name__}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Async API (ImageCodecs protocol)
    # ------------------------------------------------------------------

    @staticmethod
    async def _run(func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def decode(self, data: bytes, fmt: ImageFormat) -> RawImage:
        return await self._run(self.decode_sync, data, fmt)

    async def encode(self, image: RawImage, fmt: ImageFormat) -> bytes:
        return await self._run(self.encode_sync, image, fmt)

    async def resample(self, image: RawImage, width: int, height: int, fit: FitMethod) -> RawImage:
        return await self._run(self.resample_sync, image, width, height, fit)


# ============================================================================
# ONE-TIME INITIALIZATION
# ============================================================================

class CodecInitState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    FAILED = "failed"


def missing_codecs() -> list[str]:
    """Return formats lacking a registered decoder or encoder"""
    Image.init()

    missing = []
    for fmt, pil_name in PIL_FORMAT_NAMES.items():
        feature = _REQUIRED_FEATURES.get(fmt)
        if feature is not None and not features.check(feature):
            missing.append(f"{fmt.value} (library support not compiled in)")
            continue
        if pil_name not in Image.OPEN:
            missing.append(f"{fmt.value} (no decoder)")
        elif pil_name not in Image.SAVE:
            missing.append(f"{fmt.value} (no encoder)")
    return missing


def initialise_pillow(max_image_pixels: int) -> None:
    """
    Register plugins and apply the pixel ceiling.

    Raises:
        CodecInitError: If any ImageFormat lacks a decoder or encoder
    """
    Image.MAX_IMAGE_PIXELS = max_image_pixels

    missing = missing_codecs()
    if missing:
        raise CodecInitError(f"Missing image codecs: {', '.join(missing)}")

    logger.info(
        f"Pillow {Image.__version__} codecs ready: "
        f"{', '.join(PIL_FORMAT_NAMES.values())} (max_pixels={max_image_pixels:,})"
    )


class CodecInitializer:
    """
    Explicit once-only codec setup, shared by every request.

    ``get()`` returns the initialised PillowCodecs handle; the first caller
    starts initialization and concurrent callers await the same attempt.
    """

    def __init__(
        self,
        codecs: PillowCodecs,
        *,
        max_image_pixels: int,
        init_func: Callable[[int], None] = initialise_pillow,
    ) -> None:
        self._codecs = codecs
        self._max_image_pixels = max_image_pixels
        self._init_func = init_func
        self._state = CodecInitState.NOT_STARTED
        self._task: asyncio.Task | None = None
        self._error: CodecInitError | None = None

    @property
    def state(self) -> CodecInitState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is CodecInitState.READY

    @property
    def error(self) -> CodecInitError | None:
        return self._error

    async def _initialise(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._init_func, self._max_image_pixels)
        except CodecInitError as e:
            self._error = e
        except Exception as e:
            self._error = CodecInitError(f"Codec initialisation crashed: {type(e).__name__}: {e}")
            self._error.__cause__ = e

        if self._error is not None:
            self._state = CodecInitState.FAILED
            logger.error(f"Codec initialisation failed: {self._error}")
            raise self._error

        self._state = CodecInitState.READY

    async def get(self) -> PillowCodecs:
        """
        Raises:
            CodecInitError: Initialization failed (now or on an earlier attempt)
        """
        if self._state is CodecInitState.READY:
            return self._codecs
        if self._state is CodecInitState.FAILED:
            raise self._error

        if self._task is None:
            self._state = CodecInitState.IN_PROGRESS
            self._task = asyncio.create_task(self._initialise())

        # Shielded so one cancelled request does not abort the shared attempt
        await asyncio.shield(self._task)
        return self._codecs

    def reset(self) -> None:
        """Forget a previous outcome; the next get() initialises again"""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._error = None
        self._state = CodecInitState.NOT_STARTED
