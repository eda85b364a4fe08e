# image_transformer/core/pipeline.py
"""
Request orchestration for the transform and metadata endpoints.

Transform:  fetch -> codecs -> sniff -> decode -> resolve -> fit -> resample -> encode
Metadata:   fetch -> codecs -> sniff -> decode -> placeholder hash

Single pass, fail fast, no retries: the HTTP caller owns retry policy.
Every collaborator failure is caught at its call site and re-raised as
exactly one TransformError subtype. Internal faults are logged with the
traceback; the client only sees a generic message.
"""
from __future__ import annotations

from image_transformer.core.dimensions import DimensionRequest, Dimensions, resolve_dimensions
from image_transformer.core.domain import ImageMetadata, RawImage, RemoteImage, TransformedImage
from image_transformer.core.errors import (
    CodecError,
    CodecInitError,
    FetchImageError,
    ImageCodecError,
    InvalidDimensionsError,
    InvalidRequestError,
    InvalidUrlError,
    UnprocessableImageError,
    UnsupportedFormatError,
    UnsupportedSchemeError,
    UpstreamFetchError,
)
from image_transformer.core.formats import ImageFormat, detect_format
from image_transformer.core.ports import CodecProvider, ImageCodecs, ImageSource, PlaceholderHasher
from image_transformer.core.resize_policy import choose_fit_method, is_noop_resize
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)


class ImagePipeline:
    """
    Stateless orchestrator; collaborators are injected by the app root.

    ``default_format`` of None keeps the sniffed source format when the
    client does not ask for one. ``max_target_pixels`` caps the resize
    target (None disables the check).
    """

    def __init__(
        self,
        *,
        source: ImageSource,
        codecs: CodecProvider,
        hasher: PlaceholderHasher,
        default_format: ImageFormat | None = ImageFormat.WEBP,
        max_target_pixels: int | None = None,
    ) -> None:
        self.source = source
        self.codecs = codecs
        self.hasher = hasher
        self.default_format = default_format
        self.max_target_pixels = max_target_pixels

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch(self, url: str) -> RemoteImage:
        try:
            return await self.source.fetch(url)
        except (InvalidUrlError, UnsupportedSchemeError) as e:
            logger.info(f"Rejected image url: {e}")
            raise InvalidRequestError(str(e), stage="url") from e
        except FetchImageError as e:
            logger.warning(f"Upstream fetch failed: {e} (status={e.status})")
            raise UpstreamFetchError(str(e), upstream_status=e.status) from e
        except Exception as e:
            logger.error(f"Unexpected error fetching image: {type(e).__name__}: {e}", exc_info=True)
            raise UpstreamFetchError("Unexpected error fetching image") from e

    async def _codecs(self) -> ImageCodecs:
        try:
            return await self.codecs.get()
        except CodecInitError as e:
            logger.error(f"Failed to initialise codecs: {e}", exc_info=True)
            raise ImageCodecError("Failed to prepare image codecs", stage="codec_init") from e

    @staticmethod
    def _sniff(remote: RemoteImage) -> ImageFormat:
        fmt = detect_format(remote.data, remote.content_type)
        if fmt is None:
            logger.info(
                f"Unsupported source format: content_type={remote.content_type}, "
                f"size={len(remote.data)}"
            )
            raise UnsupportedFormatError("Unsupported or unrecognised image format")
        return fmt

    @staticmethod
    async def _decode(codecs: ImageCodecs, remote: RemoteImage, fmt: ImageFormat) -> RawImage:
        try:
            return await codecs.decode(remote.data, fmt)
        except CodecError as e:
            logger.error(f"Failed to decode {fmt.value} image: {e}", exc_info=True)
            raise UnprocessableImageError("Failed to decode source image", stage="decode") from e

    def _resolve(self, source: Dimensions, request: DimensionRequest) -> Dimensions:
        try:
            target = resolve_dimensions(source, request)
        except InvalidDimensionsError as e:
            raise InvalidRequestError(str(e), stage="dimensions") from e

        # Pillow only guards decode; the resample output needs its own ceiling
        if self.max_target_pixels is not None and target.width * target.height > self.max_target_pixels:
            logger.info(
                f"Rejected resize target {target.width}x{target.height}: "
                f"exceeds {self.max_target_pixels} pixels"
            )
            raise InvalidRequestError("Requested dimensions are too large", stage="dimensions")
        return target

    @staticmethod
    async def _resize(codecs: ImageCodecs, image: RawImage, target: Dimensions) -> RawImage:
        if is_noop_resize(image.dimensions, target):
            return image

        fit = choose_fit_method(image.dimensions, target)
        logger.debug(
            f"Resampling {image.width}x{image.height} -> {target.width}x{target.height} ({fit.value})"
        )
        try:
            return await codecs.resample(image, target.width, target.height, fit)
        except CodecError as e:
            logger.error(f"Failed to resize image: {e}", exc_info=True)
            raise UnprocessableImageError(
                "Unable to resize image with the given parameters", stage="resample"
            ) from e

    @staticmethod
    async def _encode(codecs: ImageCodecs, image: RawImage, fmt: ImageFormat) -> bytes:
        try:
            return await codecs.encode(image, fmt)
        except CodecError as e:
            logger.error(f"Failed to encode {fmt.value} image: {e}", exc_info=True)
            raise ImageCodecError("Failed to encode resized image", stage="encode") from e

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    async def transform(
        self,
        url: str,
        request: DimensionRequest,
        output_format: ImageFormat | None = None,
    ) -> TransformedImage:
        """
        Fetch, resize and re-encode a remote image.

        Raises:
            TransformError: One subtype per failing stage
        """
        remote = await self._fetch(url)
        codecs = await self._codecs()
        source_format = self._sniff(remote)
        decoded = await self._decode(codecs, remote, source_format)
        target = self._resolve(decoded.dimensions, request)
        resized = await self._resize(codecs, decoded, target)

        target_format = output_format or self.default_format or source_format
        encoded = await self._encode(codecs, resized, target_format)

        logger.info(
            f"Transformed image: {source_format.value} {decoded.width}x{decoded.height} -> "
            f"{target_format.value} {resized.width}x{resized.height}, {len(encoded)} bytes"
        )

        return TransformedImage(
            data=encoded,
            format=target_format,
            width=resized.width,
            height=resized.height,
            source_format=source_format,
            resampled=resized is not decoded,
        )

    async def describe(self, url: str) -> ImageMetadata:
        """
        Decode a remote image and return its size plus a placeholder hash.

        Raises:
            TransformError: One subtype per failing stage
        """
        remote = await self._fetch(url)
        codecs = await self._codecs()
        source_format = self._sniff(remote)
        decoded = await self._decode(codecs, remote, source_format)

        try:
            thumb_hash = await self.hasher(decoded, codecs)
        except Exception as e:
            logger.error(f"Failed to generate thumbhash: {type(e).__name__}: {e}", exc_info=True)
            raise ImageCodecError("Unable to generate thumbhash", stage="thumbhash") from e

        return ImageMetadata(width=decoded.width, height=decoded.height, thumb_hash=thumb_hash)
