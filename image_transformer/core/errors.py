# image_transformer/core/errors.py
"""
Typed errors for the transformation pipeline.

Decision functions and adapters raise the low-level errors below. The
pipeline catches them at the call site and re-raises exactly one
``TransformError`` subtype, which the transport layer turns into a JSON
response without embedding any mapping logic in route handlers.
"""
from __future__ import annotations


# ============================================================================
# LOW-LEVEL (raised by decision functions and adapters)
# ============================================================================

class InvalidUrlError(ValueError):
    """URL could not be parsed"""
    pass


class UnsupportedSchemeError(ValueError):
    """URL scheme is not http/https"""
    pass


class InvalidDimensionsError(ValueError):
    """Neither width nor height is a positive finite number"""
    pass


class FetchImageError(Exception):
    """
    Upstream fetch failed.

    Attributes:
        status: Upstream HTTP status, when a response was received.
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class CodecError(Exception):
    """Decode, encode or resample failed"""
    pass


class CodecInitError(Exception):
    """Codec set could not be initialised"""
    pass


# ============================================================================
# CLIENT-FACING (one per pipeline failure class)
# ============================================================================

class TransformError(Exception):
    """Base class for pipeline failures surfaced to the client."""

    status_code: int = 500
    stage: str = "internal"

    def __init__(self, detail: str = "Internal error", stage: str | None = None):
        self.detail = detail
        if stage is not None:
            self.stage = stage
        super().__init__(detail)


class InvalidRequestError(TransformError):
    """Bad client input (400)."""

    status_code = 400
    stage = "request"


class UnsupportedFormatError(TransformError):
    """Source bytes are not a supported image format (415)."""

    status_code = 415
    stage = "sniff"


class UpstreamFetchError(TransformError):
    """Upstream unreachable or returned a non-OK status (502)."""

    status_code = 502
    stage = "fetch"

    def __init__(self, detail: str = "Unexpected error fetching image", upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(detail)


class UnprocessableImageError(TransformError):
    """Content could not be decoded or resampled (422)."""

    status_code = 422
    stage = "decode"


class ImageCodecError(TransformError):
    """Internal codec fault: encode, hashing or initialisation (500)."""

    status_code = 500
    stage = "encode"
