# image_transformer/transport/http_app.py
"""
HTTP surface of the image transformer.

Endpoints:
- GET /         resize + re-encode a remote image
- GET /meta/    width, height and ThumbHash of a remote image
- GET /proxy/   upstream bytes passed through unmodified
- GET /health   liveness
- GET /ready    readiness (codecs initialised)
- GET /metrics  in-process counters/histograms (when enabled)

Errors are always JSON: {"error": "..."} plus "upstream_status" for
upstream failures. Internals never reach the client.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from image_transformer.config import Settings, settings, validate_or_warn
from image_transformer.core.dimensions import DimensionRequest, parse_dimension_param
from image_transformer.core.errors import (
    CodecInitError,
    FetchImageError,
    InvalidRequestError,
    InvalidUrlError,
    TransformError,
    UnsupportedSchemeError,
    UpstreamFetchError,
)
from image_transformer.core.formats import ImageFormat, content_type_for, parse_output_format
from image_transformer.core.pipeline import ImagePipeline
from image_transformer.infra.codecs import CodecInitializer, PillowCodecs
from image_transformer.infra.http_client import close_all_sessions
from image_transformer.infra.image_fetcher import ImageFetcher, UpstreamResponse
from image_transformer.infra.logging_config import get_logger, setup_logging
from image_transformer.infra.metrics import ImageMetrics, get_metrics_collector
from image_transformer.infra.thumbhash import generate_thumbhash
from image_transformer.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

# Never forwarded by the pass-through endpoint
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})
# aiohttp already decoded the body; length is recomputed
DROPPED_PASSTHROUGH_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}

_ENDPOINT_NAMES = {
    "/": "transform",
    "/meta/": "meta",
    "/proxy/": "proxy",
}


# ============================================================================
# DEPENDENCY ROOT
# ============================================================================

def build_components(s: Settings) -> tuple[ImageFetcher, CodecInitializer, ImagePipeline]:
    """Wire fetcher, codec guard and pipeline from settings"""
    fetcher = ImageFetcher(
        max_size_bytes=s.max_source_size_bytes,
        proxy_endpoint=s.image_proxy_endpoint,
    )
    codec_initializer = CodecInitializer(
        PillowCodecs(
            jpeg_quality=s.jpeg_quality,
            webp_quality=s.webp_quality,
            avif_quality=s.avif_quality,
        ),
        max_image_pixels=s.max_image_pixels,
    )
    default_format = (
        None if s.default_output_format == "source" else ImageFormat(s.default_output_format)
    )
    pipeline = ImagePipeline(
        source=fetcher,
        codecs=codec_initializer,
        hasher=generate_thumbhash,
        default_format=default_format,
        max_target_pixels=s.max_image_pixels,
    )
    return fetcher, codec_initializer, pipeline


def get_pipeline(request: Request) -> ImagePipeline:
    return request.app.state.pipeline


def get_fetcher(request: Request) -> ImageFetcher:
    return request.app.state.fetcher


def get_codec_initializer(request: Request) -> CodecInitializer:
    return request.app.state.codec_initializer


def cache_control_header() -> dict[str, str]:
    return {"Cache-Control": f"public, max-age={settings.cache_max_age_seconds}"}


def passthrough_headers(upstream: UpstreamResponse) -> dict[str, str]:
    """Upstream headers minus hop-by-hop, with default type and our caching"""
    headers = {
        name: value
        for name, value in upstream.headers
        if name.lower() not in DROPPED_PASSTHROUGH_HEADERS
    }
    if upstream.header("Content-Type") is None:
        headers["Content-Type"] = "application/octet-stream"

    for name in [n for n in headers if n.lower() == "cache-control"]:
        del headers[name]
    headers.update(cache_control_header())
    return headers


def _require_url(request: Request) -> str:
    url = request.query_params.get("url")
    if not url:
        raise InvalidRequestError("Missing url parameter")
    return url


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting image transformer: env={settings.app_env}, "
        f"default_format={settings.default_output_format}, "
        f"proxy={'on' if settings.image_proxy_endpoint else 'off'}"
    )

    for warning in validate_or_warn(settings):
        logger.warning(f"Config: {warning}")

    fetcher, codec_initializer, pipeline = build_components(settings)
    fastapi_app.state.fetcher = fetcher
    fastapi_app.state.codec_initializer = codec_initializer
    fastapi_app.state.pipeline = pipeline

    if settings.warm_codecs_on_startup:
        try:
            await codec_initializer.get()
        except CodecInitError as exc:
            # Requests will report the failure; /ready returns 503
            logger.error(f"Codec warm-up failed: {exc}")

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Image Transformer",
    description="Fetch, resize and re-encode remote images",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(TransformError)
async def transform_error_handler(request: Request, exc: TransformError):
    """Map pipeline failures to their JSON error response"""
    endpoint = _ENDPOINT_NAMES.get(request.url.path, request.url.path)
    ImageMetrics.request_completed(endpoint, outcome=str(exc.status_code))
    ImageMetrics.stage_failed(exc.stage)

    content = {"error": exc.detail}
    upstream_status = getattr(exc, "upstream_status", None)
    if upstream_status is not None:
        content["upstream_status"] = upstream_status

    return JSONResponse(status_code=exc.status_code, content=content)


# ============================================================================
# IMAGE ENDPOINTS
# ============================================================================

@app.get("/")
async def transform_image(request: Request, pipeline: ImagePipeline = Depends(get_pipeline)):
    """
    Resize and re-encode a remote image.

    Query: url (required), width, height, format (jpeg|jpg|png|webp|avif)
    """
    url = _require_url(request)
    params = request.query_params

    output_format = None
    raw_format = params.get("format")
    if raw_format:
        output_format = parse_output_format(raw_format)
        if output_format is None:
            raise InvalidRequestError("Unsupported output format")

    dimensions = DimensionRequest(
        width=parse_dimension_param(params.get("width")),
        height=parse_dimension_param(params.get("height")),
    )

    with ImageMetrics.track_processing_time("transform"):
        result = await pipeline.transform(url, dimensions, output_format)

    ImageMetrics.request_completed("transform", outcome="ok")
    return Response(
        content=result.data,
        media_type=content_type_for(result.format),
        headers=cache_control_header(),
    )


@app.get("/meta/")
async def image_metadata(request: Request, pipeline: ImagePipeline = Depends(get_pipeline)):
    """Width, height and base64 ThumbHash of a remote image"""
    url = _require_url(request)

    with ImageMetrics.track_processing_time("meta"):
        meta = await pipeline.describe(url)

    ImageMetrics.request_completed("meta", outcome="ok")
    return JSONResponse(
        content={
            "width": meta.width,
            "height": meta.height,
            "thumbHash": meta.thumb_hash,
        },
        headers=cache_control_header(),
    )


@app.get("/proxy/")
async def proxy_image(request: Request, fetcher: ImageFetcher = Depends(get_fetcher)):
    """
    Pass-through fetch: upstream body returned unmodified.
    Usable as another deployment's image_proxy_endpoint.
    """
    url = _require_url(request)

    try:
        with ImageMetrics.track_processing_time("proxy"):
            upstream = await fetcher.download(url)
    except (InvalidUrlError, UnsupportedSchemeError) as exc:
        raise InvalidRequestError(str(exc), stage="url") from exc
    except FetchImageError as exc:
        logger.warning(f"Pass-through fetch failed: {exc} (status={exc.status})")
        raise UpstreamFetchError(str(exc), upstream_status=exc.status) from exc

    ImageMetrics.request_completed("proxy", outcome="ok")
    return Response(
        content=upstream.data,
        status_code=upstream.status,
        headers=passthrough_headers(upstream),
    )


# ============================================================================
# OPERATIONAL ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe"""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(codec_initializer: CodecInitializer = Depends(get_codec_initializer)):
    """Readiness probe: initialises codecs if nothing has yet"""
    try:
        await codec_initializer.get()
    except CodecInitError:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "codecs": codec_initializer.state.value},
        )

    return {"status": "healthy", "codecs": codec_initializer.state.value}


if settings.enable_metrics:
    @app.get("/metrics")
    def metrics():
        collector = get_metrics_collector()
        return collector.get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "image_transformer.transport.http_app:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
        date_header=False,
    )
