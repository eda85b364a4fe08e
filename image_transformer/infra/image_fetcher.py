# image_transformer/infra/image_fetcher.py
"""
Upstream image download over the shared aiohttp session.

Request shape (headers, Referer/Origin spoofing, scheme checks) comes from
core.fetch_policy; this module only performs the I/O:
- Redirects are followed automatically
- Any final status >= 400 is an upstream failure carrying that status
- Declared and actual body size are capped (max_source_size_mb)
- Optional second-hop proxy (image_proxy_endpoint); its JSON error body
  (`error`, `upstream_status`) is kept when the hop fails
- No retries: the HTTP caller owns retry policy
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlsplit

import aiohttp

from image_transformer.core.domain import RemoteImage
from image_transformer.core.errors import FetchImageError, InvalidUrlError
from image_transformer.core.fetch_policy import (
    UpstreamRequest,
    build_upstream_request,
    route_through_proxy,
)
from image_transformer.infra.http_client import get_fetcher_session
from image_transformer.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class UpstreamResponse:
    """Final upstream response after redirects"""
    status: int
    reason: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    data: bytes = b""

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


class ImageFetcher:
    """
    Fetches remote images for the pipeline and the pass-through endpoint.

    ``session_factory`` returns the aiohttp session to use (the shared
    fetcher session by default) so tests can inject a fake.
    """

    def __init__(
        self,
        *,
        max_size_bytes: int,
        proxy_endpoint: str | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] = get_fetcher_session,
    ) -> None:
        self.max_size_bytes = max_size_bytes
        self.proxy_endpoint = proxy_endpoint
        self._session_factory = session_factory

    def prepare(self, url: str) -> UpstreamRequest:
        """
        Build the outbound request (validation happens here, before I/O).

        Raises:
            InvalidUrlError, UnsupportedSchemeError: bad client URL
            FetchImageError: misconfigured proxy endpoint
        """
        request = build_upstream_request(url)
        if not self.proxy_endpoint:
            return request

        try:
            return route_through_proxy(request, self.proxy_endpoint)
        except InvalidUrlError as e:
            logger.error(f"Invalid IMAGE_PROXY endpoint {self.proxy_endpoint!r}: {e}")
            raise FetchImageError("Invalid IMAGE_PROXY endpoint") from e

    async def _read_body(self, response: aiohttp.ClientResponse) -> bytes:
        declared = response.content_length
        if declared is not None and declared > self.max_size_bytes:
            raise FetchImageError("Source image too large")

        chunks = []
        total = 0
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            total += len(chunk)
            if total > self.max_size_bytes:
                raise FetchImageError("Source image too large")
            chunks.append(chunk)
        return b"".join(chunks)

    async def _proxy_error(self, response: aiohttp.ClientResponse) -> FetchImageError:
        """
        Error for a failed second hop.

        The proxy answers failures with `{"error": ..., "upstream_status": ...}`;
        fall back to a generic message when the body is not that shape.
        """
        message = "Failed to fetch image via proxy"
        status = response.status
        try:
            body = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError):
            body = None

        if isinstance(body, dict):
            if isinstance(body.get("error"), str) and body["error"]:
                message = body["error"]
            if isinstance(body.get("upstream_status"), int):
                status = body["upstream_status"]
        return FetchImageError(message, status)

    async def download(self, url: str) -> UpstreamResponse:
        """
        Perform the upstream GET and return the final response.

        Raises:
            InvalidUrlError, UnsupportedSchemeError: before any network I/O
            FetchImageError: unreachable upstream, status >= 400, oversized body
        """
        request = self.prepare(url)
        log_ctx = LogContext(logger, upstream_host=urlsplit(request.url).hostname)
        log_ctx.debug(f"Fetching upstream image (proxied={bool(self.proxy_endpoint)})")

        session = self._session_factory()
        try:
            async with session.get(
                request.url,
                headers=request.headers,
                allow_redirects=True,
            ) as response:
                if not response.ok:
                    log_ctx.warning(f"Upstream returned {response.status} {response.reason}")
                    if self.proxy_endpoint:
                        raise await self._proxy_error(response)
                    raise FetchImageError(
                        f"Failed to fetch image: {response.reason or response.status}",
                        response.status,
                    )

                data = await self._read_body(response)
                headers = [(k, v) for k, v in response.headers.items()]

                log_ctx.info(
                    f"Upstream image fetched: status={response.status}, {len(data)} bytes, "
                    f"content_type={response.headers.get('Content-Type')}"
                )

                return UpstreamResponse(
                    status=response.status,
                    reason=response.reason or "",
                    headers=headers,
                    data=data,
                )

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_ctx.warning(f"Upstream request failed: {type(e).__name__}: {e}")
            raise FetchImageError("Unable to reach upstream host") from e

    async def fetch(self, url: str) -> RemoteImage:
        response = await self.download(url)
        return RemoteImage(data=response.data, content_type=response.header("Content-Type"))
