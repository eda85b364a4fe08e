# image_transformer/core/fetch_policy.py
"""
Outbound request policy for upstream image fetches.

Security / compatibility:
- Only http and https URLs are fetched (rejected before any network I/O)
- Fixed desktop-browser User-Agent and image Accept header
- Referer/Origin spoofing for hosts with hotlink protection, chosen from
  an ordered rule table (first match wins, rules are never combined)

The functions here are pure: they build the request, they never send it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union
from urllib.parse import SplitResult, urlencode, urlsplit, urlunsplit

from image_transformer.core.errors import InvalidUrlError, UnsupportedSchemeError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
ACCEPT_HEADER = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"

ALLOWED_SCHEMES = ("http", "https")

# Schemes with a tuple origin; everything else serialises to "null"
_TUPLE_ORIGIN_SCHEMES = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

OPAQUE_ORIGIN = "null"


@dataclass(frozen=True)
class RefererRule:
    pattern: re.Pattern
    referer: str
    force: bool = False  # set Origin even when the derived origin is opaque


@dataclass(frozen=True)
class Matched:
    referer: str
    force: bool = False


@dataclass(frozen=True)
class Unmatched:
    pass


RuleOutcome = Union[Matched, Unmatched]


# Host-specific overrides for providers that block direct hotlinks
REFERER_RULES: tuple[RefererRule, ...] = (
    RefererRule(re.compile(r"^https://\w+\.sinaimg\.cn"), "https://weibo.com"),
    RefererRule(re.compile(r"^https://i\.pximg\.net"), "https://www.pixiv.net"),
    RefererRule(re.compile(r"^https://cdnfile\.sspai\.com"), "https://sspai.com"),
    RefererRule(re.compile(r"^https://(?:\w|-)+\.cdninstagram\.com"), "https://www.instagram.com"),
    RefererRule(re.compile(r"^https://sp1\.piokok\.com"), "https://www.piokok.com", force=True),
    RefererRule(re.compile(r"^https?://[\w-]+\.xhscdn\.com"), "https://www.xiaohongshu.com"),
)


@dataclass(frozen=True)
class UpstreamRequest:
    url: str
    headers: dict[str, str] = field(default_factory=dict)


def _split(url: str) -> SplitResult:
    try:
        parts = urlsplit(url.strip())
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise InvalidUrlError(f"Invalid image url: {e}") from e
    if not parts.scheme:
        raise InvalidUrlError("Invalid image url")
    return parts


def _origin_of(parts: SplitResult) -> str:
    scheme = parts.scheme.lower()
    default_port = _TUPLE_ORIGIN_SCHEMES.get(scheme)
    if default_port is None or not parts.hostname:
        return OPAQUE_ORIGIN

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and port != default_port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def url_origin(url: str) -> str:
    """
    Serialise the origin of a URL the way browsers do
    ("https://host[:port]", or "null" for opaque origins).

    Raises:
        InvalidUrlError: If the string is not an absolute URL
    """
    return _origin_of(_split(url))


def parse_image_url(url: str) -> SplitResult:
    """
    Validate a client-supplied image URL.

    Raises:
        InvalidUrlError: If the URL does not parse or has no host
        UnsupportedSchemeError: If the scheme is not http/https
    """
    parts = _split(url)
    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise UnsupportedSchemeError("Only http and https protocols are supported")
    if not parts.hostname:
        raise InvalidUrlError("Invalid image url")

    # Canonical href for rule matching: lowercase scheme and host, no fragment
    userinfo, at, hostport = parts.netloc.rpartition("@")
    netloc = f"{userinfo}{at}{hostport.lower()}"
    return SplitResult(scheme, netloc, parts.path or "/", parts.query, "")


def match_referer_rule(href: str, rules: tuple[RefererRule, ...] = REFERER_RULES) -> RuleOutcome:
    for rule in rules:
        if rule.pattern.search(href):
            return Matched(referer=rule.referer, force=rule.force)
    return Unmatched()


def resolve_referer_headers(parts: SplitResult, rules: tuple[RefererRule, ...] = REFERER_RULES) -> dict[str, str]:
    """
    Pick Referer/Origin for a target URL.

    Without a matching rule the target's own origin is used. The Origin
    header is omitted when the derived origin is opaque ("null"), unless
    the rule is forced, in which case the referer string is sent instead.
    """
    outcome = match_referer_rule(urlunsplit(parts), rules)

    if isinstance(outcome, Matched):
        referer = outcome.referer
        force = outcome.force
    else:
        referer = _origin_of(parts)
        force = False

    try:
        origin = url_origin(referer)
    except InvalidUrlError:
        origin = referer

    headers = {"Referer": referer}
    if origin != OPAQUE_ORIGIN:
        headers["Origin"] = origin
    elif force:
        headers["Origin"] = referer
    return headers


def build_upstream_request(url: str, rules: tuple[RefererRule, ...] = REFERER_RULES) -> UpstreamRequest:
    """
    Validate the URL and assemble the outbound request.

    Raises:
        InvalidUrlError, UnsupportedSchemeError
    """
    parts = parse_image_url(url)
    headers = {
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": ACCEPT_HEADER,
    }
    headers.update(resolve_referer_headers(parts, rules))
    return UpstreamRequest(url=urlunsplit(parts), headers=headers)


def route_through_proxy(request: UpstreamRequest, proxy_endpoint: str) -> UpstreamRequest:
    """
    Re-target a request at a second-hop fetch endpoint (``?url=<target>``).

    The proxy applies its own Referer/Origin policy, so only the browser
    identity headers are forwarded.

    Raises:
        InvalidUrlError: If the proxy endpoint is not an absolute http(s) URL
    """
    try:
        proxy = parse_image_url(proxy_endpoint)
    except UnsupportedSchemeError as e:
        raise InvalidUrlError(str(e)) from e

    query = proxy.query
    extra = urlencode({"url": request.url})
    query = f"{query}&{extra}" if query else extra

    headers = {
        k: v for k, v in request.headers.items()
        if k not in ("Referer", "Origin")
    }
    return UpstreamRequest(url=urlunsplit(proxy._replace(query=query)), headers=headers)
