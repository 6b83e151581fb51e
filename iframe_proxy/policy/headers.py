"""
Header policy for both directions of the trust boundary.

Outbound, requests are scrubbed of anything revealing the proxy and dressed
as a real browser. Inbound, the origin's anti-framing headers are removed,
CORS is opened up and cookies are remapped onto the proxy origin.
"""

import logging
import posixpath
from typing import Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import httpx

from iframe_proxy.content.mime import extract_mime_type
from iframe_proxy.policy.cdn_evasion import cdn_evasion_profile
from iframe_proxy.policy.cookie_store import CookieStoreBase
from iframe_proxy.policy.cookies import (
    cookie_domain,
    map_request_cookies,
    record_set_cookies,
)
from iframe_proxy.policy.fingerprints import FingerprintSource
from iframe_proxy.urls import unproxy_url

logger = logging.getLogger("uvicorn.error")

HeaderPairs = Union[httpx.Headers, Dict[str, str], Iterable[Tuple[str, str]]]

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that would tell the origin a proxy sits in between
PROXY_REVEALING_HEADERS = {
    "forwarded",
    "via",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-port",
    "x-forwarded-prefix",
    "x-forwarded-proto",
    "x-forwarded-server",
    "x-real-ip",
    "x-client-ip",
    "x-original-url",
    "x-rewrite-url",
    "x-proxy-request",
    "x-scheme",
}

# Recomputed or replaced on the way out
_OUTBOUND_MANAGED = {"host", "content-length", "cookie", "referer", "origin"}

# Fingerprint values always win over what the browser sent for these
_FINGERPRINT_OWNED = {
    "user-agent",
    "accept-language",
    "accept-encoding",
    "sec-ch-ua",
    "sec-ch-ua-mobile",
    "sec-ch-ua-platform",
    "sec-ch-ua-full-version-list",
}

CSP_HEADERS = {"content-security-policy", "content-security-policy-report-only"}

CORS_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET,POST,PUT,DELETE,OPTIONS,PATCH"),
    (
        "Access-Control-Allow-Headers",
        "Content-Type, Authorization, X-Requested-With, Accept, Origin",
    ),
    ("Access-Control-Allow-Credentials", "true"),
)

# Canonical types for assets an origin mis-serves as text/html
EXTENSION_CONTENT_TYPES = {
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".css": "text/css",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".ico": "image/x-icon",
}


def header_pairs(headers: HeaderPairs) -> List[Tuple[str, str]]:
    """Flatten any header container into (name, value) pairs, keeping repeats."""
    if isinstance(headers, httpx.Headers):
        return list(headers.multi_items())
    if hasattr(headers, "items"):
        return list(headers.items())
    return list(headers)


def parse_csp(value: str) -> Dict[str, List[str]]:
    """Split a CSP header into an ordered directive -> sources map."""
    directives: Dict[str, List[str]] = {}
    for directive in value.split(";"):
        tokens = directive.split()
        if not tokens:
            continue
        name = tokens[0].lower()
        # First occurrence wins, as in browsers
        if name not in directives:
            directives[name] = tokens[1:]
    return directives


def build_csp(directives: Dict[str, List[str]]) -> str:
    return "; ".join(
        " ".join([name, *sources]) for name, sources in directives.items()
    )


def strip_frame_ancestors(value: str) -> Optional[str]:
    """Drop frame-ancestors from a CSP value; None when nothing is left."""
    directives = parse_csp(value)
    if "frame-ancestors" not in directives:
        return value
    directives.pop("frame-ancestors")
    return build_csp(directives) or None


def fix_content_type(content_type: str, path: str) -> str:
    """Correct a text/html declaration that the request path's extension contradicts."""
    if extract_mime_type(content_type) != "text/html":
        return content_type
    extension = posixpath.splitext(urlsplit(path).path)[1].lower()
    return EXTENSION_CONTENT_TYPES.get(extension, content_type)


def _rewrite_referer(referer: str, fingerprints: FingerprintSource) -> str:
    original = unproxy_url(referer)
    if original is not None:
        return original
    return fingerprints.next_referer()


def _origin_of(url: str) -> Optional[str]:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def negotiate_accept_encoding(offered: str, accepted: str) -> str:
    """
    Keep the offered content codings the browser also accepts.

    Streamed bodies reach the browser with the origin's Content-Encoding,
    so the origin must not pick a coding the browser cannot decode.
    """
    weights: Dict[str, float] = {}
    for item in accepted.split(","):
        coding, _, params = item.strip().partition(";")
        coding = coding.strip().lower()
        if not coding:
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key.lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        weights[coding] = quality

    kept = []
    for item in offered.split(","):
        coding = item.strip()
        quality = weights.get(coding.lower(), weights.get("*", 0.0))
        if coding and quality > 0:
            kept.append(coding)
    return ", ".join(kept) or "identity"


def build_upstream_headers(
    inbound: HeaderPairs,
    target_host: str,
    fingerprints: FingerprintSource,
    store: CookieStoreBase,
    target_protocol: str = "https",
) -> httpx.Headers:
    """
    Build the header set sent to the origin for an inbound browser request.

    Proxy-revealing and hop-by-hop headers are dropped, Host is set to the
    target, a browser fingerprint is applied on top of the remaining headers,
    Referer/Origin are translated back to the real site and request cookies
    are mapped onto the latest values recorded for the target.
    """
    inbound_pairs = header_pairs(inbound)
    headers = httpx.Headers()
    cookies = []
    referer = None
    origin = None
    accept_encoding = None

    for name, value in inbound_pairs:
        lower = name.lower()
        if lower in HOP_BY_HOP_HEADERS or lower in PROXY_REVEALING_HEADERS:
            continue
        if lower == "accept-encoding":
            accept_encoding = value
        if lower == "cookie":
            cookies.append(value)
        elif lower == "referer":
            referer = value
        elif lower == "origin":
            origin = value
        elif lower in _OUTBOUND_MANAGED or lower in _FINGERPRINT_OWNED:
            continue
        else:
            headers[name] = value

    headers["Host"] = target_host

    fingerprint = fingerprints.next_fingerprint()
    for name, value in fingerprint.to_headers().items():
        if name.lower() in _FINGERPRINT_OWNED or name not in headers:
            headers[name] = value
    if accept_encoding is not None and "Accept-Encoding" in headers:
        headers["Accept-Encoding"] = negotiate_accept_encoding(
            headers["Accept-Encoding"], accept_encoding
        )

    real_referer = _rewrite_referer(referer, fingerprints) if referer else None
    headers["Referer"] = real_referer or fingerprints.next_referer()
    if origin is not None:
        # Origin carries no path, so derive it from the translated referer
        headers["Origin"] = (
            _origin_of(real_referer or "") or f"{target_protocol}://{target_host}"
        )

    for name, value in cdn_evasion_profile(cookie_domain(target_host)).items():
        headers[name] = value

    if cookies:
        headers["Cookie"] = map_request_cookies(
            "; ".join(cookies), target_host, store
        )

    logger.debug(
        f"[Headers] Outbound to {target_host} as {fingerprint.name}, "
        f"{len(headers)} header(s)"
    )
    return headers


def build_downstream_headers(
    upstream: HeaderPairs,
    proxy_host: str,
    origin_host: str,
    store: CookieStoreBase,
    request_path: str = "",
) -> List[Tuple[str, str]]:
    """
    Build the header list returned to the browser from the origin's headers.

    Returns (name, value) pairs so repeated headers such as Set-Cookie survive.
    Content-Encoding and Content-Length are left for the caller, which knows
    whether the body is re-encoded.
    """
    headers: List[Tuple[str, str]] = []
    set_cookies = []

    for name, value in header_pairs(upstream):
        lower = name.lower()
        if lower in HOP_BY_HOP_HEADERS or lower == "x-frame-options":
            continue
        if lower.startswith("access-control-"):
            continue
        if lower == "set-cookie":
            set_cookies.append(value)
            continue
        if lower in CSP_HEADERS:
            value = strip_frame_ancestors(value)
            if value is None:
                continue
        elif lower == "content-type" and request_path:
            fixed = fix_content_type(value, request_path)
            if fixed != value:
                logger.debug(
                    f"[Headers] Correcting content-type {value!r} -> {fixed!r} "
                    f"for {request_path}"
                )
                value = fixed
        headers.append((name, value))

    if set_cookies:
        mapped = record_set_cookies(
            set_cookies, origin_host, cookie_domain(proxy_host), store
        )
        headers.extend(("Set-Cookie", value) for value in mapped)

    headers.extend(CORS_HEADERS)
    return headers
