"""
Bidirectional URL translation between real URLs and the canonical proxied form.

Canonical proxied URL:

    {proxy_base}/proxy/{target_host}{target_path}{?query}{#fragment}

The client reinforcement script mirrors these rules in the browser, so any
change here must be reflected in ``client_script/client_processor.js``.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional
from urllib.parse import SplitResult, urljoin, urlsplit

import httpx

from iframe_proxy.vars import PROXY_PATH_PREFIX

logger = logging.getLogger("uvicorn.error")

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_PROXY_SEGMENT = PROXY_PATH_PREFIX.strip("/")
_LOCAL_HOSTS = ("localhost", "127.0.0.1")

# HTML attributes carrying URLs; shared with the client reinforcement script
URL_ATTRIBUTES = (
    "src",
    "href",
    "action",
    "data-src",
    "data-href",
    "poster",
    "background",
    "srcset",
)


class UrlKind(Enum):
    """Classification of a URL reference as found in content."""

    SPECIAL = "special"  # data:, blob:, javascript:, mailto:, tel:, #hash
    ABSOLUTE = "absolute"
    PROTOCOL_RELATIVE = "protocol_relative"
    ABSOLUTE_PATH = "absolute_path"
    RELATIVE = "relative"


@dataclass(frozen=True)
class OriginalLocation:
    """The real location a canonical proxied URL points at."""

    host: str
    path: str
    query: str = ""
    fragment: str = ""
    protocol: str = "https"

    def to_url(self) -> str:
        return f"{self.protocol}://{self.host}{self.path}{self.query}{self.fragment}"


@dataclass(frozen=True)
class ProxyReference:
    proxy_base_origin: str
    target_host: str
    target_protocol: str
    target_path: str

    @property
    def target_origin(self) -> str:
        return f"{self.target_protocol}://{self.target_host}"

    @property
    def canonical_path(self) -> str:
        return f"{PROXY_PATH_PREFIX}/{self.target_host}{self.target_path}"

    @property
    def canonical_url(self) -> str:
        return f"{self.proxy_base_origin}{self.canonical_path}"

    @classmethod
    def from_url(cls, proxy_base: str, target_url: str) -> "ProxyReference":
        """Build a reference for ``target_url``, unwrapping it if already proxied."""
        proxy_base = proxy_base.rstrip("/")
        parts = urlsplit(target_url)
        if _is_proxy_origin(parts.netloc, proxy_base) and _is_proxied_path(parts.path):
            original = to_original(target_url)
            if original is not None:
                parts = urlsplit(original.to_url())
        host = _host_of(parts)
        if not host:
            raise ValueError(f"Target URL has no host: {target_url!r}")
        return cls(
            proxy_base_origin=proxy_base,
            target_host=host,
            target_protocol=(parts.scheme or default_protocol(host)).lower(),
            target_path=parts.path or "/",
        )


@dataclass(frozen=True)
class RewriteContext:
    """Per-request, immutable input threaded through every rewriter call."""

    reference: ProxyReference
    original_url: str = ""

    @property
    def proxy_base(self) -> str:
        return self.reference.proxy_base_origin

    @property
    def target_host(self) -> str:
        return self.reference.target_host

    @property
    def target_path(self) -> str:
        return self.reference.target_path

    @property
    def target_protocol(self) -> str:
        return self.reference.target_protocol

    @property
    def document_url(self) -> str:
        """Absolute URL that bare-relative references resolve against."""
        return f"{self.reference.target_origin}{self.target_path}"

    @classmethod
    def from_target(
        cls, proxy_base: str, target_url: str, original_url: str = ""
    ) -> "RewriteContext":
        return cls(
            reference=ProxyReference.from_url(proxy_base, target_url),
            original_url=original_url,
        )

    def with_base_href(self, href: str) -> "RewriteContext":
        """Derive a context whose relative resolution follows a document <base href>."""
        base_url = unproxy_url(href) or href
        resolved = urljoin(self.document_url, base_url)
        parts = urlsplit(resolved)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            return self
        reference = replace(
            self.reference,
            target_host=_host_of(parts),
            target_protocol=parts.scheme,
            target_path=parts.path or "/",
        )
        return replace(self, reference=reference)


def default_protocol(host: str) -> str:
    hostname = host.rsplit("@", 1)[-1].split(":", 1)[0].lower()
    if hostname in _LOCAL_HOSTS:
        return "http"
    return "https"


def classify_url(url: str) -> UrlKind:
    if url.startswith("#"):
        return UrlKind.SPECIAL
    if url.startswith("//"):
        return UrlKind.PROTOCOL_RELATIVE
    if url.startswith("/"):
        return UrlKind.ABSOLUTE_PATH
    match = _SCHEME_RE.match(url)
    if match:
        if match.group(1).lower() in ("http", "https"):
            return UrlKind.ABSOLUTE
        return UrlKind.SPECIAL
    return UrlKind.RELATIVE


def to_proxied(url: str, ctx: RewriteContext) -> str:
    """
    Translate ``url`` as found in content served for ``ctx`` into canonical
    proxied form. Never raises: on any failure the input is returned unchanged.
    """
    try:
        return _to_proxied(url, ctx)
    except Exception as e:
        logger.debug(f"[Rewrite] Leaving URL untouched {url!r}: {e}")
        return url


def _to_proxied(url: str, ctx: RewriteContext) -> str:
    if not url or not url.strip():
        return url
    candidate = url.strip()
    kind = classify_url(candidate)

    if kind is UrlKind.SPECIAL:
        return url

    if kind in (UrlKind.ABSOLUTE, UrlKind.PROTOCOL_RELATIVE):
        if kind is UrlKind.PROTOCOL_RELATIVE:
            candidate = f"{ctx.target_protocol}:{candidate}"
        parts = urlsplit(candidate)
        host = _host_of(parts)
        if not host:
            return url
        if _is_proxy_origin(parts.netloc, ctx.proxy_base) and _is_proxied_path(
            parts.path
        ):
            return url
        return _canonical(ctx.proxy_base, host, parts)

    if kind is UrlKind.ABSOLUTE_PATH:
        if _is_proxied_path(candidate):
            return url
        return _canonical(ctx.proxy_base, ctx.target_host, urlsplit(candidate))

    parts = urlsplit(urljoin(ctx.document_url, candidate))
    return _canonical(ctx.proxy_base, _host_of(parts) or ctx.target_host, parts)


def to_original(proxied_url: str) -> Optional[OriginalLocation]:
    """
    Parse a canonical proxied URL (absolute or path-only) back to the location
    it stands for. Returns None when the input is not a proxied URL.
    """
    try:
        parts = urlsplit(proxied_url)
    except (ValueError, TypeError):
        return None

    segments = parts.path.split("/")
    if len(segments) < 3 or segments[0] != "" or segments[1] != _PROXY_SEGMENT:
        return None

    rest = segments[2:]
    protocol = None
    if rest[0].lower() in ("http:", "https:"):
        protocol = rest[0][:-1].lower()
        rest = rest[1:]
        while rest and rest[0] == "":
            rest = rest[1:]
    if not rest or not rest[0]:
        return None

    host = rest[0]
    if "\\" in host or " " in host:
        return None

    return OriginalLocation(
        host=host,
        path="/" + "/".join(rest[1:]),
        query=f"?{parts.query}" if parts.query else "",
        fragment=f"#{parts.fragment}" if parts.fragment else "",
        protocol=protocol or default_protocol(host),
    )


def unproxy_url(url: str) -> Optional[str]:
    """Return the real absolute URL for a canonical proxied URL, else None."""
    location = to_original(url)
    if location is None:
        return None
    return location.to_url()


def extract_target_url(path: str, query: str = "") -> Optional[str]:
    """
    Resolve the router's ``/proxy/{host}/{...path}`` convention into the
    absolute origin URL to fetch. Returns None for anything that is not a
    valid target.
    """
    location = to_original(path)
    if location is None:
        logger.debug(f"[Proxy] Path is not a proxy path: {path}")
        return None

    target_url = f"{location.protocol}://{location.host}{location.path}"
    if query:
        target_url = f"{target_url}?{query}"

    try:
        parsed = httpx.URL(target_url)
    except (httpx.InvalidURL, ValueError) as e:
        logger.warning(f"[Proxy] Invalid target URL {target_url!r}: {e}")
        return None
    if not parsed.host:
        return None
    return target_url


def _host_of(parts: SplitResult) -> str:
    return parts.netloc.rpartition("@")[2]


def _is_proxied_path(path: str) -> bool:
    return path.startswith(PROXY_PATH_PREFIX + "/")


def _is_proxy_origin(netloc: str, proxy_base: str) -> bool:
    return netloc.lower() == urlsplit(proxy_base).netloc.lower()


def _canonical(proxy_base: str, host: str, parts: SplitResult) -> str:
    url = f"{proxy_base}{PROXY_PATH_PREFIX}/{host}{parts.path or '/'}"
    if parts.query:
        url = f"{url}?{parts.query}"
    if parts.fragment:
        url = f"{url}#{parts.fragment}"
    return url
