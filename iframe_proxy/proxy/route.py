"""
Response transcoding controller.

Each proxied request moves through

    DISPATCHED -> HEADERS_RECEIVED -> {REDIRECT | STREAMING | BUFFERING} -> SENT

with ERRORED reachable from any state. Rewritable bodies are buffered,
decompressed and rewritten; everything else is piped through untouched,
keeping whatever Content-Encoding the origin used.
"""

import asyncio
import gzip
import logging
import zlib
from enum import Enum
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import brotli
import httpx
from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from iframe_proxy import vars as settings
from iframe_proxy.content import ContentKind, classify, rewrite_body, rewrite_enabled
from iframe_proxy.errors import DecompressionFailure, MalformedTarget, UpstreamFailure
from iframe_proxy.policy import (
    CORS_HEADERS,
    CookieStoreBase,
    FingerprintSource,
    build_downstream_headers,
    build_upstream_headers,
    cookie_store,
    fingerprint_source,
)
from iframe_proxy.urls import RewriteContext, extract_target_url, to_proxied
from iframe_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from iframe_proxy.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Headers describing the encoded body; dropped once the body is re-emitted decoded
BODY_FRAMING_HEADERS = {"content-encoding", "content-length"}

# Process-wide state shared by every request
_cookie_store: CookieStoreBase = cookie_store(settings.COOKIE_STORE)
_fingerprints: FingerprintSource = fingerprint_source(settings.FINGERPRINT_SOURCE)


class TranscodeState(Enum):
    DISPATCHED = "dispatched"
    HEADERS_RECEIVED = "headers_received"
    REDIRECT = "redirect"
    STREAMING = "streaming"
    BUFFERING = "buffering"
    SENT = "sent"
    ERRORED = "errored"


def get_cookie_store() -> CookieStoreBase:
    return _cookie_store


def get_fingerprint_source() -> FingerprintSource:
    return _fingerprints


def create_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.PROXY_TIMEOUT),
        follow_redirects=False,  # Handle redirects manually for rewriting
        verify=settings.TARGET_TLS_VERIFY,
    )


def proxy_base_for(request: Request) -> str:
    """Public origin of the proxy, from PUBLIC_URL or the inbound request."""
    if settings.PUBLIC_URL:
        return settings.PUBLIC_URL
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}"


def request_path(request: Request) -> str:
    """The still percent-encoded request path, when the server provides it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return request.url.path


def get_target_url(request: Request) -> str:
    path = request_path(request)
    target_url = extract_target_url(path, str(request.url.query))
    if target_url is None:
        raise MalformedTarget(details=f"Cannot resolve a target from {path}")
    return target_url


def rewrite_location_header(location: str, target_url: str, ctx: RewriteContext) -> str:
    """Resolve a redirect target against the fetched URL and translate it."""
    if not location:
        return location
    return to_proxied(urljoin(target_url, location.strip()), ctx)


def _decode_one(body: bytes, encoding: str) -> bytes:
    try:
        if encoding in ("gzip", "x-gzip"):
            return gzip.decompress(body)
        if encoding == "deflate":
            try:
                return zlib.decompress(body)
            except zlib.error:
                # Some servers send raw deflate without the zlib wrapper
                return zlib.decompress(body, -zlib.MAX_WBITS)
        if encoding == "br":
            return brotli.decompress(body)
    except (OSError, EOFError, zlib.error, brotli.error) as e:
        raise DecompressionFailure(f"Invalid {encoding} body: {e}") from e
    raise DecompressionFailure(f"Unsupported content encoding: {encoding}")


def decode_body(body: bytes, content_encoding: Optional[str]) -> bytes:
    """Undo every declared Content-Encoding, last applied first."""
    encodings = [
        e.strip().lower()
        for e in (content_encoding or "").split(",")
        if e.strip() and e.strip().lower() != "identity"
    ]
    for encoding in reversed(encodings):
        body = _decode_one(body, encoding)
    return body


def should_buffer(method: str, status_code: int, kind: ContentKind) -> bool:
    """Only bodies the pipeline will rewrite are read fully into memory."""
    if method == "HEAD" or status_code in (204, 304):
        return False
    return rewrite_enabled(kind)


def _header_value(headers: List[Tuple[str, str]], name: str) -> Optional[str]:
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def _encode(text: str) -> bytes:
    try:
        return text.encode("latin-1")
    except UnicodeEncodeError:
        return text.encode("utf-8")


def apply_headers(response: Response, headers: List[Tuple[str, str]]) -> Response:
    """
    Attach (name, value) pairs to ``response``, keeping repeated names.
    Headers Starlette computed itself are replaced when the list carries them.
    """
    names = {name.lower() for name, _ in headers}
    kept = [
        (key, value)
        for key, value in response.raw_headers
        if key.decode("latin-1") not in names
    ]
    response.raw_headers = kept + [
        (_encode(name.lower()), _encode(value)) for name, value in headers
    ]
    return response


def _transition(span, state: TranscodeState, target_url: str) -> None:
    span.set_attribute("proxy.state", state.value)
    logger.debug(f"[Proxy] {target_url}: {state.value}")


def _errored(span, failure: UpstreamFailure, target_url: str) -> Response:
    _transition(span, TranscodeState.ERRORED, target_url)
    span.set_attribute("proxy.error", failure.error)
    span.set_attribute("proxy.status_code", failure.status_code)
    logger.error(
        f"[Proxy] {failure.error} for {target_url} "
        f"({failure.status_code}): {failure.details}"
    )
    return failure.to_response()


async def _close(upstream: httpx.Response, client: httpx.AsyncClient) -> None:
    await upstream.aclose()
    await client.aclose()


async def stream_body(upstream: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
    """Pipe the origin body through as received, without decoding it."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        # Headers are already out; the connection is dropped instead of answering twice
        log_exception_with_details(
            logger, f"[Proxy] Origin stream for {target_url} failed:", e, logging.WARNING
        )
        raise
    finally:
        await upstream.aclose()


async def read_raw_body(upstream: httpx.Response) -> bytes:
    chunks = []
    async for chunk in upstream.aiter_raw():
        chunks.append(chunk)
    return b"".join(chunks)


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(deadline - asyncio.get_running_loop().time(), 0.0)


async def transcode(
    request: Request,
    upstream: httpx.Response,
    client: httpx.AsyncClient,
    ctx: RewriteContext,
    target_url: str,
    span,
    deadline: Optional[float] = None,
) -> Response:
    """
    Turn an origin response whose headers have arrived into the client response.

    A buffered body must be complete by ``deadline`` (event loop time); streamed
    bodies are not bounded.
    """
    downstream = build_downstream_headers(
        upstream.headers,
        proxy_host=urlsplit(ctx.proxy_base).netloc,
        origin_host=ctx.target_host,
        store=get_cookie_store(),
        request_path=ctx.target_path,
    )
    status_code = upstream.status_code

    location = _header_value(downstream, "location")
    if 300 <= status_code < 400 and location:
        _transition(span, TranscodeState.REDIRECT, target_url)
        rewritten = rewrite_location_header(location, target_url, ctx)
        span.set_attribute("proxy.rewritten_location", rewritten)
        logger.info(f"[Proxy] Redirect {status_code} {location} -> {rewritten}")
        await _close(upstream, client)
        headers = [
            (name, rewritten if name.lower() == "location" else value)
            for name, value in downstream
            if name.lower() not in BODY_FRAMING_HEADERS
        ]
        response = apply_headers(Response(status_code=status_code), headers)
        _transition(span, TranscodeState.SENT, target_url)
        return response

    content_type = _header_value(downstream, "content-type")
    kind = classify(content_type)

    if not should_buffer(request.method, status_code, kind):
        _transition(span, TranscodeState.STREAMING, target_url)
        response = StreamingResponse(
            stream_body(upstream, target_url),
            status_code=status_code,
            background=BackgroundTask(_close, upstream, client),
        )
        apply_headers(response, downstream)
        _transition(span, TranscodeState.SENT, target_url)
        return response

    _transition(span, TranscodeState.BUFFERING, target_url)
    try:
        raw = await asyncio.wait_for(
            read_raw_body(upstream), timeout=_remaining(deadline)
        )
    except asyncio.TimeoutError:
        return _errored(
            span,
            UpstreamFailure.timeout(
                f"Body from {ctx.target_host} not complete "
                f"within {settings.PROXY_TIMEOUT:g}s"
            ),
            target_url,
        )
    finally:
        await _close(upstream, client)

    try:
        decoded = decode_body(raw, upstream.headers.get("content-encoding"))
    except DecompressionFailure as e:
        # Unrewritten but valid beats a body the browser cannot decode
        logger.warning(
            f"[Proxy] {e.message} from {ctx.target_host}; passing raw body through"
        )
        span.set_attribute("proxy.decompression_failed", True)
        response = apply_headers(Response(content=raw, status_code=status_code), downstream)
        _transition(span, TranscodeState.SENT, target_url)
        return response

    body = rewrite_body(decoded, content_type, ctx)
    headers = [
        (name, value)
        for name, value in downstream
        if name.lower() not in BODY_FRAMING_HEADERS
    ]
    # Content-Length is recomputed from the rewritten, uncompressed body
    response = apply_headers(Response(content=body, status_code=status_code), headers)
    span.set_attribute("proxy.response_bytes", len(body))
    _transition(span, TranscodeState.SENT, target_url)
    return response


async def forward_to_target(request: Request) -> Response:
    """
    Forward an inbound ``/proxy/{host}/{path}`` request to the origin and
    transcode its response for framing under the proxy origin.
    """
    try:
        target_url = get_target_url(request)
    except MalformedTarget as e:
        logger.warning(f"[Proxy] {e.message}: {e.details}")
        return e.to_response()

    ctx = RewriteContext.from_target(
        proxy_base_for(request), target_url, original_url=str(request.url)
    )

    with traced_request(
        tracer,
        "proxy_request",
        ctx.target_host,
        request.method,
        f"[Proxy] {request.method} {request.url.path} -> {target_url}",
        {"proxy.target_url": target_url},
    ) as span:
        _transition(span, TranscodeState.DISPATCHED, target_url)
        headers = build_upstream_headers(
            request.headers.items(),
            ctx.target_host,
            get_fingerprint_source(),
            get_cookie_store(),
            target_protocol=ctx.target_protocol,
        )
        body = await request.body()

        client = create_client()
        # One budget covers the response headers and any buffered body
        deadline = asyncio.get_running_loop().time() + settings.PROXY_TIMEOUT
        try:
            upstream_request = client.build_request(
                request.method, target_url, headers=headers, content=body or None
            )
            upstream = await asyncio.wait_for(
                client.send(upstream_request, stream=True),
                timeout=settings.PROXY_TIMEOUT,
            )
        except asyncio.TimeoutError:
            await client.aclose()
            return _errored(
                span,
                UpstreamFailure.timeout(
                    f"No response from {ctx.target_host} "
                    f"within {settings.PROXY_TIMEOUT:g}s"
                ),
                target_url,
            )
        except httpx.HTTPError as e:
            await client.aclose()
            return _errored(span, UpstreamFailure.from_httpx(e), target_url)

        _transition(span, TranscodeState.HEADERS_RECEIVED, target_url)
        span.set_attribute("proxy.status_code", upstream.status_code)

        try:
            return await transcode(
                request, upstream, client, ctx, target_url, span, deadline
            )
        except httpx.HTTPError as e:
            await _close(upstream, client)
            return _errored(span, UpstreamFailure.from_httpx(e), target_url)
        except Exception as e:
            await _close(upstream, client)
            log_exception_with_details(logger, "[Proxy] Transcoding failed:", e)
            return _errored(
                span,
                UpstreamFailure(502, "Bad gateway", format_exception_message(e)),
                target_url,
            )


router = APIRouter(prefix=settings.PROXY_PATH_PREFIX)


def is_preflight(request: Request) -> bool:
    return (
        request.method == "OPTIONS"
        and "access-control-request-method" in request.headers
    )


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies every /proxy/{host}/{path} request to its origin."""
    if is_preflight(request):
        # Answered locally; the origin never sees the preflight
        return apply_headers(Response(status_code=204), list(CORS_HEADERS))
    return await forward_to_target(request)
