"""
Tests for the response transcoding controller.

Tests cover:
- Target resolution from the inbound path
- Redirect Location rewriting
- Decompression of buffered bodies (gzip, deflate, brotli, stacked)
- Streaming pass-through of non-rewritable bodies
- Upstream failures (timeout, slow body, DNS, refused) and malformed targets
- Cookie remapping in both directions
"""

import asyncio
import gzip
import json
import socket
import zlib
from unittest.mock import AsyncMock, patch

import brotli
import httpx
import pytest
from fastapi import Request

from iframe_proxy import vars as settings
from iframe_proxy.content import ContentKind
from iframe_proxy.errors import DecompressionFailure, MalformedTarget
from iframe_proxy.proxy import route
from iframe_proxy.proxy.route import (
    decode_body,
    forward_to_target,
    get_target_url,
    proxy_base_for,
    request_path,
    rewrite_location_header,
    should_buffer,
)
from iframe_proxy.urls import RewriteContext

PROXY_HOST = "localhost:3000"

HTML = (
    b"<html><head><title>t</title></head>"
    b'<body><a href="/about">About</a></body></html>'
)


def make_request(
    path: str,
    method: str = "GET",
    headers=None,
    query: bytes = b"",
    body: bytes = b"",
    raw_path: bytes = None,
) -> Request:
    """Build a real Starlette request as it would arrive from the ASGI server."""
    header_list = [("host", PROXY_HOST)] + list(headers or [])
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode(),
        "root_path": "",
        "query_string": query,
        "headers": [(k.lower().encode(), v.encode()) for k, v in header_list],
        "client": ("127.0.0.1", 50000),
        "server": ("localhost", 3000),
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def upstream_response(status_code=200, headers=None, body=b"", stream=None):
    return httpx.Response(
        status_code,
        headers=headers or [],
        stream=stream if stream is not None else httpx.ByteStream(body),
    )


async def read_streaming(response) -> bytes:
    body = b"".join([chunk async for chunk in response.body_iterator])
    if response.background is not None:
        await response.background()
    return body


class FailingStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("Connection reset by peer")


class SlowStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        for _ in range(5):
            await asyncio.sleep(0.1)
            yield b"<p>x</p>"


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, cookie_store, fingerprints):
    monkeypatch.setattr(route, "_cookie_store", cookie_store)
    monkeypatch.setattr(route, "_fingerprints", fingerprints)
    monkeypatch.setattr(settings, "PUBLIC_URL", "")


@pytest.fixture
def mock_send():
    with patch.object(httpx.AsyncClient, "send", new_callable=AsyncMock) as send:
        yield send


class TestGetTargetUrl:
    def test_basic_path(self):
        request = make_request("/proxy/example.com/docs/page.html")
        assert get_target_url(request) == "https://example.com/docs/page.html"

    def test_query_preserved(self):
        request = make_request("/proxy/example.com/search", query=b"q=a%20b&x=1")
        assert get_target_url(request) == "https://example.com/search?q=a%20b&x=1"

    def test_localhost_defaults_to_http(self):
        request = make_request("/proxy/localhost:8080/api")
        assert get_target_url(request) == "http://localhost:8080/api"

    def test_explicit_scheme_segment(self):
        request = make_request("/proxy/http:/legacy.example.com/")
        assert get_target_url(request) == "http://legacy.example.com/"

    def test_raw_path_is_preferred(self):
        request = make_request(
            "/proxy/example.com/a b", raw_path=b"/proxy/example.com/a%20b"
        )
        assert request_path(request) == "/proxy/example.com/a%20b"
        assert get_target_url(request) == "https://example.com/a%20b"

    @pytest.mark.parametrize("path", ["/proxy/", "/proxy", "/other/example.com/"])
    def test_malformed(self, path):
        with pytest.raises(MalformedTarget):
            get_target_url(make_request(path))

    def test_proxy_base(self, monkeypatch):
        request = make_request("/proxy/example.com/")
        assert proxy_base_for(request) == "http://localhost:3000"
        monkeypatch.setattr(settings, "PUBLIC_URL", "https://frame.example.org")
        assert proxy_base_for(request) == "https://frame.example.org"


class TestRewriteLocationHeader:
    def setup_method(self):
        self.ctx = RewriteContext.from_target(
            "http://localhost:3000", "https://example.com/old"
        )

    def test_absolute_path(self):
        assert (
            rewrite_location_header("/new", "https://example.com/old", self.ctx)
            == "http://localhost:3000/proxy/example.com/new"
        )

    def test_relative(self):
        assert (
            rewrite_location_header("next?step=2", "https://example.com/a/old", self.ctx)
            == "http://localhost:3000/proxy/example.com/a/next?step=2"
        )

    def test_cross_origin(self):
        assert (
            rewrite_location_header(
                "https://accounts.example.net/login", "https://example.com/old", self.ctx
            )
            == "http://localhost:3000/proxy/accounts.example.net/login"
        )

    def test_empty(self):
        assert rewrite_location_header("", "https://example.com/old", self.ctx) == ""


class TestDecodeBody:
    def test_gzip(self):
        assert decode_body(gzip.compress(HTML), "gzip") == HTML

    def test_deflate_zlib_wrapped(self):
        assert decode_body(zlib.compress(HTML), "deflate") == HTML

    def test_deflate_raw(self):
        compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
        raw = compressor.compress(HTML) + compressor.flush()
        assert decode_body(raw, "deflate") == HTML

    def test_brotli(self):
        assert decode_body(brotli.compress(HTML), "br") == HTML

    def test_stacked_encodings_undone_in_reverse(self):
        body = brotli.compress(gzip.compress(HTML))
        assert decode_body(body, "gzip, br") == HTML

    @pytest.mark.parametrize("encoding", [None, "", "identity"])
    def test_identity(self, encoding):
        assert decode_body(HTML, encoding) == HTML

    def test_corrupt_body(self):
        with pytest.raises(DecompressionFailure):
            decode_body(b"definitely not gzip", "gzip")

    def test_unsupported_encoding(self):
        with pytest.raises(DecompressionFailure):
            decode_body(HTML, "zstd")


@pytest.mark.parametrize(
    "method, status_code, kind, expected",
    [
        ("GET", 200, ContentKind.HTML, True),
        ("POST", 201, ContentKind.JSON, True),
        ("GET", 200, ContentKind.OTHER, False),
        ("HEAD", 200, ContentKind.HTML, False),
        ("GET", 204, ContentKind.HTML, False),
        ("GET", 304, ContentKind.CSS, False),
    ],
)
def test_should_buffer(method, status_code, kind, expected):
    assert should_buffer(method, status_code, kind) is expected


def test_should_buffer_respects_rewrite_toggle(monkeypatch):
    monkeypatch.setattr(settings, "REWRITE_CSS", False)
    assert should_buffer("GET", 200, ContentKind.CSS) is False


class TestForwardToTarget:
    @pytest.mark.asyncio
    async def test_upstream_request(self, mock_send):
        mock_send.return_value = upstream_response(
            headers=[("content-type", "application/octet-stream")]
        )
        request = make_request(
            "/proxy/example.com/api/items",
            method="POST",
            query=b"page=2",
            body=b'{"name": "x"}',
            headers=[
                ("X-Forwarded-For", "203.0.113.7"),
                ("Content-Type", "application/json"),
                ("Referer", "http://localhost:3000/proxy/example.com/app"),
            ],
        )

        result = await forward_to_target(request)
        await read_streaming(result)

        sent = mock_send.call_args.args[0]
        assert mock_send.call_args.kwargs == {"stream": True}
        assert sent.method == "POST"
        assert str(sent.url) == "https://example.com/api/items?page=2"
        assert sent.content == b'{"name": "x"}'
        assert sent.headers["host"] == "example.com"
        assert sent.headers["referer"] == "https://example.com/app"
        assert "x-forwarded-for" not in sent.headers

    @pytest.mark.asyncio
    async def test_redirect_location_rewritten(self, mock_send):
        mock_send.return_value = upstream_response(
            302, headers=[("location", "/new"), ("content-length", "0")]
        )

        result = await forward_to_target(make_request("/proxy/example.com/old"))

        assert result.status_code == 302
        assert result.headers["location"] == "http://localhost:3000/proxy/example.com/new"
        assert result.headers["access-control-allow-origin"] == "*"

    @pytest.mark.asyncio
    async def test_gzip_html_is_decoded_and_rewritten(self, mock_send):
        compressed = gzip.compress(HTML)
        mock_send.return_value = upstream_response(
            headers=[
                ("content-type", "text/html; charset=utf-8"),
                ("content-encoding", "gzip"),
                ("content-length", str(len(compressed))),
                ("x-frame-options", "SAMEORIGIN"),
            ],
            body=compressed,
        )

        result = await forward_to_target(make_request("/proxy/example.com/"))

        assert result.status_code == 200
        assert "content-encoding" not in result.headers
        assert "x-frame-options" not in result.headers
        assert result.headers["content-length"] == str(len(result.body))
        assert b'href="http://localhost:3000/proxy/example.com/about"' in result.body
        assert b"iframe-proxy:client-processor" in result.body

    @pytest.mark.asyncio
    async def test_corrupt_encoding_passes_raw_body(self, mock_send):
        mock_send.return_value = upstream_response(
            headers=[("content-type", "text/html"), ("content-encoding", "gzip")],
            body=b"<html>not actually gzip</html>",
        )

        result = await forward_to_target(make_request("/proxy/example.com/"))

        assert result.status_code == 200
        assert result.body == b"<html>not actually gzip</html>"

    @pytest.mark.asyncio
    async def test_binary_streams_with_original_encoding(self, mock_send):
        payload = gzip.compress(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
        mock_send.return_value = upstream_response(
            headers=[("content-type", "image/png"), ("content-encoding", "gzip")],
            body=payload,
        )

        result = await forward_to_target(make_request("/proxy/example.com/logo.png"))

        assert result.headers["content-encoding"] == "gzip"
        assert result.headers["content-type"] == "image/png"
        assert await read_streaming(result) == payload

    @pytest.mark.asyncio
    async def test_head_request_is_not_buffered(self, mock_send):
        mock_send.return_value = upstream_response(
            headers=[("content-type", "text/html"), ("content-length", "1234")]
        )

        result = await forward_to_target(
            make_request("/proxy/example.com/", method="HEAD")
        )

        assert hasattr(result, "body_iterator")
        assert result.headers["content-length"] == "1234"
        await read_streaming(result)

    @pytest.mark.asyncio
    async def test_not_modified_is_not_buffered(self, mock_send):
        mock_send.return_value = upstream_response(
            304, headers=[("content-type", "text/css"), ("etag", '"v1"')]
        )

        result = await forward_to_target(make_request("/proxy/example.com/site.css"))

        assert result.status_code == 304
        assert result.headers["etag"] == '"v1"'
        assert await read_streaming(result) == b""

    @pytest.mark.asyncio
    async def test_mid_stream_failure_propagates(self, mock_send):
        mock_send.return_value = upstream_response(
            headers=[("content-type", "video/mp4")], stream=FailingStream()
        )

        result = await forward_to_target(make_request("/proxy/example.com/v.mp4"))

        with pytest.raises(httpx.ReadError):
            await read_streaming(result)

    @pytest.mark.asyncio
    async def test_set_cookies_remapped_and_replayed(self, mock_send, cookie_store):
        mock_send.return_value = upstream_response(
            headers=[
                ("content-type", "text/plain"),
                ("set-cookie", "id=abc; Domain=example.com; Path=/"),
                ("set-cookie", "theme=dark"),
            ]
        )

        result = await forward_to_target(make_request("/proxy/example.com/login"))
        await read_streaming(result)

        assert result.headers.getlist("set-cookie") == [
            "id=abc; Domain=localhost; Path=/",
            "theme=dark",
        ]
        assert cookie_store.get("example.com", "id") == "id=abc"

        mock_send.return_value = upstream_response(
            headers=[("content-type", "text/plain")]
        )
        follow_up = await forward_to_target(
            make_request("/proxy/example.com/account", headers=[("Cookie", "id=stale")])
        )
        await read_streaming(follow_up)

        assert mock_send.call_args.args[0].headers["cookie"] == "id=abc"

    @pytest.mark.asyncio
    async def test_invalid_target(self, mock_send):
        result = await forward_to_target(make_request("/proxy/"))

        assert result.status_code == 400
        assert json.loads(result.body)["error"] == "Invalid target URL"
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "side_effect",
        [asyncio.TimeoutError(), httpx.ConnectTimeout("timed out")],
    )
    async def test_timeout(self, mock_send, side_effect):
        mock_send.side_effect = side_effect

        result = await forward_to_target(make_request("/proxy/slow.example.com/"))

        assert result.status_code == 504
        assert json.loads(result.body)["error"] == "Gateway timeout"

    @pytest.mark.asyncio
    async def test_slow_buffered_body_times_out(self, mock_send, monkeypatch):
        monkeypatch.setattr(settings, "PROXY_TIMEOUT", 0.2)
        mock_send.return_value = upstream_response(
            headers=[("content-type", "text/html")], stream=SlowStream()
        )

        result = await forward_to_target(make_request("/proxy/slow.example.com/"))

        assert result.status_code == 504
        assert json.loads(result.body)["error"] == "Gateway timeout"

    @pytest.mark.asyncio
    async def test_dns_failure(self, mock_send):
        error = httpx.ConnectError("All connection attempts failed")
        error.__cause__ = socket.gaierror(-2, "Name or service not known")
        mock_send.side_effect = error

        result = await forward_to_target(make_request("/proxy/no-such-host.invalid/"))

        assert result.status_code == 502
        assert json.loads(result.body)["error"] == "Host not found"

    @pytest.mark.asyncio
    async def test_connection_refused(self, mock_send):
        mock_send.side_effect = httpx.ConnectError("[Errno 111] Connection refused")

        result = await forward_to_target(make_request("/proxy/localhost:9/"))

        assert result.status_code == 502
        assert json.loads(result.body) == {
            "error": "Connection refused",
            "details": "[Errno 111] Connection refused",
        }

    @pytest.mark.asyncio
    async def test_unexpected_transcoding_error(self, mock_send):
        mock_send.return_value = upstream_response(
            headers=[("content-type", "text/html")], body=HTML
        )

        with patch.object(route, "rewrite_body", side_effect=RuntimeError("boom")):
            result = await forward_to_target(make_request("/proxy/example.com/"))

        assert result.status_code == 502
        assert json.loads(result.body) == {"error": "Bad gateway", "details": "boom"}
