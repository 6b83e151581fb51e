import pytest

from iframe_proxy.urls import (
    OriginalLocation,
    ProxyReference,
    RewriteContext,
    UrlKind,
    classify_url,
    extract_target_url,
    to_original,
    to_proxied,
    unproxy_url,
)
from iframe_proxy.urls.translator import default_protocol

PROXY = "http://localhost:3000"


class TestClassifyUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "data:image/png;base64,AAAA",
            "blob:https://example.com/1234",
            "javascript:void(0)",
            "mailto:someone@example.com",
            "tel:+15551234",
            "#section",
        ],
    )
    def test_special_urls(self, url):
        assert classify_url(url) is UrlKind.SPECIAL

    def test_other_kinds(self):
        assert classify_url("https://example.com/a") is UrlKind.ABSOLUTE
        assert classify_url("HTTP://example.com/a") is UrlKind.ABSOLUTE
        assert classify_url("//cdn.example.com/a.js") is UrlKind.PROTOCOL_RELATIVE
        assert classify_url("/logo.png") is UrlKind.ABSOLUTE_PATH
        assert classify_url("img/logo.png") is UrlKind.RELATIVE
        assert classify_url("./img/logo.png") is UrlKind.RELATIVE


class TestToProxied:
    def test_absolute_path_resolves_against_target_host(self, root_context):
        assert (
            to_proxied("/logo.png", root_context)
            == "http://localhost:3000/proxy/example.com/logo.png"
        )

    def test_absolute_url_keeps_query_and_fragment(self, root_context):
        assert (
            to_proxied("https://example.com/a/b?x=1#top", root_context)
            == "http://localhost:3000/proxy/example.com/a/b?x=1#top"
        )

    def test_cross_origin_urls_are_proxied_too(self, root_context):
        assert (
            to_proxied("https://cdn.other.net/lib.js", root_context)
            == "http://localhost:3000/proxy/cdn.other.net/lib.js"
        )

    def test_protocol_relative(self, root_context):
        assert (
            to_proxied("//cdn.other.net/lib.js", root_context)
            == "http://localhost:3000/proxy/cdn.other.net/lib.js"
        )

    def test_host_without_path_gets_root(self, root_context):
        assert (
            to_proxied("https://example.com", root_context)
            == "http://localhost:3000/proxy/example.com/"
        )

    def test_port_is_kept(self, root_context):
        assert (
            to_proxied("http://localhost:8080/api", root_context)
            == "http://localhost:3000/proxy/localhost:8080/api"
        )

    def test_bare_relative_resolves_against_document_directory(self, rewrite_context):
        assert (
            to_proxied("img/a.png", rewrite_context)
            == "http://localhost:3000/proxy/example.com/docs/img/a.png"
        )
        assert (
            to_proxied("./img/a.png", rewrite_context)
            == "http://localhost:3000/proxy/example.com/docs/img/a.png"
        )
        assert (
            to_proxied("../top.css", rewrite_context)
            == "http://localhost:3000/proxy/example.com/top.css"
        )

    def test_special_urls_unchanged(self, root_context):
        for url in ("data:text/plain,hi", "javascript:void(0)", "#top", "mailto:a@b.c"):
            assert to_proxied(url, root_context) == url

    def test_empty_input_unchanged(self, root_context):
        assert to_proxied("", root_context) == ""
        assert to_proxied("   ", root_context) == "   "

    def test_already_proxied_path_unchanged(self, root_context):
        assert (
            to_proxied("/proxy/example.com/a.png", root_context)
            == "/proxy/example.com/a.png"
        )

    def test_already_proxied_absolute_unchanged(self, root_context):
        url = "http://localhost:3000/proxy/example.com/a.png"
        assert to_proxied(url, root_context) == url

    @pytest.mark.parametrize(
        "url",
        [
            "/logo.png",
            "https://example.com/a?b=1",
            "//cdn.example.com/x.js",
            "img/a.png",
            "https://other.org",
        ],
    )
    def test_idempotent(self, url, rewrite_context):
        once = to_proxied(url, rewrite_context)
        assert to_proxied(once, rewrite_context) == once

    def test_unparsable_url_is_returned_unchanged(self, root_context):
        url = "http://[::1"
        assert to_proxied(url, root_context) == url


class TestToOriginal:
    def test_scenario_query_preserved(self):
        location = to_original("http://localhost:3000/proxy/example.com/a/b?x=1")
        assert location == OriginalLocation(
            host="example.com", path="/a/b", query="?x=1", protocol="https"
        )

    def test_path_only_form(self):
        location = to_original("/proxy/example.com/a")
        assert location.host == "example.com"
        assert location.path == "/a"

    def test_bare_host_gets_root_path(self):
        assert to_original("/proxy/example.com").path == "/"

    def test_localhost_defaults_to_http(self):
        assert to_original("/proxy/localhost:8080/x").to_url() == "http://localhost:8080/x"

    def test_embedded_scheme(self):
        location = to_original("/proxy/http://insecure.example.com/page")
        assert location.protocol == "http"
        assert location.host == "insecure.example.com"
        assert location.path == "/page"

    def test_host_named_like_the_prefix(self):
        location = to_original("/proxy/proxy/a")
        assert (location.host, location.path) == ("proxy", "/a")

    @pytest.mark.parametrize("url", ["/proxy/bad host/a", "/proxy/a\\b/c"])
    def test_unusable_host_returns_none(self, url):
        assert to_original(url) is None

    @pytest.mark.parametrize(
        "url",
        ["/proxy", "/proxy/", "/other/example.com/a", "https://example.com/a", ""],
    )
    def test_malformed_returns_none(self, url):
        assert to_original(url) is None

    @pytest.mark.parametrize("host", ["example.com", "sub.example.org", "a.b.c.io"])
    @pytest.mark.parametrize("path", ["/", "/a", "/a/b/c.html"])
    def test_round_trip(self, host, path):
        ctx = RewriteContext.from_target(PROXY, "https://example.com/")
        location = to_original(to_proxied(f"https://{host}{path}", ctx))
        assert (location.host, location.path) == (host, path)


class TestProxyReference:
    def test_from_url(self):
        ref = ProxyReference.from_url(PROXY + "/", "https://example.com/a/b")
        assert ref.proxy_base_origin == PROXY
        assert ref.target_host == "example.com"
        assert ref.target_protocol == "https"
        assert ref.canonical_url == "http://localhost:3000/proxy/example.com/a/b"

    def test_unwraps_proxied_target(self):
        ref = ProxyReference.from_url(
            PROXY, "http://localhost:3000/proxy/example.com/a"
        )
        assert ref.target_host == "example.com"
        assert ref.target_path == "/a"

    def test_target_host_never_starts_with_proxy_prefix(self):
        ref = ProxyReference.from_url(
            PROXY, "http://localhost:3000/proxy/example.com/proxy/x"
        )
        assert not ref.target_host.startswith("/proxy/")

    def test_missing_host_raises(self):
        with pytest.raises(ValueError):
            ProxyReference.from_url(PROXY, "/relative/only")


class TestRewriteContext:
    def test_is_immutable(self, rewrite_context):
        with pytest.raises(Exception):
            rewrite_context.original_url = "changed"

    def test_with_base_href(self, rewrite_context):
        derived = rewrite_context.with_base_href("https://static.example.com/assets/")
        assert derived.target_host == "static.example.com"
        assert derived.document_url == "https://static.example.com/assets/"
        assert rewrite_context.target_host == "example.com"

    def test_with_proxied_base_href(self, rewrite_context):
        derived = rewrite_context.with_base_href(
            "http://localhost:3000/proxy/cdn.example.com/v2/"
        )
        assert derived.target_host == "cdn.example.com"
        assert derived.target_path == "/v2/"

    def test_with_non_http_base_href_is_ignored(self, rewrite_context):
        assert rewrite_context.with_base_href("javascript:void(0)") is rewrite_context


class TestUnproxyAndExtract:
    def test_unproxy_url(self):
        assert (
            unproxy_url("http://localhost:3000/proxy/example.com/a?q=1#f")
            == "https://example.com/a?q=1#f"
        )
        assert unproxy_url("https://example.com/") is None

    def test_extract_target_url(self):
        assert extract_target_url("/proxy/example.com/a/b", "x=1") == (
            "https://example.com/a/b?x=1"
        )
        assert extract_target_url("/proxy/127.0.0.1:5000/") == "http://127.0.0.1:5000/"

    def test_extract_target_url_with_full_url_host(self):
        assert (
            extract_target_url("/proxy/https://example.com/a")
            == "https://example.com/a"
        )
        assert (
            extract_target_url("/proxy/http:/example.com/a") == "http://example.com/a"
        )

    @pytest.mark.parametrize("path", ["/", "/proxy", "/static/x", "/proxy//a"])
    def test_extract_target_url_invalid(self, path):
        assert extract_target_url(path) is None

    def test_default_protocol(self):
        assert default_protocol("localhost") == "http"
        assert default_protocol("127.0.0.1:8080") == "http"
        assert default_protocol("example.com") == "https"
