import logging
from typing import Optional, Tuple

from bs4 import UnicodeDammit
from prometheus_client import Counter

from iframe_proxy.client_script import build_client_script
from iframe_proxy.content.css_rewriter import rewrite_css
from iframe_proxy.content.html_rewriter import rewrite_html
from iframe_proxy.content.js_rewriter import rewrite_js
from iframe_proxy.content.json_rewriter import rewrite_json
from iframe_proxy.content.mime import ContentKind, classify, extract_charset
from iframe_proxy.errors import RewriteFailure
from iframe_proxy.urls import RewriteContext
from iframe_proxy import vars as settings

logger = logging.getLogger("uvicorn.error")

REWRITE_FAILURES = Counter(
    "proxy_rewrite_failures_total",
    "Bodies passed through unmodified because rewriting raised",
    ["kind"],
)


def rewrite_enabled(kind: ContentKind) -> bool:
    """Whether bodies of ``kind`` are buffered and rewritten at all."""
    if kind is ContentKind.HTML:
        return settings.REWRITE_HTML
    if kind is ContentKind.CSS:
        return settings.REWRITE_CSS
    if kind is ContentKind.JS:
        return settings.REWRITE_JS
    if kind is ContentKind.JSON:
        return settings.REWRITE_JSON
    return False


def _decode_html(body: bytes, declared: Optional[str]) -> Tuple[str, str]:
    """
    Decode an HTML body. A charset from the Content-Type header wins, then a
    BOM or <meta charset> in the document, then detection.
    """
    dammit = UnicodeDammit(
        body, known_definite_encodings=[declared] if declared else [], is_html=True
    )
    if dammit.unicode_markup is None:
        raise RewriteFailure("Could not determine the document encoding")
    encoding = dammit.original_encoding or "utf-8"
    # Re-encoding as ascii would turn injected non-ascii script text into entities
    if encoding.lower() == "ascii":
        encoding = "utf-8"
    return dammit.unicode_markup, encoding


def _rewrite_text(
    text: str, kind: ContentKind, ctx: RewriteContext, inject_client_script: bool
) -> str:
    if kind is ContentKind.HTML:
        script = build_client_script(ctx) if inject_client_script else None
        return rewrite_html(text, ctx, script)
    if kind is ContentKind.CSS:
        return rewrite_css(text, ctx)
    if kind is ContentKind.JS:
        return rewrite_js(text, ctx)
    if kind is ContentKind.JSON:
        return rewrite_json(text, ctx)
    return text


def rewrite_body(
    body: bytes,
    content_type: Optional[str],
    ctx: RewriteContext,
    inject_client_script: Optional[bool] = None,
) -> bytes:
    """
    Rewrite a response body for ``ctx`` according to its content type.

    Best effort: any failure returns ``body`` unchanged, and content types
    outside HTML/CSS/JS/JSON pass through byte-identical.
    """
    kind = classify(content_type)
    if kind is ContentKind.OTHER or not body:
        return body
    if inject_client_script is None:
        inject_client_script = settings.INJECT_CLIENT_SCRIPT

    try:
        if kind is ContentKind.HTML:
            text, charset = _decode_html(body, extract_charset(content_type, None))
        else:
            charset = extract_charset(content_type)
            text = body.decode(charset)
        rewritten = _rewrite_text(text, kind, ctx, inject_client_script)
        if rewritten == text:
            return body
        errors = "xmlcharrefreplace" if kind is ContentKind.HTML else "strict"
        return rewritten.encode(charset, errors=errors)
    except Exception as e:
        REWRITE_FAILURES.labels(kind=kind.value).inc()
        logger.warning(
            f"[Rewrite] {kind.value} rewrite failed for {ctx.target_host}, "
            f"passing body through: {e}"
        )
        return body
