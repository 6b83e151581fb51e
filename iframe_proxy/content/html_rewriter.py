"""
Tree-based HTML rewriting.

Every URL-bearing attribute, inline style, <style> sheet and inline script
literal is routed through the URL translator. Existing <base> elements are
replaced by a single canonical one, and the client reinforcement script is
appended once per document.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, Comment, Doctype
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

from iframe_proxy.client_script import CLIENT_SCRIPT_MARKER
from iframe_proxy.content.css_rewriter import rewrite_css
from iframe_proxy.content.js_rewriter import rewrite_js
from iframe_proxy.errors import RewriteFailure
from iframe_proxy.urls import URL_ATTRIBUTES, RewriteContext, to_proxied
from iframe_proxy.vars import PROXY_PATH_PREFIX

logger = logging.getLogger("uvicorn.error")

# Marks elements the proxy itself inserted; later passes leave them alone
PROXY_ELEMENT_ATTR = "data-iframe-proxy"

_SCRIPT_TYPES = {
    "",
    "module",
    "text/javascript",
    "application/javascript",
    "application/x-javascript",
    "text/ecmascript",
    "application/ecmascript",
}
_META_REFRESH_RE = re.compile(
    r"""^(?P<lead>\s*\d*\.?\d*\s*[;,]\s*url\s*=\s*)(?P<quote>['"]?)(?P<url>.*?)(?P=quote)\s*$""",
    re.IGNORECASE,
)

# Elements inside these roots follow XML rules, not the HTML void element list
_FOREIGN_ROOTS = ["svg", "math"]

# Minimal entity substitution and HTML5 void elements keep output close to the input
_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
    empty_attributes_are_booleans=True,
)


def rewrite_srcset(value: str, ctx: RewriteContext) -> str:
    candidates = []
    for candidate in value.split(","):
        candidate = candidate.strip()
        if not candidate:
            continue
        url, *descriptor = candidate.split(None, 1)
        rewritten = to_proxied(url, ctx)
        candidates.append(" ".join([rewritten, *descriptor]))
    return ", ".join(candidates)


def _rewrite_css_fragment(css: str, ctx: RewriteContext) -> str:
    try:
        return rewrite_css(css, ctx)
    except RewriteFailure as e:
        logger.debug(f"[Rewrite] Keeping inline CSS as-is: {e}")
        return css


def _replace_string(tag, text: str) -> None:
    original = tag.string
    if original is not None and text != str(original):
        original.replace_with(original.__class__(text))


def _apply_document_base(soup: BeautifulSoup, ctx: RewriteContext) -> RewriteContext:
    """Honour the first <base href> for resolution, then drop every <base>."""
    document_ctx = ctx
    for index, base in enumerate(soup.find_all("base")):
        href = base.get("href")
        if index == 0 and isinstance(href, str) and href.strip():
            document_ctx = ctx.with_base_href(href.strip())
        base.decompose()
    return document_ctx


def _rewrite_meta_refresh(tag, ctx: RewriteContext) -> None:
    if str(tag.get("http-equiv", "")).lower() != "refresh":
        return
    content = tag.get("content")
    if not isinstance(content, str):
        return
    match = _META_REFRESH_RE.match(content)
    if not match:
        return
    rewritten = to_proxied(match.group("url"), ctx)
    tag["content"] = f"{match.group('lead')}{rewritten}"


def _rewrite_element(tag, ctx: RewriteContext) -> None:
    for name in URL_ATTRIBUTES:
        value = tag.get(name)
        if not isinstance(value, str):
            continue
        if name == "srcset":
            tag[name] = rewrite_srcset(value, ctx)
        else:
            tag[name] = to_proxied(value, ctx)

    style = tag.get("style")
    if isinstance(style, str) and style:
        tag["style"] = _rewrite_css_fragment(style, ctx)

    if tag.name == "style" and tag.string:
        _replace_string(tag, _rewrite_css_fragment(str(tag.string), ctx))
    elif tag.name == "script" and not tag.has_attr("src") and tag.string:
        script_type = str(tag.get("type", "")).strip().lower()
        if script_type in _SCRIPT_TYPES:
            _replace_string(tag, rewrite_js(str(tag.string), ctx))
    elif tag.name == "meta":
        _rewrite_meta_refresh(tag, ctx)


def _insert_at_document_start(soup: BeautifulSoup, element) -> None:
    position = 0
    for index, child in enumerate(soup.contents):
        if isinstance(child, Doctype):
            position = index + 1
            break
    soup.insert(position, element)


def _close_foreign_elements(soup: BeautifulSoup) -> None:
    """
    Names such as <image> are void in HTML but ordinary elements inside SVG;
    serialize them with an end tag so later siblings are not swallowed.
    """
    for root in soup.find_all(_FOREIGN_ROOTS):
        for tag in root.find_all(True):
            tag.can_be_empty_element = False


def _inject_base(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    base = soup.new_tag(
        "base", href=f"{ctx.proxy_base}{PROXY_PATH_PREFIX}/{ctx.target_host}/"
    )
    if soup.head is not None:
        soup.head.insert(0, base)
    elif soup.html is not None:
        soup.html.insert(0, base)
    else:
        _insert_at_document_start(soup, base)


def _inject_client_script(soup: BeautifulSoup, client_script: str) -> None:
    marker = Comment(f" {CLIENT_SCRIPT_MARKER} ")
    script = soup.new_tag("script")
    script[PROXY_ELEMENT_ATTR] = "client"
    script.string = client_script

    container = soup.head or soup.body or soup
    container.append(marker)
    container.append(script)


def rewrite_html(
    html: str, ctx: RewriteContext, client_script: Optional[str] = None
) -> str:
    """
    Rewrite an HTML document for ``ctx``. The client script, when given, is
    appended to <head> (else <body>, else the document end) unless a previous
    pass already injected it.
    """
    already_injected = CLIENT_SCRIPT_MARKER in html
    soup = BeautifulSoup(html, "html.parser")

    document_ctx = _apply_document_base(soup, ctx)
    for tag in soup.find_all(True):
        if tag.has_attr(PROXY_ELEMENT_ATTR):
            continue
        _rewrite_element(tag, document_ctx)

    _inject_base(soup, ctx)
    if client_script and not already_injected:
        _inject_client_script(soup, client_script)

    _close_foreign_elements(soup)
    # No eventual encoding, so <meta charset> keeps the value the document declared
    return soup.decode(eventual_encoding=None, formatter=_FORMATTER)
