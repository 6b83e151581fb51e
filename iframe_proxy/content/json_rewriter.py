import json
from typing import Any

from iframe_proxy.urls import RewriteContext, to_proxied

_URL_PREFIXES = ("http://", "https://", "//", "/")


def looks_like_url(value: str) -> bool:
    return value.startswith(_URL_PREFIXES)


def rewrite_value(value: Any, ctx: RewriteContext) -> Any:
    """Walk a decoded JSON value, translating URL-looking strings. Keys are kept."""
    if isinstance(value, str):
        return to_proxied(value, ctx) if looks_like_url(value) else value
    if isinstance(value, list):
        return [rewrite_value(item, ctx) for item in value]
    if isinstance(value, dict):
        return {key: rewrite_value(item, ctx) for key, item in value.items()}
    return value


def rewrite_json(text: str, ctx: RewriteContext) -> str:
    """Raises json.JSONDecodeError on malformed input; the pipeline fails open."""
    data = json.loads(text)
    rewritten = rewrite_value(data, ctx)
    if rewritten == data:
        return text
    return json.dumps(rewritten, ensure_ascii=False, separators=(",", ":"))
