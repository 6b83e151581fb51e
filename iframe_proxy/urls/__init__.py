from .translator import (
    URL_ATTRIBUTES,
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

__all__ = [
    "URL_ATTRIBUTES",
    "OriginalLocation",
    "ProxyReference",
    "RewriteContext",
    "UrlKind",
    "classify_url",
    "extract_target_url",
    "to_original",
    "to_proxied",
    "unproxy_url",
]
