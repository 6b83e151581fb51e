from iframe_proxy.policy.cdn_evasion import cdn_evasion_profile
from iframe_proxy.policy.cookie_store import (
    CookieStoreBase,
    InMemoryCookieStore,
    cookie_store,
)
from iframe_proxy.policy.cookies import (
    SetCookie,
    cookie_domain,
    map_request_cookies,
    map_set_cookie,
    parse_set_cookie,
    record_set_cookies,
)
from iframe_proxy.policy.fingerprints import (
    FINGERPRINT_POOL,
    BrowserFingerprint,
    FingerprintSource,
    RandomFingerprintSource,
    RotatingFingerprintSource,
    fingerprint_source,
)
from iframe_proxy.policy.headers import (
    CORS_HEADERS,
    HOP_BY_HOP_HEADERS,
    PROXY_REVEALING_HEADERS,
    build_csp,
    build_downstream_headers,
    build_upstream_headers,
    fix_content_type,
    negotiate_accept_encoding,
    parse_csp,
    strip_frame_ancestors,
)

__all__ = [
    "BrowserFingerprint",
    "CORS_HEADERS",
    "CookieStoreBase",
    "FINGERPRINT_POOL",
    "FingerprintSource",
    "HOP_BY_HOP_HEADERS",
    "InMemoryCookieStore",
    "PROXY_REVEALING_HEADERS",
    "RandomFingerprintSource",
    "RotatingFingerprintSource",
    "SetCookie",
    "build_csp",
    "build_downstream_headers",
    "build_upstream_headers",
    "cdn_evasion_profile",
    "cookie_domain",
    "cookie_store",
    "fingerprint_source",
    "fix_content_type",
    "map_request_cookies",
    "map_set_cookie",
    "negotiate_accept_encoding",
    "parse_csp",
    "parse_set_cookie",
    "record_set_cookies",
    "strip_frame_ancestors",
]
