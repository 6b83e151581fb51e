import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "iframe-proxy")
HOST = os.environ.get("HOSTNAME", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Public-facing origin of the proxy; derived from the inbound request when empty
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")
# Canonical path segment, part of the wire contract shared with the client script
PROXY_PATH_PREFIX = "/proxy"

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "60"))
TARGET_TLS_VERIFY = os.environ.get("TARGET_TLS_VERIFY", "true").lower() == "true"

REWRITE_HTML = os.environ.get("REWRITE_HTML", "true").lower() == "true"
REWRITE_CSS = os.environ.get("REWRITE_CSS", "true").lower() == "true"
REWRITE_JS = os.environ.get("REWRITE_JS", "true").lower() == "true"
REWRITE_JSON = os.environ.get("REWRITE_JSON", "true").lower() == "true"
INJECT_CLIENT_SCRIPT = (
    os.environ.get("INJECT_CLIENT_SCRIPT", "true").lower() == "true"
)

COOKIE_STORE = os.getenv("COOKIE_STORE", "InMemoryCookieStore")
COOKIE_STORE_MAX_DOMAINS = int(os.getenv("COOKIE_STORE_MAX_DOMAINS", "1024"))
COOKIE_STORE_TTL = float(os.getenv("COOKIE_STORE_TTL", "0"))

FINGERPRINT_SOURCE = os.getenv("FINGERPRINT_SOURCE", "random").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
