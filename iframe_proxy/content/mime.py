from enum import Enum
from typing import Optional

DEFAULT_MIME_TYPE = "text/plain"
DEFAULT_CHARSET = "utf-8"

_JS_TYPES = {
    "application/javascript",
    "text/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "text/ecmascript",
}


class ContentKind(Enum):
    """Body families the rewrite pipeline knows how to transform."""

    HTML = "html"
    CSS = "css"
    JS = "js"
    JSON = "json"
    OTHER = "other"


def extract_mime_type(content_type: Optional[str]) -> str:
    if not content_type:
        return DEFAULT_MIME_TYPE
    mime_type = content_type.split(";", 1)[0].strip().lower()
    return mime_type or DEFAULT_MIME_TYPE


def extract_charset(
    content_type: Optional[str], default: Optional[str] = DEFAULT_CHARSET
) -> Optional[str]:
    for param in (content_type or "").split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'").lower()
    return default


def classify(content_type: Optional[str]) -> ContentKind:
    """Resolve a Content-Type header into a ContentKind once, at the pipeline edge."""
    mime_type = extract_mime_type(content_type)
    if mime_type == "text/html":
        return ContentKind.HTML
    if mime_type == "text/css":
        return ContentKind.CSS
    if mime_type in _JS_TYPES:
        return ContentKind.JS
    if mime_type == "application/json" or mime_type.endswith("+json"):
        return ContentKind.JSON
    return ContentKind.OTHER
