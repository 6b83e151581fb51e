from .mime import ContentKind, classify, extract_charset, extract_mime_type
from .pipeline import rewrite_body, rewrite_enabled

__all__ = [
    "ContentKind",
    "classify",
    "extract_charset",
    "extract_mime_type",
    "rewrite_body",
    "rewrite_enabled",
]
