"""
Error taxonomy for the proxy pipeline.

Component-local failures (rewrite, decompression) are recovered where they are
raised. Request-level failures (upstream, malformed target) are rendered once
as a JSON body of the form ``{"error": ..., "details": ...}``.
"""

import socket
from typing import Optional

import httpx
from fastapi.responses import JSONResponse

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)


class ProxyError(Exception):
    """Base class for every failure raised inside the proxy pipeline."""

    def __init__(self, message: str = "Proxy error"):
        self.message = message
        super().__init__(message)


class RewriteFailure(ProxyError):
    """A body or URL transform failed; callers recover with the untouched input."""


class DecompressionFailure(ProxyError):
    """The origin declared a content encoding it did not honour."""


class MalformedTarget(ProxyError):
    """The inbound request does not resolve to a valid target URL."""

    status_code = 400

    def __init__(self, message: str = "Invalid target URL", details: str = ""):
        super().__init__(message)
        self.details = details

    def to_response(self) -> JSONResponse:
        content = {"error": self.message}
        if self.details:
            content["details"] = self.details
        return JSONResponse(status_code=self.status_code, content=content)


class UpstreamFailure(ProxyError):
    """The origin could not be reached; surfaced to the client, never retried."""

    def __init__(self, status_code: int, error: str, details: str = ""):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"error": self.error, "details": self.details},
        )

    @classmethod
    def timeout(cls, details: str = "") -> "UpstreamFailure":
        return cls(504, "Gateway timeout", details)

    @classmethod
    def from_httpx(cls, exc: Exception) -> "UpstreamFailure":
        """Map an httpx transport error onto a status code and error label."""
        details = str(exc) or type(exc).__name__
        if isinstance(exc, httpx.TimeoutException):
            return cls.timeout(details)
        if isinstance(exc, httpx.ConnectError):
            if _is_dns_failure(exc):
                return cls(502, "Host not found", details)
            return cls(502, "Connection refused", details)
        return cls(502, "Bad gateway", details)


def _exception_chain(exc: Optional[BaseException]):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def _is_dns_failure(exc: Exception) -> bool:
    for link in _exception_chain(exc):
        if isinstance(link, socket.gaierror):
            return True
        text = str(link).lower()
        if any(marker in text for marker in _DNS_MARKERS):
            return True
    return False
