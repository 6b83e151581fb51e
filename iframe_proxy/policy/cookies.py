"""
Cookie domain remapping between the origin and the proxy origin.

Set-Cookie values are recorded per origin domain and re-emitted with their
Domain attribute pointed at the proxy; request cookies are mapped back to the
most recent value the origin handed out.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from iframe_proxy.policy.cookie_store import CookieStoreBase
from iframe_proxy.utils import mask_cookie_values

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class SetCookie:
    name: str
    value: str
    attributes: Tuple[str, ...] = ()

    @property
    def pair(self) -> str:
        return f"{self.name}={self.value}"

    @property
    def domain(self) -> Optional[str]:
        for attribute in self.attributes:
            key, _, value = attribute.partition("=")
            if key.strip().lower() == "domain":
                return value.strip()
        return None


def cookie_domain(host: str) -> str:
    """Key used for an origin in the cookie store: lower-cased host, no port."""
    hostname = host.rsplit("@", 1)[-1]
    if hostname.startswith("["):
        return hostname.split("]", 1)[0].lower() + "]"
    return hostname.split(":", 1)[0].lower()


def parse_set_cookie(header: str) -> Optional[SetCookie]:
    parts = [part.strip() for part in header.split(";")]
    name, sep, value = parts[0].partition("=")
    name = name.strip()
    if not sep or not name:
        return None
    return SetCookie(
        name=name,
        value=value.strip(),
        attributes=tuple(part for part in parts[1:] if part),
    )


def map_set_cookie(header: str, proxy_domain: str) -> str:
    """
    Point the Domain attribute of a Set-Cookie value at ``proxy_domain``.
    Every other attribute (Path, Expires, Max-Age, Secure, HttpOnly, SameSite)
    is kept verbatim.
    """
    parts = [part.strip() for part in header.split(";")]
    mapped = [parts[0]]
    for attribute in parts[1:]:
        if not attribute:
            continue
        if attribute.partition("=")[0].strip().lower() == "domain":
            mapped.append(f"Domain={proxy_domain}")
        else:
            mapped.append(attribute)
    return "; ".join(mapped)


def record_set_cookies(
    headers: Iterable[str],
    origin_host: str,
    proxy_domain: str,
    store: CookieStoreBase,
) -> List[str]:
    """Record every Set-Cookie value for ``origin_host`` and return the mapped values."""
    domain = cookie_domain(origin_host)
    mapped = []
    for header in headers:
        cookie = parse_set_cookie(header)
        if cookie is None:
            logger.debug(
                f"[Cookies] Passing through unparsable Set-Cookie: "
                f"{mask_cookie_values(header)!r}"
            )
            mapped.append(header)
            continue
        store.record(domain, cookie.name, cookie.pair)
        mapped.append(map_set_cookie(header, proxy_domain))
    if mapped:
        logger.debug(f"[Cookies] Recorded {len(mapped)} cookie(s) for {domain}")
    return mapped


def map_request_cookies(
    cookie_header: str, origin_host: str, store: CookieStoreBase
) -> str:
    """
    Replace each ``name=value`` pair of an inbound Cookie header with the most
    recent pair recorded for the origin. Unknown names pass through verbatim.
    """
    known = store.cookies_for(cookie_domain(origin_host))
    if not known:
        return cookie_header

    pairs = []
    for pair in cookie_header.split(";"):
        pair = pair.strip()
        if not pair:
            continue
        name = pair.partition("=")[0].strip()
        pairs.append(known.get(name, pair))
    return "; ".join(pairs)
