"""
Process-wide table of the most recent cookie value per (origin domain, name).

Only the latest ``name=value`` pair is kept per name; older values are
overwritten, never appended. Domains are evicted LRU (and optionally by TTL)
so the table stays bounded for the life of the process.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from cachetools import LRUCache, TTLCache

from iframe_proxy import vars as settings


class CookieStoreBase(ABC):
    @abstractmethod
    def record(self, domain: str, name: str, pair: str) -> None:
        pass

    @abstractmethod
    def get(self, domain: str, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def cookies_for(self, domain: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def clear(self, domain: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def stats(self) -> Dict[str, int]:
        pass


class InMemoryCookieStore(CookieStoreBase):
    def __init__(
        self,
        max_domains: Optional[int] = None,
        ttl: Optional[float] = None,
    ):
        max_domains = max_domains or settings.COOKIE_STORE_MAX_DOMAINS
        ttl = settings.COOKIE_STORE_TTL if ttl is None else ttl
        if ttl and ttl > 0:
            self._domains = TTLCache(maxsize=max_domains, ttl=ttl)
        else:
            self._domains = LRUCache(maxsize=max_domains)
        self._lock = threading.Lock()

    def record(self, domain: str, name: str, pair: str) -> None:
        with self._lock:
            table = self._domains.get(domain)
            if table is None:
                table = {}
            table[name] = pair
            # Re-inserting refreshes the domain's LRU position and TTL
            self._domains[domain] = table

    def get(self, domain: str, name: str) -> Optional[str]:
        with self._lock:
            table = self._domains.get(domain)
            return table.get(name) if table else None

    def cookies_for(self, domain: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._domains.get(domain) or {})

    def clear(self, domain: Optional[str] = None) -> None:
        with self._lock:
            if domain is None:
                self._domains.clear()
            else:
                self._domains.pop(domain, None)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            tables = list(self._domains.values())
        return {
            "total_domains": len(tables),
            "total_cookies": sum(len(table) for table in tables),
        }


def cookie_store(name: str = settings.COOKIE_STORE) -> CookieStoreBase:
    if name == "InMemoryCookieStore":
        return InMemoryCookieStore()
    cls = globals().get(name)
    if (
        isinstance(cls, type)
        and issubclass(cls, CookieStoreBase)
        and cls is not CookieStoreBase
    ):
        return cls()
    raise ValueError(f"Unknown cookie store type: {name}")
