"""
Browser fingerprints used to dress outbound requests as a real browser.

Randomness is isolated behind FingerprintSource so callers (and tests) can
swap in a deterministic sequence.
"""

import itertools
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

SEARCH_ENGINE_REFERERS = (
    "https://www.google.com/",
    "https://www.bing.com/",
    "https://duckduckgo.com/",
    "https://search.yahoo.com/",
)

_DOCUMENT_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
    "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
)
_GECKO_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
    "image/webp,*/*;q=0.8"
)


@dataclass(frozen=True)
class BrowserFingerprint:
    name: str
    user_agent: str
    accept: str
    accept_language: str
    accept_encoding: str = "gzip, deflate, br"
    sec_ch_ua: Optional[str] = None
    sec_ch_ua_mobile: Optional[str] = None
    sec_ch_ua_platform: Optional[str] = None
    sec_ch_ua_full_version_list: Optional[str] = None
    viewport_width: Optional[int] = None

    def to_headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Accept-Language": self.accept_language,
            "Accept-Encoding": self.accept_encoding,
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Sec-GPC": "1",
        }
        # Client hints are only sent by Chromium-based browsers
        if self.sec_ch_ua:
            headers["Sec-CH-UA"] = self.sec_ch_ua
            headers["Sec-CH-UA-Mobile"] = self.sec_ch_ua_mobile or "?0"
            headers["Sec-CH-UA-Platform"] = self.sec_ch_ua_platform or '""'
        if self.sec_ch_ua_full_version_list:
            headers["Sec-CH-UA-Full-Version-List"] = self.sec_ch_ua_full_version_list
        if self.viewport_width:
            headers["Viewport-Width"] = str(self.viewport_width)
        return headers


FINGERPRINT_POOL: Sequence[BrowserFingerprint] = (
    BrowserFingerprint(
        name="chrome-macos",
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        accept=_DOCUMENT_ACCEPT,
        accept_language="en-US,en;q=0.9",
        sec_ch_ua='"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        sec_ch_ua_mobile="?0",
        sec_ch_ua_platform='"macOS"',
        sec_ch_ua_full_version_list=(
            '"Not_A Brand";v="8.0.0.0", "Chromium";v="120.0.6099.109", '
            '"Google Chrome";v="120.0.6099.109"'
        ),
        viewport_width=1440,
    ),
    BrowserFingerprint(
        name="chrome-windows",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        accept=_DOCUMENT_ACCEPT,
        accept_language="en-US,en;q=0.9,es;q=0.8",
        sec_ch_ua='"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        sec_ch_ua_mobile="?0",
        sec_ch_ua_platform='"Windows"',
        viewport_width=1920,
    ),
    BrowserFingerprint(
        name="edge-windows",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
        ),
        accept=_DOCUMENT_ACCEPT,
        accept_language="en-US,en;q=0.9",
        sec_ch_ua='"Not_A Brand";v="8", "Chromium";v="120", "Microsoft Edge";v="120"',
        sec_ch_ua_mobile="?0",
        sec_ch_ua_platform='"Windows"',
        viewport_width=1536,
    ),
    BrowserFingerprint(
        name="safari-macos",
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.1 Safari/605.1.15"
        ),
        accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        accept_language="en-US,en;q=0.9",
    ),
    BrowserFingerprint(
        name="firefox-windows",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
            "Gecko/20100101 Firefox/121.0"
        ),
        accept=_GECKO_ACCEPT,
        accept_language="en-US,en;q=0.5",
    ),
)


class FingerprintSource(ABC):
    """Capability that decides which fingerprint and referer an outbound request wears."""

    @abstractmethod
    def next_fingerprint(self) -> BrowserFingerprint:
        pass

    @abstractmethod
    def next_referer(self) -> str:
        pass


class RandomFingerprintSource(FingerprintSource):
    def __init__(
        self,
        pool: Sequence[BrowserFingerprint] = FINGERPRINT_POOL,
        referers: Sequence[str] = SEARCH_ENGINE_REFERERS,
        rng: Optional[random.Random] = None,
    ):
        self.pool = tuple(pool)
        self.referers = tuple(referers)
        self.rng = rng or random.Random()

    def next_fingerprint(self) -> BrowserFingerprint:
        return self.rng.choice(self.pool)

    def next_referer(self) -> str:
        return self.rng.choice(self.referers)


class RotatingFingerprintSource(FingerprintSource):
    """Deterministic round-robin over the pool."""

    def __init__(
        self,
        pool: Sequence[BrowserFingerprint] = FINGERPRINT_POOL,
        referers: Sequence[str] = SEARCH_ENGINE_REFERERS,
    ):
        self._fingerprints = itertools.cycle(tuple(pool))
        self._referers = itertools.cycle(tuple(referers))
        self._lock = threading.Lock()

    def next_fingerprint(self) -> BrowserFingerprint:
        with self._lock:
            return next(self._fingerprints)

    def next_referer(self) -> str:
        with self._lock:
            return next(self._referers)


def fingerprint_source(name: str = "random") -> FingerprintSource:
    if name == "random":
        return RandomFingerprintSource()
    if name == "rotating":
        return RotatingFingerprintSource()
    raise ValueError(f"Unknown fingerprint source: {name}")
