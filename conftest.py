import random

import pytest

from iframe_proxy.policy import (
    FINGERPRINT_POOL,
    InMemoryCookieStore,
    RandomFingerprintSource,
)
from iframe_proxy.urls import RewriteContext

PROXY_BASE = "http://localhost:3000"


@pytest.fixture
def proxy_base():
    return PROXY_BASE


@pytest.fixture
def rewrite_context():
    """Context for a document fetched from https://example.com/docs/page.html."""
    return RewriteContext.from_target(
        PROXY_BASE,
        "https://example.com/docs/page.html",
        original_url=f"{PROXY_BASE}/proxy/example.com/docs/page.html",
    )


@pytest.fixture
def root_context():
    """Context for https://example.com/ (Scenario-style tests)."""
    return RewriteContext.from_target(PROXY_BASE, "https://example.com/")


@pytest.fixture
def cookie_store():
    """A fresh cookie store, isolated from the process-wide one."""
    return InMemoryCookieStore(max_domains=16, ttl=0)


@pytest.fixture
def fingerprints():
    """Deterministic fingerprint source pinned to the first pool entry."""
    return RandomFingerprintSource(
        pool=FINGERPRINT_POOL[:1],
        referers=("https://www.google.com/",),
        rng=random.Random(1234),
    )
