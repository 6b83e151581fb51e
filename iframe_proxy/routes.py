import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from iframe_proxy.proxy.route import proxy_base_for
from iframe_proxy.proxy.route import router as proxy_router
from iframe_proxy.urls import extract_target_url, to_proxied, RewriteContext
from iframe_proxy.vars import PROXY_PATH_PREFIX

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

DEFAULT_DEBUG_SITE = "example.com"


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def describe_site(site: str, proxy_base: str) -> dict:
    """Show how the router and translator see ``/proxy/{site}``."""
    test_path = f"{PROXY_PATH_PREFIX}/{site}"
    extracted = extract_target_url(test_path)
    proxied_root = None
    if extracted:
        ctx = RewriteContext.from_target(proxy_base, extracted)
        proxied_root = to_proxied("/", ctx)
    return {
        "site": site,
        "testPath": test_path,
        "extractedUrl": extracted,
        "pathParts": test_path.split("/"),
        "proxiedRoot": proxied_root,
    }


@router.get("/debug")
async def debug(request: Request):
    return describe_site(DEFAULT_DEBUG_SITE, proxy_base_for(request))


@router.get("/debug/{site}")
async def debug_site(site: str, request: Request):
    logger.debug(f"[Debug] Translating site {site}")
    return describe_site(site, proxy_base_for(request))


router.include_router(proxy_router)
