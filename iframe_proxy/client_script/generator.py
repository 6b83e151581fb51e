"""
Builds the browser-executed reinforcement script that mirrors the server-side
URL translation for content injected after the initial page load.
"""

import json
from functools import lru_cache
from importlib import resources

from iframe_proxy.urls import URL_ATTRIBUTES, RewriteContext
from iframe_proxy.vars import PROXY_PATH_PREFIX

# Guards against injecting the script twice into the same document
CLIENT_SCRIPT_MARKER = "iframe-proxy:client-processor"
CONFIG_PLACEHOLDER = "__IFRAME_PROXY_CONFIG__"
_TEMPLATE_NAME = "client_processor.js"


@lru_cache(maxsize=1)
def load_template() -> str:
    return (
        resources.files(__package__)
        .joinpath(_TEMPLATE_NAME)
        .read_text(encoding="utf-8")
    )


def client_config(ctx: RewriteContext) -> dict:
    return {
        "proxyBase": ctx.proxy_base,
        "prefix": PROXY_PATH_PREFIX,
        "targetHost": ctx.target_host,
        "targetProtocol": ctx.target_protocol,
        "targetPath": ctx.target_path,
        "documentUrl": ctx.document_url,
        "urlAttributes": list(URL_ATTRIBUTES),
    }


def _script_safe_json(value: dict) -> str:
    # "<" is escaped so no value can close the surrounding <script> element
    return json.dumps(value, ensure_ascii=False).replace("<", "\\u003c")


def build_client_script(ctx: RewriteContext) -> str:
    """Return the JavaScript source configured for ``ctx``."""
    return load_template().replace(
        CONFIG_PLACEHOLDER, _script_safe_json(client_config(ctx))
    )
