from .generator import (
    CLIENT_SCRIPT_MARKER,
    build_client_script,
    client_config,
)

__all__ = ["CLIENT_SCRIPT_MARKER", "build_client_script", "client_config"]
