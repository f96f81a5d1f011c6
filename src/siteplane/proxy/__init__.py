"""Reverse-proxy configuration generation (Caddyfile grammar)."""

from siteplane.proxy.caddyfile import quote_token, sanitize_matcher
from siteplane.proxy.generator import (
    FRONT_DOOR_FILE_NAME,
    INSTANCE_FILE_PREFIX,
    ProxyConfigGenerator,
    RenderBundle,
    RenderedDocument,
    WriteResult,
)

__all__ = [
    "FRONT_DOOR_FILE_NAME",
    "INSTANCE_FILE_PREFIX",
    "ProxyConfigGenerator",
    "RenderBundle",
    "RenderedDocument",
    "WriteResult",
    "quote_token",
    "sanitize_matcher",
]
