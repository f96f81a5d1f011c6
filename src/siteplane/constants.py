"""Stable constants shared across the control plane."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Front-door ports.
DEFAULT_HTTP_PORT: Final[int] = 80
DEFAULT_HTTPS_PORT: Final[int] = 443

# Tenants that never count against a site quota and keep sites directly under sites_dir.
DEFAULT_EXEMPT_OWNERS: Final[tuple[str, ...]] = ("admin",)

# Subprocess deadline used by host operations.
DEFAULT_COMMAND_TIMEOUT_SECONDS: Final[float] = 30.0

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_COMMAND_TIMEOUT_SECONDS",
    "DEFAULT_EXEMPT_OWNERS",
    "DEFAULT_HTTPS_PORT",
    "DEFAULT_HTTP_PORT",
]
