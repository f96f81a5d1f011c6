"""
siteplane — single-node hosting control plane

File: src/siteplane/__init__.py
Last updated: 2026-10-18

Purpose
- Package root. Tracks hosted sites, compiles reverse-proxy routing documents,
  and enforces per-tenant resource isolation.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
