"""
siteplane — domain package

File: src/siteplane/domain/__init__.py
Last updated: 2026-10-14

Purpose
- Domain types shared across the registry, proxy generator, and isolation enforcer.

Functional requirements
- Domain objects are immutable snapshots, serializable to plain JSON objects.
- Invalid input raises ``ValidationError`` at construction time.

Non-functional requirements
- No IO side effects; standard library only.
"""

from siteplane.domain.errors import (
    ConflictError,
    EnforcementError,
    GenerationError,
    NotFoundError,
    PartialFailureError,
    ProvisioningError,
    QuotaExceededError,
    RegistryStoreError,
    SiteplaneError,
    ValidationError,
)
from siteplane.domain.models import (
    DEFAULT_PUBLIC_PATH,
    DEFAULT_WORKER_NUM,
    DiskUsageSource,
    RegistryStats,
    ResourceUsage,
    RuntimeInstance,
    RuntimeTable,
    Site,
    SitePatch,
    SiteStatus,
    StaticRuntimeTable,
    UserLimits,
    normalize_hostname,
)

__all__ = [
    "DEFAULT_PUBLIC_PATH",
    "DEFAULT_WORKER_NUM",
    "ConflictError",
    "DiskUsageSource",
    "EnforcementError",
    "GenerationError",
    "NotFoundError",
    "PartialFailureError",
    "ProvisioningError",
    "QuotaExceededError",
    "RegistryStats",
    "RegistryStoreError",
    "ResourceUsage",
    "RuntimeInstance",
    "RuntimeTable",
    "Site",
    "SitePatch",
    "SiteStatus",
    "SiteplaneError",
    "StaticRuntimeTable",
    "UserLimits",
    "ValidationError",
    "normalize_hostname",
]
