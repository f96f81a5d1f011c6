"""Site registry: in-memory indices, invariants, provisioning, and JSON snapshots."""

from siteplane.registry.provisioning import SiteProvisioner
from siteplane.registry.site_registry import SiteRegistry
from siteplane.registry.store import SITES_FILE_NAME, USER_LIMITS_FILE_NAME, RegistryStore

__all__ = [
    "SITES_FILE_NAME",
    "USER_LIMITS_FILE_NAME",
    "RegistryStore",
    "SiteProvisioner",
    "SiteRegistry",
]
