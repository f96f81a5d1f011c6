"""Per-tenant resource isolation: cgroup v2 controls, disk quotas, and ACLs."""

from siteplane.isolation.cgroups import CgroupFilesystem, CgroupV2Filesystem
from siteplane.isolation.enforcer import (
    Control,
    EnforcementReport,
    IsolationSettings,
    ResourceEnforcer,
    cpu_max_value,
    memory_max_value,
)
from siteplane.isolation.quota import DiskScanCache, QuotaTool

__all__ = [
    "CgroupFilesystem",
    "CgroupV2Filesystem",
    "Control",
    "DiskScanCache",
    "EnforcementReport",
    "IsolationSettings",
    "QuotaTool",
    "ResourceEnforcer",
    "cpu_max_value",
    "memory_max_value",
]
