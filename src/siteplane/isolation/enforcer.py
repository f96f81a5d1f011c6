"""
siteplane — resource isolation enforcer

File: src/siteplane/isolation/enforcer.py
Last updated: 2026-10-17

Purpose
- Translate declared ``UserLimits`` into cgroup v2 controls, a disk quota, and
  a private ACL on the tenant root; report live usage per tenant.

Functional requirements
- Each sub-control (cpu, memory, pids, disk, acl) is attempted independently.
  Failures are collected; successful controls stay in effect (no rollback).
- A zero limit writes nothing for that dimension.
- Hosts without the primitives are not errors: non-Linux platforms make every
  operation a no-op, and missing cgroup v2 / ``setquota`` / ``setfacl`` mark the
  affected controls as skipped.
- Removing a tenant group first migrates its processes to the root group and
  never removes a group that still has members.

Non-functional requirements
- All OS access goes through ``CgroupFilesystem`` and ``HostOperations``.
"""

from __future__ import annotations

import errno
import re
import sys
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import psutil
import structlog

from siteplane.domain.errors import (
    EnforcementError,
    NotFoundError,
    PartialFailureError,
    SiteplaneError,
    ValidationError,
)
from siteplane.domain.ids import validate_opaque_id
from siteplane.domain.models import DiskUsageSource, ResourceUsage
from siteplane.isolation.cgroups import (
    CGROUP_PROCS,
    DEFAULT_CGROUP_ROOT,
    DEFAULT_CONTROLLERS,
    parse_flat_keyed,
    parse_int,
)
from siteplane.isolation.quota import BYTES_PER_MIB, DiskScanCache, QuotaTool, find_filesystem

if TYPE_CHECKING:
    from collections.abc import Callable

    from siteplane.domain.models import UserLimits
    from siteplane.host.ops import HostOperations, OwnerIdentity
    from siteplane.isolation.cgroups import CgroupFilesystem

DEFAULT_GROUP_PREFIX: Final[str] = "siteplane-"
DEFAULT_CPU_PERIOD_US: Final[int] = 100_000
TENANT_ROOT_MODE: Final[int] = 0o750

_GROUP_NAME_UNSAFE_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_.-]")


class Control(StrEnum):
    CPU = "cpu"
    MEMORY = "memory"
    PIDS = "pids"
    DISK = "disk"
    ACL = "acl"


@dataclass(frozen=True, slots=True)
class IsolationSettings:
    """Static enforcer settings, normally taken from the ``isolation`` config section."""

    sites_dir: Path
    cgroup_root: Path = DEFAULT_CGROUP_ROOT
    group_prefix: str = DEFAULT_GROUP_PREFIX
    cpu_period_us: int = DEFAULT_CPU_PERIOD_US
    quota_soft_inodes: int = 100_000
    quota_hard_inodes: int = 150_000
    disk_scan_ttl_seconds: float = 300.0
    controllers: tuple[str, ...] = DEFAULT_CONTROLLERS

    def __post_init__(self) -> None:
        if self.cpu_period_us <= 0:
            raise ValueError("cpu_period_us must be > 0")
        if self.quota_soft_inodes < 0 or self.quota_hard_inodes < self.quota_soft_inodes:
            raise ValueError("quota inode limits must satisfy 0 <= soft <= hard")
        if self.disk_scan_ttl_seconds < 0:
            raise ValueError("disk_scan_ttl_seconds must be >= 0")
        if "/" in self.group_prefix:
            raise ValueError("group_prefix must not contain '/'")


@dataclass(frozen=True, slots=True)
class EnforcementReport:
    """Outcome of one ``apply`` call, per sub-control."""

    owner_id: str
    supported: bool = True
    applied: tuple[str, ...] = ()
    unset: tuple[str, ...] = ()
    skipped: tuple[tuple[str, str], ...] = ()
    failed: tuple[tuple[str, str], ...] = ()
    writes: tuple[tuple[str, str], ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, object]:
        return {
            "owner_id": self.owner_id,
            "supported": self.supported,
            "applied": list(self.applied),
            "unset": list(self.unset),
            "skipped": [{"control": name, "reason": reason} for name, reason in self.skipped],
            "failed": [{"control": name, "reason": reason} for name, reason in self.failed],
            "writes": [{"target": target, "value": value} for target, value in self.writes],
        }


@dataclass(slots=True)
class _ReportBuilder:
    owner_id: str
    applied: list[str] = field(default_factory=list)
    unset: list[str] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    writes: list[tuple[str, str]] = field(default_factory=list)

    def build(self) -> EnforcementReport:
        return EnforcementReport(
            owner_id=self.owner_id,
            applied=tuple(self.applied),
            unset=tuple(self.unset),
            skipped=tuple(self.skipped),
            failed=tuple(self.failed),
            writes=tuple(self.writes),
        )


def cpu_max_value(percent: int, period_us: int = DEFAULT_CPU_PERIOD_US) -> str:
    """``cpu.max`` payload: quota and period in microseconds."""

    return f"{percent * period_us // 100} {period_us}"


def memory_max_value(megabytes: int) -> str:
    return str(megabytes * BYTES_PER_MIB)


class ResourceEnforcer:
    """Apply, inspect, and tear down per-tenant OS isolation."""

    def __init__(
        self,
        settings: IsolationSettings,
        *,
        cgroups: CgroupFilesystem,
        host: HostOperations,
        platform: str = sys.platform,
        clock: Callable[[], float] = time.monotonic,
        pid_exists: Callable[[int], bool] | None = None,
        filesystem_for: Callable[[Path], str | None] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._cgroups = cgroups
        self._host = host
        self._supported = platform.startswith("linux")
        self._quota = QuotaTool(host)
        self._disk_cache = DiskScanCache(settings.disk_scan_ttl_seconds, clock=clock)
        self._pid_exists = pid_exists if pid_exists is not None else psutil.pid_exists
        self._filesystem_for = filesystem_for if filesystem_for is not None else find_filesystem
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def supported(self) -> bool:
        return self._supported

    def group_name(self, owner_id: str) -> str:
        if not owner_id:
            raise ValidationError("owner_id must not be empty")
        return f"{self._settings.group_prefix}{_GROUP_NAME_UNSAFE_RE.sub('_', owner_id)}"

    def tenant_root(self, owner_id: str) -> Path:
        try:
            validate_opaque_id(owner_id)
        except ValueError as exc:
            raise ValidationError(f"owner_id: {exc}") from exc
        return self._settings.sites_dir / owner_id

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, limits: UserLimits) -> EnforcementReport:
        """Apply every sub-control; raise ``PartialFailureError`` if any failed."""

        if not self._supported:
            self._logger.debug("isolation_unsupported_platform", owner_id=limits.owner_id)
            return EnforcementReport(owner_id=limits.owner_id, supported=False)

        builder = _ReportBuilder(owner_id=limits.owner_id)
        identity = self._host.resolve_owner(limits.owner_id)

        self._apply_cgroup_controls(limits, builder)
        self._apply_disk_quota(limits, identity, builder)
        self._apply_acl(limits.owner_id, identity, builder)

        report = builder.build()
        for name, reason in report.skipped:
            self._logger.info(
                "isolation_control_skipped", owner_id=limits.owner_id, control=name, reason=reason
            )
        for name, reason in report.failed:
            self._logger.warning(
                "isolation_control_failed", owner_id=limits.owner_id, control=name, reason=reason
            )
        self._logger.info(
            "isolation_limits_applied",
            owner_id=limits.owner_id,
            applied=list(report.applied),
            failed=len(report.failed),
            max_disk_mb=limits.max_disk_mb,
            max_ram_mb=limits.max_ram_mb,
            max_cpu_percent=limits.max_cpu_percent,
            max_processes=limits.max_processes,
        )
        if report.failed:
            raise PartialFailureError(report)
        return report

    def _apply_cgroup_controls(self, limits: UserLimits, builder: _ReportBuilder) -> None:
        planned: list[tuple[Control, str, str]] = []
        if limits.has_cpu_limit:
            planned.append(
                (Control.CPU, "cpu.max", cpu_max_value(limits.max_cpu_percent, self._settings.cpu_period_us))
            )
        else:
            builder.unset.append(Control.CPU.value)
        if limits.has_ram_limit:
            planned.append((Control.MEMORY, "memory.max", memory_max_value(limits.max_ram_mb)))
        else:
            builder.unset.append(Control.MEMORY.value)
        if limits.has_process_limit:
            planned.append((Control.PIDS, "pids.max", str(limits.max_processes)))
        else:
            builder.unset.append(Control.PIDS.value)

        if not planned:
            return
        if not self._cgroups.is_available():
            builder.skipped.extend((control.value, "cgroup_v2_unavailable") for control, _, _ in planned)
            return

        group = self.group_name(limits.owner_id)
        try:
            self._cgroups.enable_controllers(self._settings.controllers)
        except OSError as exc:
            self._logger.warning(
                "isolation_controllers_not_enabled", owner_id=limits.owner_id, error=str(exc)
            )
        try:
            self._cgroups.create_group(group)
        except OSError as exc:
            builder.failed.extend(
                (control.value, f"cannot create cgroup {group}: {exc}") for control, _, _ in planned
            )
            return

        for control, filename, value in planned:
            try:
                self._cgroups.write(group, filename, value)
            except OSError as exc:
                builder.failed.append((control.value, f"{filename}: {exc}"))
                continue
            builder.applied.append(control.value)
            builder.writes.append((f"{group}/{filename}", value))

    def _apply_disk_quota(
        self,
        limits: UserLimits,
        identity: OwnerIdentity | None,
        builder: _ReportBuilder,
    ) -> None:
        if not limits.has_disk_limit:
            builder.unset.append(Control.DISK.value)
            return
        if not self._quota.can_set():
            builder.skipped.append((Control.DISK.value, "setquota_missing"))
            return
        if identity is None:
            builder.failed.append((Control.DISK.value, f"owner {limits.owner_id!r} has no OS identity"))
            return
        filesystem = self._filesystem_for(self._settings.sites_dir)
        if filesystem is None:
            builder.failed.append(
                (Control.DISK.value, f"no filesystem found for {self._settings.sites_dir}")
            )
            return
        try:
            command = self._quota.set_user_quota(
                identity.username,
                limit_mb=limits.max_disk_mb,
                soft_inodes=self._settings.quota_soft_inodes,
                hard_inodes=self._settings.quota_hard_inodes,
                filesystem=filesystem,
            )
        except SiteplaneError as exc:
            builder.failed.append((Control.DISK.value, str(exc)))
            return
        builder.applied.append(Control.DISK.value)
        builder.writes.append(("setquota", " ".join(command[1:])))

    def _apply_acl(
        self,
        owner_id: str,
        identity: OwnerIdentity | None,
        builder: _ReportBuilder,
    ) -> None:
        root = self.tenant_root(owner_id)
        if not root.is_dir():
            builder.skipped.append((Control.ACL.value, "tenant_root_missing"))
            return
        if identity is None:
            builder.failed.append((Control.ACL.value, f"owner {owner_id!r} has no OS identity"))
            return
        try:
            self._host.chmod(root, TENANT_ROOT_MODE)
        except OSError as exc:
            builder.failed.append((Control.ACL.value, f"chmod {root}: {exc}"))
            return
        if self._host.which("setfacl") is None:
            builder.skipped.append((Control.ACL.value, "setfacl_missing"))
            return
        try:
            self._host.set_private_acl(root, identity.username)
        except SiteplaneError as exc:
            builder.failed.append((Control.ACL.value, str(exc)))
            return
        builder.applied.append(Control.ACL.value)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def usage(self, owner_id: str) -> ResourceUsage:
        """Point-in-time counters for ``owner_id``; unreadable counters read as zero."""

        if not self._supported:
            return ResourceUsage(owner_id=owner_id)

        group = self.group_name(owner_id)
        ram_mb = cpu_usec = processes = 0
        if self._cgroups.is_available() and self._cgroups.group_exists(group):
            memory = parse_int(self._read_counter(group, "memory.current"))
            ram_mb = memory // BYTES_PER_MIB if memory is not None else 0
            cpu_usec = parse_flat_keyed(self._read_counter(group, "cpu.stat")).get("usage_usec", 0)
            processes = parse_int(self._read_counter(group, "pids.current")) or 0

        disk_mb, source = self._disk_usage(owner_id)
        return ResourceUsage(
            owner_id=owner_id,
            ram_used_mb=ram_mb,
            cpu_usage_micros=cpu_usec,
            disk_used_mb=disk_mb,
            process_count=processes,
            disk_source=source,
        )

    def _read_counter(self, group: str, filename: str) -> str:
        try:
            return self._cgroups.read(group, filename)
        except OSError as exc:
            self._logger.debug("isolation_counter_unreadable", group=group, file=filename, error=str(exc))
            return ""

    def _disk_usage(self, owner_id: str) -> tuple[int, DiskUsageSource]:
        identity = self._host.resolve_owner(owner_id)
        username = identity.username if identity is not None else owner_id
        try:
            used = self._quota.used_mb(username)
        except SiteplaneError as exc:
            self._logger.debug("isolation_quota_unreadable", owner_id=owner_id, error=str(exc))
            used = None
        if used is not None:
            return used, DiskUsageSource.QUOTA
        return self._disk_cache.used_mb(owner_id, self.tenant_root(owner_id))

    # ------------------------------------------------------------------
    # Membership and teardown
    # ------------------------------------------------------------------

    def add_process(self, owner_id: str, pid: int) -> None:
        if not self._supported:
            return
        if pid <= 0 or not self._pid_exists(pid):
            raise NotFoundError(f"process {pid} does not exist")
        if not self._cgroups.is_available():
            self._logger.info("isolation_add_process_skipped", owner_id=owner_id, pid=pid)
            return
        group = self.group_name(owner_id)
        try:
            if not self._cgroups.group_exists(group):
                self._cgroups.create_group(group)
            self._cgroups.write(group, CGROUP_PROCS, str(pid))
        except OSError as exc:
            raise EnforcementError(f"failed to move pid {pid} into {group}: {exc}") from exc
        self._logger.info("isolation_process_added", owner_id=owner_id, pid=pid, group=group)

    def remove(self, owner_id: str) -> None:
        """Migrate members to the root group, then delete the tenant group."""

        if not self._supported:
            return
        self._disk_cache.invalidate(owner_id)
        group = self.group_name(owner_id)
        if not self._cgroups.is_available() or not self._cgroups.group_exists(group):
            self._logger.debug("isolation_group_absent", owner_id=owner_id, group=group)
            return

        try:
            members = self._cgroups.list_procs(group)
        except OSError as exc:
            raise EnforcementError(f"cannot list members of {group}: {exc}") from exc
        for pid in members:
            try:
                self._cgroups.write(None, CGROUP_PROCS, str(pid))
            except OSError as exc:
                if exc.errno != errno.ESRCH:
                    self._logger.warning(
                        "isolation_process_migration_failed", group=group, pid=pid, error=str(exc)
                    )

        try:
            remaining = self._cgroups.list_procs(group)
        except OSError as exc:
            raise EnforcementError(f"cannot list members of {group}: {exc}") from exc
        if remaining:
            raise EnforcementError(
                f"cgroup {group} still has {len(remaining)} member process(es); not removing"
            )
        try:
            self._cgroups.remove_group(group)
        except OSError as exc:
            raise EnforcementError(f"failed to remove cgroup {group}: {exc}") from exc
        self._logger.info("isolation_group_removed", owner_id=owner_id, group=group, migrated=len(members))


__all__ = [
    "DEFAULT_CPU_PERIOD_US",
    "DEFAULT_GROUP_PREFIX",
    "Control",
    "EnforcementReport",
    "IsolationSettings",
    "ResourceEnforcer",
    "cpu_max_value",
    "memory_max_value",
]
