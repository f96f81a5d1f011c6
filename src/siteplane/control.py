"""
siteplane — control plane facade

File: src/siteplane/control.py
Last updated: 2026-10-18

Purpose
- Orchestrate the three cores: mutate the registry, then bring routing documents
  and tenant isolation in line with the new state.

Functional requirements
- Site mutations re-render and write routing documents after they commit.
- Limit changes persist first, then apply; enforcement failures are logged and
  returned in the report instead of raised.
- The proxy process is never signalled; reloading is the caller's job.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from siteplane.domain.errors import EnforcementError, PartialFailureError
from siteplane.domain.models import RuntimeInstance, StaticRuntimeTable
from siteplane.host.ops import SystemHostOperations
from siteplane.isolation.cgroups import CgroupV2Filesystem
from siteplane.isolation.enforcer import EnforcementReport, IsolationSettings, ResourceEnforcer
from siteplane.observability.logging import correlation_scope
from siteplane.proxy.generator import ProxyConfigGenerator
from siteplane.registry.provisioning import SiteProvisioner
from siteplane.registry.site_registry import SiteRegistry
from siteplane.registry.store import RegistryStore

if TYPE_CHECKING:
    from collections.abc import Mapping

    from siteplane.domain.models import ResourceUsage, Site, SitePatch, UserLimits
    from siteplane.host.ops import HostOperations
    from siteplane.isolation.cgroups import CgroupFilesystem
    from siteplane.proxy.generator import RenderBundle, WriteResult


@dataclass(frozen=True, slots=True)
class OwnerRemoval:
    owner_id: str
    limits_deleted: bool
    teardown_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.teardown_error is None

    def to_dict(self) -> dict[str, object]:
        return {
            "owner_id": self.owner_id,
            "limits_deleted": self.limits_deleted,
            "teardown_error": self.teardown_error,
        }


class ControlPlane:
    """Single entry point used by the CLI and any embedding service."""

    def __init__(
        self,
        registry: SiteRegistry,
        generator: ProxyConfigGenerator,
        enforcer: ResourceEnforcer,
        runtimes: StaticRuntimeTable,
        *,
        http_port: int,
        https_port: int,
        provisioner: SiteProvisioner | None = None,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._provisioner = provisioner
        self._generator = generator
        self._enforcer = enforcer
        self._runtimes = runtimes
        self._http_port = http_port
        self._https_port = https_port
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def registry(self) -> SiteRegistry:
        return self._registry

    @property
    def generator(self) -> ProxyConfigGenerator:
        return self._generator

    @property
    def enforcer(self) -> ResourceEnforcer:
        return self._enforcer

    @property
    def runtimes(self) -> StaticRuntimeTable:
        return self._runtimes

    def initialize(self, *, secure: bool = False) -> list[WriteResult]:
        """Create empty snapshots when absent and write the initial routing documents."""

        with correlation_scope(operation="initialize"):
            self._registry.save()
            if secure and self._provisioner is not None:
                self._provisioner.secure_base_directory()
            return self.sync_routing()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def render(self) -> RenderBundle:
        """Render every routing document without writing anything."""

        return self._generator.render_all(
            self._registry.get_all(),
            self._runtimes.instances(),
            http_port=self._http_port,
            https_port=self._https_port,
        )

    def sync_routing(self) -> list[WriteResult]:
        bundle = self.render()
        results = self._generator.write_bundle(bundle)
        self._logger.info(
            "control_routing_synced",
            documents=len(results),
            changed=sum(1 for item in results if item.changed),
            skipped_sites=list(bundle.skipped_site_ids),
        )
        return results

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------

    def create_site(self, site: Site) -> Site:
        with correlation_scope(operation="create_site", owner_id=site.owner_id or None):
            created = self._registry.create(site)
            self.sync_routing()
            return created

    def update_site(self, site_id: str, patch: SitePatch) -> Site:
        with correlation_scope(operation="update_site", site_id=site_id):
            updated = self._registry.update(site_id, patch)
            self.sync_routing()
            return updated

    def delete_site(self, site_id: str) -> Site:
        with correlation_scope(operation="delete_site", site_id=site_id):
            removed = self._registry.delete(site_id)
            self.sync_routing()
            return removed

    def suspend_site(self, site_id: str) -> Site:
        with correlation_scope(operation="suspend_site", site_id=site_id):
            site = self._registry.suspend(site_id)
            self.sync_routing()
            return site

    def unsuspend_site(self, site_id: str) -> Site:
        with correlation_scope(operation="unsuspend_site", site_id=site_id):
            site = self._registry.unsuspend(site_id)
            self.sync_routing()
            return site

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def set_limits(self, limits: UserLimits) -> EnforcementReport:
        """Persist ``limits`` and apply them; the report carries any failed controls."""

        with correlation_scope(operation="set_limits", owner_id=limits.owner_id):
            stored = self._registry.set_user_limit(limits)
            return self._apply_reporting(stored)

    def apply_limits(self, owner_id: str) -> EnforcementReport:
        """Re-apply stored limits. Raises ``PartialFailureError`` when a control failed."""

        with correlation_scope(operation="apply_limits", owner_id=owner_id):
            return self._enforcer.apply(self._registry.get_user_limit(owner_id))

    def apply_all_limits(self) -> list[EnforcementReport]:
        with correlation_scope(operation="apply_all_limits"):
            return [self._apply_reporting(item) for item in self._registry.list_user_limits()]

    def remove_owner(self, owner_id: str) -> OwnerRemoval:
        """Forget the tenant's limits, then tear down its isolation group.

        A teardown failure is logged and carried in the result; the stored
        limits are gone either way.
        """

        with correlation_scope(operation="remove_owner", owner_id=owner_id):
            deleted = self._registry.delete_user_limit(owner_id)
            try:
                self._enforcer.remove(owner_id)
            except EnforcementError as exc:
                self._logger.warning("control_group_not_removed", owner_id=owner_id, error=str(exc))
                return OwnerRemoval(owner_id=owner_id, limits_deleted=deleted, teardown_error=str(exc))
            return OwnerRemoval(owner_id=owner_id, limits_deleted=deleted)

    def usage(self, owner_id: str) -> ResourceUsage:
        return self._enforcer.usage(owner_id)

    def stats(self) -> dict[str, object]:
        stats = self._registry.stats()
        return {
            "sites": {"total": stats.total, "active": stats.active, "suspended": stats.suspended},
            "by_runtime_version": self._registry.count_by_runtime_version(),
            "runtimes": [item.to_dict() for item in self._runtimes.instances()],
            "user_limits": len(self._registry.list_user_limits()),
        }

    def _apply_reporting(self, limits: UserLimits) -> EnforcementReport:
        try:
            return self._enforcer.apply(limits)
        except PartialFailureError as exc:
            return exc.report
        except EnforcementError as exc:
            self._logger.warning(
                "control_limits_not_applied", owner_id=limits.owner_id, error=str(exc)
            )
            return EnforcementReport(owner_id=limits.owner_id, failed=(("apply", str(exc)),))


def build_control_plane(
    config: Mapping[str, Any],
    *,
    host: HostOperations | None = None,
    cgroups: CgroupFilesystem | None = None,
    platform: str = sys.platform,
    load: bool = True,
) -> ControlPlane:
    """Wire a control plane from an effective (validated, normalized) config."""

    paths = config["paths"]
    proxy = config["proxy"]
    registry_cfg = config["registry"]
    isolation = config["isolation"]

    resolved_host: HostOperations = (
        host
        if host is not None
        else SystemHostOperations(command_timeout_seconds=config["host"]["command_timeout_seconds"])
    )
    runtimes = StaticRuntimeTable(RuntimeInstance.from_dict(item) for item in config["runtimes"])
    exempt_owners = tuple(registry_cfg["exempt_owners"])

    provisioner = SiteProvisioner(
        paths["sites_dir"],
        paths["log_dir"],
        resolved_host,
        landing_document=registry_cfg["landing_document"],
        exempt_owners=exempt_owners,
    )
    registry = SiteRegistry(
        RegistryStore(paths["data_dir"]),
        runtimes,
        provisioner=provisioner,
        exempt_owners=exempt_owners,
    )
    if load:
        registry.load()

    generator = ProxyConfigGenerator(
        paths["proxy_config_dir"],
        log_dir=paths["log_dir"],
        admin_address=proxy["admin_address"],
        log_roll_size_mb=proxy["log_roll_size_mb"],
        log_roll_keep=proxy["log_roll_keep"],
    )
    settings = IsolationSettings(
        sites_dir=Path(paths["sites_dir"]),
        cgroup_root=Path(isolation["cgroup_root"]),
        group_prefix=isolation["group_prefix"],
        cpu_period_us=isolation["cpu_period_us"],
        quota_soft_inodes=isolation["quota_soft_inodes"],
        quota_hard_inodes=isolation["quota_hard_inodes"],
        disk_scan_ttl_seconds=isolation["disk_scan_ttl_seconds"],
    )
    enforcer = ResourceEnforcer(
        settings,
        cgroups=cgroups if cgroups is not None else CgroupV2Filesystem(settings.cgroup_root),
        host=resolved_host,
        platform=platform,
    )
    return ControlPlane(
        registry,
        generator,
        enforcer,
        runtimes,
        http_port=proxy["http_port"],
        https_port=proxy["https_port"],
        provisioner=provisioner,
    )


__all__ = ["ControlPlane", "OwnerRemoval", "build_control_plane"]
