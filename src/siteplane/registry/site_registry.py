"""
siteplane — site registry

File: src/siteplane/registry/site_registry.py
Last updated: 2026-10-16

Purpose
- Authoritative in-memory store of sites and per-tenant limits, persisted through
  ``RegistryStore`` snapshots.

Functional requirements
- Every hostname (primary domain or alias) maps to at most one site.
- Creating a site validates, in order: hostname availability, runtime version,
  owner site quota. Nothing touches disk or memory before validation passes.
- Mutations build a candidate state, persist it, then swap it in. A failed
  snapshot write leaves the in-memory state unchanged.
- Lookups return immutable ``Site`` snapshots.

Non-functional requirements
- One readers-writer lock guards the indices and the snapshot rewrite.
- No module-level state; instances are constructed and passed explicitly.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog

from siteplane.constants import DEFAULT_EXEMPT_OWNERS
from siteplane.domain import ids as domain_ids
from siteplane.domain.errors import (
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    RegistryStoreError,
    ValidationError,
)
from siteplane.domain.models import RegistryStats, Site, SiteStatus, UserLimits
from siteplane.utils.concurrency import ReadWriteLock

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from siteplane.domain.models import RuntimeTable, SitePatch
    from siteplane.registry.provisioning import SiteProvisioner
    from siteplane.registry.store import RegistryStore


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SiteRegistry:
    """Site and tenant-limit registry with hostname-uniqueness and quota invariants.

    Lifecycle: construct, :meth:`load`, operate, optionally :meth:`save`.
    """

    def __init__(
        self,
        store: RegistryStore,
        runtimes: RuntimeTable,
        *,
        provisioner: SiteProvisioner,
        exempt_owners: Iterable[str] = DEFAULT_EXEMPT_OWNERS,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._runtimes = runtimes
        self._provisioner = provisioner
        self._exempt_owners = frozenset(exempt_owners)
        self._clock = clock if clock is not None else _utc_now
        self._id_factory = id_factory if id_factory is not None else domain_ids.generate_site_id
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = ReadWriteLock()

        self._sites: dict[str, Site] = {}
        self._hostnames: dict[str, str] = {}
        self._limits: dict[str, UserLimits] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Rebuild indices from the last snapshots; missing snapshots mean empty."""

        sites = self._store.load_sites()
        limits = self._store.load_user_limits()

        by_id: dict[str, Site] = {}
        for site in sites:
            if not site.id:
                raise RegistryStoreError(f"site {site.domain!r} in snapshot has no id")
            if site.id in by_id:
                raise RegistryStoreError(f"duplicate site id {site.id!r} in snapshot")
            by_id[site.id] = site
        try:
            hostnames = _build_hostname_index(by_id.values())
        except ConflictError as exc:
            raise RegistryStoreError(f"snapshot violates hostname uniqueness: {exc}") from exc

        by_owner: dict[str, UserLimits] = {}
        for item in limits:
            if item.owner_id in by_owner:
                raise RegistryStoreError(f"duplicate limits for owner {item.owner_id!r} in snapshot")
            by_owner[item.owner_id] = item

        with self._lock.write():
            self._sites = by_id
            self._hostnames = hostnames
            self._limits = by_owner

        self._logger.info("registry_loaded", sites=len(by_id), user_limits=len(by_owner))

    def save(self) -> None:
        with self._lock.write():
            self._store.save_sites(self._sites.values())
            self._store.save_user_limits(self._limits.values())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, site_id: str) -> Site:
        with self._lock.read():
            return self._require(site_id)

    def get_by_domain(self, hostname: str) -> Site:
        key = _hostname_key(hostname)
        with self._lock.read():
            site_id = self._hostnames.get(key)
            if site_id is None:
                raise NotFoundError(f"no site serves hostname {hostname!r}")
            return self._sites[site_id]

    def list(self, owner_id: str = "") -> list[Site]:
        with self._lock.read():
            sites = self._ordered_sites()
        if not owner_id:
            return sites
        return [site for site in sites if site.owner_id == owner_id]

    def get_all(self) -> list[Site]:
        with self._lock.read():
            return self._ordered_sites()

    def hostname_index(self) -> Mapping[str, str]:
        """Read-only copy of the hostname to site-id index."""

        with self._lock.read():
            return MappingProxyType(dict(sorted(self._hostnames.items())))

    def count_sites(self, owner_id: str) -> int:
        with self._lock.read():
            return self._count_owner_sites(owner_id)

    def count_by_runtime_version(self) -> dict[str, int]:
        """Active sites per runtime version, keyed in version order."""

        with self._lock.read():
            counts = Counter(site.runtime_version for site in self._sites.values() if site.is_active)
        return dict(sorted(counts.items()))

    def stats(self) -> RegistryStats:
        with self._lock.read():
            total = len(self._sites)
            active = sum(1 for site in self._sites.values() if site.is_active)
        return RegistryStats(total=total, active=active)

    # ------------------------------------------------------------------
    # Site mutations
    # ------------------------------------------------------------------

    def create(self, site: Site) -> Site:
        """Validate, provision, persist, then index ``site``; return the stored record."""

        with self._lock.write():
            if site.id and site.id in self._sites:
                raise ConflictError(f"site id {site.id!r} already exists")
            self._check_hostnames(site)
            self._check_runtime(site.runtime_version)
            self._check_quota(site.owner_id)

            now = self._clock()
            site_id = site.id or self._id_factory()
            if site_id in self._sites:
                raise ConflictError(f"site id {site_id!r} already exists")
            root_path = site.root_path or str(
                self._provisioner.site_root(site.owner_id, site.domain)
            )
            record = replace(
                site,
                id=site_id,
                root_path=root_path,
                created_at=now,
                updated_at=now,
            )

            created = self._provisioner.materialize(record)
            candidate = dict(self._sites)
            candidate[record.id] = record
            try:
                self._store.save_sites(candidate.values())
            except RegistryStoreError:
                self._provisioner.discard(created)
                raise

            self._sites = candidate
            for hostname in record.hostnames:
                self._hostnames[hostname] = record.id

        self._logger.info(
            "registry_site_created",
            site_id=record.id,
            domain=record.domain,
            aliases=list(record.aliases),
            runtime_version=record.runtime_version,
            owner_id=record.owner_id,
        )
        return record

    def update(self, site_id: str, patch: SitePatch) -> Site:
        """Apply ``patch`` to a candidate copy, re-validate, persist, then re-index."""

        with self._lock.write():
            current = self._require(site_id)
            candidate_site = patch.merge_into(current)
            self._check_hostnames(candidate_site, exclude_id=site_id)
            if patch.changes_runtime(current):
                self._check_runtime(candidate_site.runtime_version)
            record = replace(candidate_site, updated_at=self._clock())

            self._commit_site(record, previous=current)

        self._logger.info(
            "registry_site_updated",
            site_id=record.id,
            domain=record.domain,
            runtime_version=record.runtime_version,
            status=record.status.value,
        )
        return record

    def delete(self, site_id: str) -> Site:
        """Drop the site and its hostnames. On-disk content is left in place."""

        with self._lock.write():
            current = self._require(site_id)
            candidate = dict(self._sites)
            del candidate[site_id]
            self._store.save_sites(candidate.values())

            self._sites = candidate
            for hostname in current.hostnames:
                self._hostnames.pop(hostname, None)

        self._logger.info("registry_site_deleted", site_id=site_id, domain=current.domain)
        return current

    def suspend(self, site_id: str) -> Site:
        return self._set_status(site_id, SiteStatus.SUSPENDED)

    def unsuspend(self, site_id: str) -> Site:
        return self._set_status(site_id, SiteStatus.ACTIVE)

    # ------------------------------------------------------------------
    # Tenant limits
    # ------------------------------------------------------------------

    def set_user_limit(self, limits: UserLimits) -> UserLimits:
        with self._lock.write():
            candidate = dict(self._limits)
            candidate[limits.owner_id] = limits
            self._store.save_user_limits(candidate.values())
            self._limits = candidate

        self._logger.info("registry_limits_set", owner_id=limits.owner_id, limits=limits.to_dict())
        return limits

    def get_user_limit(self, owner_id: str) -> UserLimits:
        """Declared limits for ``owner_id``; an unknown owner gets all-zero (unlimited)."""

        with self._lock.read():
            existing = self._limits.get(owner_id)
        if existing is not None:
            return existing
        if not owner_id:
            raise ValidationError("owner_id must not be empty")
        return UserLimits.unlimited(owner_id)

    def list_user_limits(self) -> list[UserLimits]:
        with self._lock.read():
            return [self._limits[key] for key in sorted(self._limits)]

    def delete_user_limit(self, owner_id: str) -> bool:
        with self._lock.write():
            if owner_id not in self._limits:
                return False
            candidate = dict(self._limits)
            del candidate[owner_id]
            self._store.save_user_limits(candidate.values())
            self._limits = candidate

        self._logger.info("registry_limits_deleted", owner_id=owner_id)
        return True

    # ------------------------------------------------------------------
    # Internals; callers hold the lock
    # ------------------------------------------------------------------

    def _require(self, site_id: str) -> Site:
        site = self._sites.get(site_id)
        if site is None:
            raise NotFoundError(f"site {site_id!r} not found")
        return site

    def _ordered_sites(self) -> list[Site]:
        return [self._sites[key] for key in sorted(self._sites)]

    def _count_owner_sites(self, owner_id: str) -> int:
        return sum(1 for site in self._sites.values() if site.owner_id == owner_id)

    def _check_hostnames(self, site: Site, *, exclude_id: str | None = None) -> None:
        for hostname in site.hostnames:
            holder = self._hostnames.get(hostname)
            if holder is not None and holder != exclude_id:
                raise ConflictError(
                    f"hostname {hostname!r} is already used by site {holder!r}",
                    hostname=hostname,
                )

    def _check_runtime(self, version: str) -> None:
        instance = self._runtimes.get(version)
        if instance is None:
            raise ValidationError(f"runtime version {version!r} is not available")
        if not instance.enabled:
            raise ValidationError(f"runtime version {version!r} is not enabled")

    def _check_quota(self, owner_id: str) -> None:
        if not owner_id or owner_id in self._exempt_owners:
            return
        limits = self._limits.get(owner_id)
        if limits is None or not limits.has_site_limit:
            return
        if self._count_owner_sites(owner_id) >= limits.max_sites:
            raise QuotaExceededError(owner_id, limits.max_sites)

    def _commit_site(self, record: Site, *, previous: Site) -> None:
        candidate = dict(self._sites)
        candidate[record.id] = record
        self._store.save_sites(candidate.values())

        self._sites = candidate
        for hostname in previous.hostnames:
            if self._hostnames.get(hostname) == record.id:
                del self._hostnames[hostname]
        for hostname in record.hostnames:
            self._hostnames[hostname] = record.id

    def _set_status(self, site_id: str, status: SiteStatus) -> Site:
        with self._lock.write():
            current = self._require(site_id)
            record = replace(current, status=status, updated_at=self._clock())
            self._commit_site(record, previous=current)

        self._logger.info("registry_site_status_changed", site_id=site_id, status=status.value)
        return record


def _hostname_key(hostname: str) -> str:
    return hostname.strip().lower().rstrip(".")


def _build_hostname_index(sites: Iterable[Site]) -> dict[str, str]:
    index: dict[str, str] = {}
    for site in sorted(sites, key=lambda item: item.id):
        for hostname in site.hostnames:
            holder = index.get(hostname)
            if holder is not None:
                raise ConflictError(
                    f"hostname {hostname!r} claimed by both {holder!r} and {site.id!r}",
                    hostname=hostname,
                )
            index[hostname] = site.id
    return index


__all__ = ["SiteRegistry"]
