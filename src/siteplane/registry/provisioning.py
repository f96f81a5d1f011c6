"""Materialize site directory trees and landing documents on the host."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from siteplane.constants import DEFAULT_EXEMPT_OWNERS
from siteplane.domain.errors import ProvisioningError, SiteplaneError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from siteplane.domain.models import Site
    from siteplane.host.ops import HostOperations, OwnerIdentity

SITE_DIR_MODE: Final[int] = 0o750
BASE_DIR_MODE: Final[int] = 0o751
LANDING_FILE_MODE: Final[int] = 0o644
DEFAULT_LANDING_DOCUMENT: Final[str] = "index.php"

_LANDING_TEMPLATE: Final[str] = """<?php
// Site: {name}
// Domain: {domain}
?>
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title><?= htmlspecialchars({title}) ?></title>
</head>
<body>
    <main>
        <h1><?= htmlspecialchars({title}) ?></h1>
        <p>This site is ready. Upload your application to replace this page.</p>
        <p>PHP <?= PHP_VERSION ?></p>
    </main>
</body>
</html>
"""


class SiteProvisioner:
    """Create the on-disk layout for a site.

    Layout for a non-exempt owner::

        <sites_dir>/<owner>/            0750, owner-only ACL
        <sites_dir>/<owner>/<domain>/   root_path
        <root_path>/<public_path>/      document root + landing document
        <log_dir>/sites/<site id>/      per-site logs
    """

    def __init__(
        self,
        sites_dir: str | os.PathLike[str],
        log_dir: str | os.PathLike[str],
        host: HostOperations,
        *,
        landing_document: str = DEFAULT_LANDING_DOCUMENT,
        exempt_owners: Iterable[str] = DEFAULT_EXEMPT_OWNERS,
        logger: Any | None = None,
    ) -> None:
        if not landing_document or "/" in landing_document or landing_document in {".", ".."}:
            raise ValueError(f"landing_document must be a plain file name, got {landing_document!r}")
        self._sites_dir = Path(sites_dir)
        self._log_dir = Path(log_dir)
        self._host = host
        self._landing_document = landing_document
        self._exempt_owners = frozenset(exempt_owners)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def sites_dir(self) -> Path:
        return self._sites_dir

    def is_exempt(self, owner_id: str) -> bool:
        return not owner_id or owner_id in self._exempt_owners

    def owner_base_dir(self, owner_id: str) -> Path | None:
        if self.is_exempt(owner_id):
            return None
        return self._sites_dir / owner_id

    def site_root(self, owner_id: str, domain: str) -> Path:
        base = self.owner_base_dir(owner_id)
        return (base if base is not None else self._sites_dir) / domain

    def site_log_dir(self, site_id: str) -> Path:
        return self._log_dir / "sites" / site_id

    def materialize(self, site: Site) -> list[Path]:
        """Create directories and the landing document for ``site``; return created paths.

        Anything created before a failure is removed again before the error propagates.
        """

        base = self.owner_base_dir(site.owner_id)
        root = Path(site.root_path)
        log_dir = self.site_log_dir(site.id)
        if base is not None:
            self._require_within(base, self._sites_dir, "owner directory")
        self._require_within(root, self._sites_dir, "site root")
        self._require_within(log_dir, self._log_dir, "site log directory")

        identity = self._host.resolve_owner(site.owner_id) if site.owner_id else None
        if site.owner_id and identity is None:
            self._logger.info("provisioning_owner_unresolved", owner_id=site.owner_id, site_id=site.id)

        created: list[Path] = []
        try:
            if base is not None:
                self._make_dir(base, created)
                if identity is not None:
                    self._secure_owner_base(base, identity)
            for directory in (root, Path(site.document_root), log_dir):
                self._make_dir(directory, created)

            landing = Path(site.document_root) / self._landing_document
            if self._write_landing(landing, site):
                created.append(landing)
        except OSError as exc:
            self.discard(created)
            raise ProvisioningError(f"failed to provision site {site.domain!r}: {exc}") from exc

        if identity is not None and identity.uid > 0:
            self._apply_ownership(root, identity)
            self._apply_ownership(log_dir, identity)

        self._logger.info(
            "provisioning_site_materialized",
            site_id=site.id,
            domain=site.domain,
            root_path=site.root_path,
            created=len(created),
        )
        return created

    def discard(self, created: Iterable[Path]) -> None:
        """Remove paths returned by :meth:`materialize`, deepest first."""

        for path in sorted(created, key=lambda item: len(item.parts), reverse=True):
            try:
                if path.is_dir() and not path.is_symlink():
                    path.rmdir()
                else:
                    path.unlink(missing_ok=True)
            except OSError as exc:
                self._logger.warning("provisioning_discard_failed", path=str(path), error=str(exc))

    def secure_base_directory(self) -> None:
        """Own the sites directory by root with mode 0751 (traverse, no listing)."""

        try:
            self._sites_dir.mkdir(parents=True, exist_ok=True)
            self._host.chown(self._sites_dir, 0, 0)
            self._host.chmod(self._sites_dir, BASE_DIR_MODE)
        except OSError as exc:
            raise ProvisioningError(f"failed to secure {self._sites_dir}: {exc}") from exc

    def _make_dir(self, path: Path, created: list[Path]) -> None:
        missing: list[Path] = []
        current = path
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        path.mkdir(parents=True, exist_ok=True)
        created.extend(reversed(missing))
        self._host.chmod(path, SITE_DIR_MODE)

    @staticmethod
    def _require_within(path: Path, root: Path, label: str) -> None:
        resolved_root = root.resolve()
        resolved = path.resolve()
        if resolved == resolved_root or resolved_root not in resolved.parents:
            raise ValidationError(f"{label} {str(path)!r} is not inside {str(root)!r}")

    def _write_landing(self, path: Path, site: Site) -> bool:
        content = _LANDING_TEMPLATE.format(
            name=_php_comment(site.name),
            domain=_php_comment(site.domain),
            title=_php_string(site.name),
        )
        try:
            with open(path, "x", encoding="utf-8") as handle:
                handle.write(content)
        except FileExistsError:
            return False
        os.chmod(path, LANDING_FILE_MODE)
        return True

    def _secure_owner_base(self, base: Path, identity: OwnerIdentity) -> None:
        try:
            self._host.chown(base, identity.uid, identity.gid)
            if self._host.which("setfacl") is None:
                self._logger.info("provisioning_acl_skipped", path=str(base), reason="setfacl_missing")
                return
            self._host.set_private_acl(base, identity.username)
        except (OSError, SiteplaneError) as exc:
            self._logger.warning(
                "provisioning_owner_base_insecure",
                path=str(base),
                owner=identity.username,
                error=str(exc),
            )

    def _apply_ownership(self, path: Path, identity: OwnerIdentity) -> None:
        try:
            self._host.chown_recursive(path, identity.uid, identity.gid)
        except OSError as exc:
            self._logger.warning(
                "provisioning_chown_failed",
                path=str(path),
                owner=identity.username,
                error=str(exc),
            )


def _php_comment(value: str) -> str:
    return value.replace("?>", "?&gt;").replace("\n", " ")


def _php_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


__all__ = [
    "BASE_DIR_MODE",
    "DEFAULT_LANDING_DOCUMENT",
    "SITE_DIR_MODE",
    "SiteProvisioner",
]
