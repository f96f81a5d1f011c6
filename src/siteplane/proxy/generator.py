"""
siteplane — reverse-proxy configuration generator

File: src/siteplane/proxy/generator.py
Last updated: 2026-10-16

Purpose
- Compile registry state into Caddyfile documents: one front-door document that
  routes hostnames to runtime-instance ports, and one document per enabled
  runtime instance serving its sites through ``php_server``.

Functional requirements
- Rendering is a pure, deterministic function of its inputs: sites in id order,
  environment entries in key order, runtime instances in version order.
- A runtime instance with no active sites still gets a listening placeholder.
- A worker-mode site whose worker file is missing degrades to standard
  execution with a diagnostic comment; generation never fails for it.
- Active sites whose runtime has no enabled instance are skipped and reported.
- Writes are atomic per document and skipped when content is unchanged.

Non-functional requirements
- A render failure raises ``GenerationError`` before any file is touched.
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from siteplane.domain.errors import GenerationError
from siteplane.proxy.caddyfile import comment, indent, quote_token, unique_matchers
from siteplane.utils.fs import atomic_write
from siteplane.utils.hashing import sha256_file, sha256_text

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from siteplane.domain.models import RuntimeInstance, Site

FRONT_DOOR_FILE_NAME: Final[str] = "Caddyfile.proxy"
INSTANCE_FILE_PREFIX: Final[str] = "Caddyfile.php-"
DEFAULT_ADMIN_ADDRESS: Final[str] = "localhost:2019"
DOCUMENT_FILE_MODE: Final[int] = 0o644

_SITE_LOG_ROLL_SIZE_MB: Final[int] = 50
_SITE_LOG_ROLL_KEEP: Final[int] = 3
_ENCODINGS: Final[str] = "encode zstd br gzip"


@dataclass(frozen=True, slots=True)
class RenderedDocument:
    """One rendered document and where it belongs on disk."""

    path: Path
    content: str
    digest: str

    @classmethod
    def build(cls, path: Path, content: str) -> RenderedDocument:
        return cls(path=path, content=content, digest=sha256_text(content))


@dataclass(frozen=True, slots=True)
class RenderBundle:
    """Front-door document plus one document per enabled runtime instance."""

    documents: tuple[RenderedDocument, ...]
    skipped_site_ids: tuple[str, ...] = ()

    @property
    def front_door(self) -> RenderedDocument:
        return self.documents[0]

    def by_name(self, name: str) -> RenderedDocument:
        for document in self.documents:
            if document.path.name == name:
                return document
        raise KeyError(name)


@dataclass(frozen=True, slots=True)
class WriteResult:
    path: Path
    changed: bool


class ProxyConfigGenerator:
    """Render and write Caddyfile documents for the front door and runtime instances."""

    def __init__(
        self,
        output_dir: str | os.PathLike[str],
        *,
        log_dir: str | os.PathLike[str],
        admin_address: str = DEFAULT_ADMIN_ADDRESS,
        log_roll_size_mb: int = 100,
        log_roll_keep: int = 5,
        path_exists: Callable[[str], bool] | None = None,
        logger: Any | None = None,
    ) -> None:
        if log_roll_size_mb <= 0:
            raise ValueError("log_roll_size_mb must be > 0")
        if log_roll_keep <= 0:
            raise ValueError("log_roll_keep must be > 0")
        self._output_dir = Path(output_dir)
        self._log_dir = str(log_dir)
        self._admin_address = admin_address
        self._log_roll_size_mb = log_roll_size_mb
        self._log_roll_keep = log_roll_keep
        self._path_exists = path_exists if path_exists is not None else os.path.exists
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def front_door_path(self) -> Path:
        return self._output_dir / FRONT_DOOR_FILE_NAME

    def instance_path(self, version: str) -> Path:
        return self._output_dir / f"{INSTANCE_FILE_PREFIX}{version}"

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_front_door(
        self,
        sites: Iterable[Site],
        runtimes: Iterable[RuntimeInstance],
        *,
        http_port: int,
        https_port: int,
    ) -> str:
        content, _ = self._render_front_door(sites, runtimes, http_port=http_port, https_port=https_port)
        return content

    def render_instance(
        self,
        version: str,
        port: int,
        admin_port: int,
        sites: Iterable[Site],
    ) -> str:
        """Render the per-instance document for ``version`` listening on ``port``."""

        try:
            return self._render_instance(version, port, admin_port, sites)
        except GenerationError:
            raise
        except (TypeError, ValueError) as exc:
            raise GenerationError(f"failed to render runtime {version!r}: {exc}") from exc

    def render_site(self, site: Site) -> str:
        """Standalone document for one site, with its own access log."""

        try:
            lines = [
                comment(f"Site: {site.name}"),
                comment(f"Domain: {site.domain}"),
                comment(f"Runtime: {site.runtime_version}"),
                "",
                ", ".join(quote_token(host) for host in site.hostnames) + " {",
            ]
            body = [
                f"root * {quote_token(site.document_root)}",
                _ENCODINGS,
                *self._execution_lines(site),
                "log {",
                *indent(
                    [
                        "output file "
                        + quote_token(posixpath.join(self._log_dir, "sites", site.id, "access.log"))
                        + " {",
                        *indent(
                            [
                                f"roll_size {_SITE_LOG_ROLL_SIZE_MB}mb",
                                f"roll_keep {_SITE_LOG_ROLL_KEEP}",
                            ],
                            1,
                        ),
                        "}",
                    ],
                    1,
                ),
                "}",
            ]
            lines.extend(indent(body, 1))
            lines.append("}")
        except GenerationError:
            raise
        except (TypeError, ValueError) as exc:
            raise GenerationError(f"failed to render site {site.id!r}: {exc}") from exc
        return "\n".join(lines) + "\n"

    def render_all(
        self,
        sites: Iterable[Site],
        runtimes: Iterable[RuntimeInstance],
        *,
        http_port: int,
        https_port: int,
    ) -> RenderBundle:
        """Render every document without touching disk."""

        site_list = list(sites)
        instances = sorted(runtimes, key=lambda item: item.version)
        try:
            front_door, skipped = self._render_front_door(
                site_list, instances, http_port=http_port, https_port=https_port
            )
            documents = [RenderedDocument.build(self.front_door_path(), front_door)]
            for instance in instances:
                if not instance.enabled:
                    continue
                content = self._render_instance(
                    instance.version, instance.port, instance.admin_port, site_list
                )
                documents.append(RenderedDocument.build(self.instance_path(instance.version), content))
        except GenerationError:
            raise
        except (TypeError, ValueError) as exc:
            raise GenerationError(f"failed to render proxy configuration: {exc}") from exc
        return RenderBundle(documents=tuple(documents), skipped_site_ids=skipped)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_document(self, document: RenderedDocument) -> WriteResult:
        try:
            if document.path.is_file() and sha256_file(document.path) == document.digest:
                return WriteResult(path=document.path, changed=False)
            atomic_write(document.path, document.content, mode=DOCUMENT_FILE_MODE)
        except OSError as exc:
            raise GenerationError(f"failed to write {document.path}: {exc}") from exc
        self._logger.info("proxy_document_written", path=str(document.path), digest=document.digest)
        return WriteResult(path=document.path, changed=True)

    def write_bundle(self, bundle: RenderBundle) -> list[WriteResult]:
        return [self.write_document(document) for document in bundle.documents]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _render_front_door(
        self,
        sites: Iterable[Site],
        runtimes: Iterable[RuntimeInstance],
        *,
        http_port: int,
        https_port: int,
    ) -> tuple[str, tuple[str, ...]]:
        ports = {item.version: item.port for item in runtimes if item.enabled}
        lines = [
            comment("siteplane front-door proxy configuration"),
            comment("Generated file; manual edits are overwritten."),
            "",
            "{",
            *indent(
                [
                    f"admin {quote_token(self._admin_address)}",
                    "auto_https off",
                    f"http_port {http_port}",
                    f"https_port {https_port}",
                    "",
                    *self._global_log_block(posixpath.join(self._log_dir, "caddy-proxy.log")),
                ],
                1,
            ),
            "}",
            "",
        ]

        skipped: list[str] = []
        for site in _ordered_active(sites):
            port = ports.get(site.runtime_version)
            if port is None:
                skipped.append(site.id)
                self._logger.warning(
                    "proxy_site_skipped",
                    site_id=site.id,
                    domain=site.domain,
                    runtime_version=site.runtime_version,
                    reason="runtime_not_enabled",
                )
                continue
            lines.append(comment(f"Site: {site.name} (runtime {site.runtime_version})"))
            lines.append(", ".join(quote_token(f"http://{host}") for host in site.hostnames) + " {")
            lines.append(f"\treverse_proxy localhost:{port}")
            lines.append("}")
            lines.append("")

        lines.extend(
            [
                comment("Default fallback for unmatched hosts"),
                f":{http_port} {{",
                '\trespond "Site not found" 404',
                "}",
            ]
        )
        return "\n".join(lines) + "\n", tuple(skipped)

    def _render_instance(
        self,
        version: str,
        port: int,
        admin_port: int,
        sites: Iterable[Site],
    ) -> str:
        version_sites = [site for site in _ordered_active(sites) if site.runtime_version == version]
        lines = [
            comment(f"siteplane runtime {version} instance configuration"),
            comment("Generated file; manual edits are overwritten."),
            "",
            "{",
            *indent(
                [
                    f"admin localhost:{admin_port}",
                    "frankenphp",
                    "",
                    *self._global_log_block(posixpath.join(self._log_dir, f"php-{version}.log")),
                ],
                1,
            ),
            "}",
            "",
        ]

        if not version_sites:
            lines.extend(
                [
                    comment(f"No sites configured for runtime {version}"),
                    f":{port} {{",
                    '\trespond "No sites configured" 503',
                    "}",
                ]
            )
            return "\n".join(lines) + "\n"

        lines.append(f":{port} {{")
        matchers = unique_matchers(site.id for site in version_sites)
        for site, matcher in zip(version_sites, matchers, strict=True):
            hosts = " ".join(quote_token(host) for host in site.hostnames)
            block = [
                "",
                comment(f"Site: {site.name} ({site.domain})"),
                f"@{matcher} host {hosts}",
                f"handle @{matcher} {{",
                *indent(
                    [
                        f"root * {quote_token(site.document_root)}",
                        _ENCODINGS,
                        *self._execution_lines(site),
                    ],
                    1,
                ),
                "}",
            ]
            lines.extend(indent(block, 1))

        lines.extend(
            indent(
                [
                    "",
                    comment("Default fallback"),
                    "handle {",
                    '\trespond "Site not found" 404',
                    "}",
                ],
                1,
            )
        )
        lines.append("}")
        return "\n".join(lines) + "\n"

    def _execution_lines(self, site: Site) -> list[str]:
        env_lines = [
            f"env {quote_token(key)} {quote_token(value)}"
            for key, value in sorted(site.environment.items())
        ]
        if site.worker_mode and site.worker_file:
            worker_path = site.worker_file
            if not posixpath.isabs(worker_path):
                worker_path = posixpath.normpath(posixpath.join(site.document_root, worker_path))
            if not self._path_exists(worker_path):
                self._logger.warning(
                    "proxy_worker_file_missing",
                    site_id=site.id,
                    domain=site.domain,
                    worker_file=worker_path,
                )
                return [
                    comment("WARNING: Worker file not found, falling back to standard execution"),
                    comment(f"Expected: {worker_path}"),
                    "php_server",
                ]
            return [
                "php_server {",
                *indent(
                    [f"worker {quote_token(worker_path)} {site.effective_worker_num}", *env_lines],
                    1,
                ),
                "}",
            ]
        if not env_lines:
            return ["php_server"]
        return ["php_server {", *indent(env_lines, 1), "}"]

    def _global_log_block(self, log_path: str) -> list[str]:
        return [
            "log {",
            *indent(
                [
                    f"output file {quote_token(log_path)} {{",
                    *indent(
                        [
                            f"roll_size {self._log_roll_size_mb}mb",
                            f"roll_keep {self._log_roll_keep}",
                        ],
                        1,
                    ),
                    "}",
                    "format json",
                ],
                1,
            ),
            "}",
        ]


def _ordered_active(sites: Iterable[Site]) -> Sequence[Site]:
    return sorted((site for site in sites if site.is_active), key=lambda site: site.id)


__all__ = [
    "DEFAULT_ADMIN_ADDRESS",
    "FRONT_DOOR_FILE_NAME",
    "INSTANCE_FILE_PREFIX",
    "ProxyConfigGenerator",
    "RenderBundle",
    "RenderedDocument",
    "WriteResult",
]
