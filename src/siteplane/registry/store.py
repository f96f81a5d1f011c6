"""
siteplane — registry snapshot store

File: src/siteplane/registry/store.py
Last updated: 2026-10-15

Purpose
- Durable JSON snapshots of sites and per-tenant limits.

Functional requirements
- ``sites.json`` is an array of site records ordered by ``id``.
- ``user_limits.json`` is an array of limit records ordered by ``owner_id``.
- A missing snapshot loads as an empty collection; a malformed one raises
  ``RegistryStoreError``.
- Every save rewrites the whole document through a temp-file-and-rename step.

Non-functional requirements
- Output is byte-stable for identical input (two-space indent, trailing newline).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from siteplane.domain.errors import RegistryStoreError, ValidationError
from siteplane.domain.models import Site, UserLimits
from siteplane.utils.fs import atomic_write, read_text_if_exists

if TYPE_CHECKING:
    import os
    from collections.abc import Iterable

SITES_FILE_NAME: Final[str] = "sites.json"
USER_LIMITS_FILE_NAME: Final[str] = "user_limits.json"
SNAPSHOT_FILE_MODE: Final[int] = 0o600


class RegistryStore:
    """Read and write the two registry snapshot documents under ``data_dir``."""

    def __init__(self, data_dir: str | os.PathLike[str], *, logger: Any | None = None) -> None:
        self._data_dir = Path(data_dir)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def sites_path(self) -> Path:
        return self._data_dir / SITES_FILE_NAME

    @property
    def user_limits_path(self) -> Path:
        return self._data_dir / USER_LIMITS_FILE_NAME

    def load_sites(self) -> list[Site]:
        records = self._read_array(self.sites_path)
        sites: list[Site] = []
        for index, record in enumerate(records):
            try:
                sites.append(Site.from_dict(record))
            except ValidationError as exc:
                raise RegistryStoreError(
                    f"{self.sites_path}: invalid site record at index {index}: {exc}"
                ) from exc
        return sites

    def save_sites(self, sites: Iterable[Site]) -> None:
        ordered = sorted(sites, key=lambda site: site.id)
        self._write_array(self.sites_path, [site.to_dict() for site in ordered])

    def load_user_limits(self) -> list[UserLimits]:
        records = self._read_array(self.user_limits_path)
        limits: list[UserLimits] = []
        for index, record in enumerate(records):
            try:
                limits.append(UserLimits.from_dict(record))
            except ValidationError as exc:
                raise RegistryStoreError(
                    f"{self.user_limits_path}: invalid limits record at index {index}: {exc}"
                ) from exc
        return limits

    def save_user_limits(self, limits: Iterable[UserLimits]) -> None:
        ordered = sorted(limits, key=lambda item: item.owner_id)
        self._write_array(self.user_limits_path, [item.to_dict() for item in ordered])

    def _read_array(self, path: Path) -> list[Any]:
        try:
            text = read_text_if_exists(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise RegistryStoreError(f"failed to read {path}: {exc}") from exc
        if text is None:
            self._logger.debug("registry_snapshot_missing", path=str(path))
            return []
        if not text.strip():
            return []
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RegistryStoreError(f"{path}: malformed JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise RegistryStoreError(
                f"{path}: expected a JSON array, got {type(payload).__name__}"
            )
        return payload

    def _write_array(self, path: Path, records: list[dict[str, Any]]) -> None:
        text = json.dumps(records, indent=2, ensure_ascii=False) + "\n"
        try:
            atomic_write(path, text, mode=SNAPSHOT_FILE_MODE)
        except OSError as exc:
            raise RegistryStoreError(f"failed to write {path}: {exc}") from exc
        self._logger.debug("registry_snapshot_written", path=str(path), records=len(records))


__all__ = [
    "SITES_FILE_NAME",
    "USER_LIMITS_FILE_NAME",
    "RegistryStore",
]
