"""Unit tests for registry snapshot persistence."""

from __future__ import annotations

import json
import stat
from typing import TYPE_CHECKING

import pytest

from siteplane.domain.errors import RegistryStoreError
from siteplane.domain.models import Site, UserLimits
from siteplane.registry.store import SITES_FILE_NAME, USER_LIMITS_FILE_NAME, RegistryStore

if TYPE_CHECKING:
    from pathlib import Path


def test_missing_and_empty_snapshots_load_as_empty(tmp_path: Path) -> None:
    store = RegistryStore(tmp_path / "state")
    assert store.load_sites() == []
    assert store.load_user_limits() == []

    store.data_dir.mkdir()
    store.sites_path.write_text("  \n", encoding="utf-8")
    assert store.load_sites() == []


def test_snapshots_are_ordered_private_and_byte_stable(tmp_path: Path) -> None:
    store = RegistryStore(tmp_path / "state")
    sites = [
        Site(id="site-b", domain="b.test", runtime_version="8.3", root_path="/srv/b.test"),
        Site(id="site-a", domain="a.test", runtime_version="8.4", root_path="/srv/a.test"),
    ]

    store.save_sites(sites)
    first = store.sites_path.read_bytes()
    store.save_sites(reversed(sites))

    assert store.sites_path.read_bytes() == first
    assert store.sites_path.name == SITES_FILE_NAME
    assert first.endswith(b"\n")
    assert stat.S_IMODE(store.sites_path.stat().st_mode) == 0o600
    records = json.loads(first)
    assert [item["id"] for item in records] == ["site-a", "site-b"]
    assert [site.id for site in store.load_sites()] == ["site-a", "site-b"]


def test_user_limits_roundtrip(tmp_path: Path) -> None:
    store = RegistryStore(tmp_path / "state")
    limits = [
        UserLimits(owner_id="bob", max_sites=1),
        UserLimits(owner_id="alice", max_sites=3, max_ram_mb=512),
    ]

    store.save_user_limits(limits)

    assert store.user_limits_path.name == USER_LIMITS_FILE_NAME
    assert [item.owner_id for item in store.load_user_limits()] == ["alice", "bob"]
    assert store.load_user_limits()[0] == limits[1]


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ("{not json", "malformed JSON"),
        ('{"id": "site-1"}', "expected a JSON array"),
        ('[{"domain": "a.test"}]', "invalid site record at index 0"),
    ],
)
def test_malformed_site_snapshot_raises(tmp_path: Path, payload: str, message: str) -> None:
    store = RegistryStore(tmp_path)
    store.sites_path.write_text(payload, encoding="utf-8")

    with pytest.raises(RegistryStoreError, match=message):
        store.load_sites()


def test_malformed_limits_record_raises(tmp_path: Path) -> None:
    store = RegistryStore(tmp_path)
    store.user_limits_path.write_text('[{"owner_id": "alice", "max_sites": -2}]', encoding="utf-8")

    with pytest.raises(RegistryStoreError, match="invalid limits record at index 0"):
        store.load_user_limits()


def test_write_failure_is_reported_as_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    store = RegistryStore(blocker)

    with pytest.raises(RegistryStoreError, match="failed to write"):
        store.save_sites([])
