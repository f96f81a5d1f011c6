"""
siteplane — control plane integration contracts

File: tests/integration/test_control_plane.py
Last updated: 2026-10-19

Purpose
- Drive the wired control plane end to end against a temporary tree, a fake host and an
  in-memory cgroup hierarchy.
- Verify that registry mutations land in routing documents and that limit changes persist
  before they are applied.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from siteplane.config import load_config
from siteplane.control import ControlPlane, build_control_plane
from siteplane.domain.errors import ConflictError, PartialFailureError, QuotaExceededError
from siteplane.domain.models import Site, SitePatch, UserLimits
from siteplane.isolation.cgroups import CGROUP_PROCS

if TYPE_CHECKING:
    from conftest import FakeCgroups, FakeHost


def _config(tmp_path: Path) -> dict[str, Any]:
    config_path = tmp_path / "siteplane.toml"
    config_path.write_text(
        """
[paths]
data_dir = "state"
sites_dir = "www"
log_dir = "logs"
proxy_config_dir = "proxy"

[observability]
log_dir = "logs/control"
""".strip(),
        encoding="utf-8",
    )
    return load_config(config_path, environ={})


def _control(tmp_path: Path, host: FakeHost, cgroups: FakeCgroups) -> ControlPlane:
    config = _config(tmp_path)
    for key in ("data_dir", "sites_dir", "log_dir", "proxy_config_dir"):
        Path(config["paths"][key]).mkdir(parents=True, exist_ok=True)
    return build_control_plane(config, host=host, cgroups=cgroups, platform="linux")


def _front_door(control: ControlPlane) -> str:
    return control.generator.front_door_path().read_text(encoding="utf-8")


def _instance(control: ControlPlane, version: str) -> str:
    return control.generator.instance_path(version).read_text(encoding="utf-8")


def test_initialize_writes_snapshots_and_routing_documents(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    control = _control(tmp_path, fake_host, fake_cgroups)

    results = control.initialize()

    written = {item.path for item in results}
    assert control.generator.front_door_path() in written
    assert control.generator.instance_path("8.3") in written
    assert control.generator.instance_path("8.4") in written
    assert json.loads((tmp_path / "state" / "sites.json").read_text(encoding="utf-8")) == []
    assert json.loads((tmp_path / "state" / "user_limits.json").read_text(encoding="utf-8")) == []

    again = control.sync_routing()
    assert not any(item.changed for item in again)


def test_site_lifecycle_is_reflected_in_routing(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    control = _control(tmp_path, fake_host, fake_cgroups)
    control.initialize()

    site = control.create_site(
        Site(domain="shop.test", runtime_version="8.3", aliases=("www.shop.test",))
    )
    document_root = (tmp_path.resolve() / "www" / "shop.test" / "public").as_posix()

    assert (tmp_path / "www" / "shop.test" / "public" / "index.php").is_file()
    assert "shop.test" in _front_door(control)
    assert "www.shop.test" in _front_door(control)
    assert "reverse_proxy localhost:9001" in _front_door(control)
    assert document_root in _instance(control, "8.3")
    assert document_root not in _instance(control, "8.4")

    control.update_site(site.id, SitePatch(runtime_version="8.4"))
    assert document_root in _instance(control, "8.4")
    assert document_root not in _instance(control, "8.3")

    control.suspend_site(site.id)
    assert "shop.test" not in _front_door(control)
    assert document_root not in _instance(control, "8.4")

    control.unsuspend_site(site.id)
    assert "shop.test" in _front_door(control)

    removed = control.delete_site(site.id)
    assert removed.id == site.id
    assert "shop.test" not in _front_door(control)
    assert (tmp_path / "www" / "shop.test").is_dir()


def test_state_survives_a_fresh_control_plane(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    control = _control(tmp_path, fake_host, fake_cgroups)
    created = control.create_site(Site(domain="blog.test", runtime_version="8.3"))

    reopened = _control(tmp_path, fake_host, fake_cgroups)

    assert reopened.registry.get(created.id) == created
    assert reopened.registry.get_by_domain("BLOG.test").id == created.id
    with pytest.raises(ConflictError):
        reopened.create_site(Site(domain="blog.test", runtime_version="8.4"))


def test_set_limits_persists_applies_and_enforces_site_quota(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    fake_host.add_user("alice")
    fake_host.tools.add("setfacl")
    control = _control(tmp_path, fake_host, fake_cgroups)
    control.create_site(Site(domain="alice.test", runtime_version="8.3", owner_id="alice"))

    report = control.set_limits(
        UserLimits(owner_id="alice", max_sites=1, max_ram_mb=256, max_cpu_percent=50)
    )

    assert report.ok
    assert set(report.applied) == {"cpu", "memory", "acl"}
    assert fake_cgroups.groups["siteplane-alice"]["memory.max"] == str(256 * 1024 * 1024)
    assert fake_cgroups.groups["siteplane-alice"]["cpu.max"] == "50000 100000"
    assert fake_host.acls[-1] == (tmp_path.resolve() / "www" / "alice", "alice")
    assert control.registry.get_user_limit("alice").max_sites == 1

    with pytest.raises(QuotaExceededError):
        control.create_site(Site(domain="second.test", runtime_version="8.3", owner_id="alice"))


def test_enforcement_failure_is_reported_but_limits_are_kept(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    fake_host.add_user("bob", uid=1002)
    fake_cgroups.failing_files.add("pids.max")
    control = _control(tmp_path, fake_host, fake_cgroups)

    report = control.set_limits(UserLimits(owner_id="bob", max_processes=64, max_ram_mb=128))

    assert not report.ok
    assert [name for name, _ in report.failed] == ["pids"]
    assert "memory" in report.applied
    assert control.registry.get_user_limit("bob").max_processes == 64

    with pytest.raises(PartialFailureError) as exc_info:
        control.apply_limits("bob")
    assert exc_info.value.report.owner_id == "bob"

    reports = control.apply_all_limits()
    assert [item.owner_id for item in reports] == ["bob"]
    assert not reports[0].ok


def test_remove_owner_tears_down_group_and_forgets_limits(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    fake_host.add_user("carol", uid=1003)
    control = _control(tmp_path, fake_host, fake_cgroups)
    control.set_limits(UserLimits(owner_id="carol", max_ram_mb=64))
    assert "siteplane-carol" in fake_cgroups.groups

    removal = control.remove_owner("carol")

    assert removal.ok
    assert removal.limits_deleted is True
    assert "siteplane-carol" not in fake_cgroups.groups
    assert control.registry.list_user_limits() == []
    assert control.remove_owner("carol").limits_deleted is False


def test_remove_owner_forgets_limits_when_group_teardown_fails(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    fake_host.add_user("alice", uid=1001)
    control = _control(tmp_path, fake_host, fake_cgroups)
    control.set_limits(UserLimits(owner_id="alice", max_ram_mb=64))
    fake_cgroups.write("siteplane-alice", CGROUP_PROCS, "4242")
    fake_cgroups.stuck.add(4242)

    removal = control.remove_owner("alice")

    assert not removal.ok
    assert removal.limits_deleted is True
    assert "still has 1 member" in (removal.teardown_error or "")
    assert control.registry.list_user_limits() == []
    assert "siteplane-alice" in fake_cgroups.groups

    reloaded = _control(tmp_path, fake_host, fake_cgroups)
    assert reloaded.registry.list_user_limits() == []


def test_stats_summarize_sites_runtimes_and_limits(
    tmp_path: Path, fake_host: FakeHost, fake_cgroups: FakeCgroups
) -> None:
    control = _control(tmp_path, fake_host, fake_cgroups)
    first = control.create_site(Site(domain="one.test", runtime_version="8.3"))
    control.create_site(Site(domain="two.test", runtime_version="8.4"))
    control.suspend_site(first.id)
    control.set_limits(UserLimits(owner_id="dave", max_sites=2))

    stats = control.stats()

    assert stats["sites"] == {"total": 2, "active": 1, "suspended": 1}
    assert stats["by_runtime_version"] == {"8.4": 1}
    assert stats["user_limits"] == 1
    assert [item["version"] for item in stats["runtimes"]] == ["8.3", "8.4"]
