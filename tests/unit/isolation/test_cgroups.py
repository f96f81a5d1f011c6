"""Unit tests for the cgroup v2 filesystem adapter and control-file parsers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from siteplane.isolation.cgroups import (
    CgroupV2Filesystem,
    parse_flat_keyed,
    parse_int,
    parse_pid_list,
)

if TYPE_CHECKING:
    from pathlib import Path


def _fake_root(tmp_path: Path) -> CgroupV2Filesystem:
    root = tmp_path / "cgroup"
    root.mkdir()
    (root / "cgroup.controllers").write_text("cpu memory pids io\n", encoding="utf-8")
    (root / "cgroup.procs").write_text("1\n", encoding="utf-8")
    return CgroupV2Filesystem(root)


def test_availability_follows_controllers_file(tmp_path: Path) -> None:
    assert not CgroupV2Filesystem(tmp_path).is_available()
    assert _fake_root(tmp_path).is_available()


def test_group_lifecycle_and_control_files(tmp_path: Path) -> None:
    cgroups = _fake_root(tmp_path)

    cgroups.create_group("siteplane-alice")
    cgroups.create_group("siteplane-alice")
    cgroups.write("siteplane-alice", "memory.max", "268435456")
    cgroups.enable_controllers(("cpu", "memory", "pids"))

    assert cgroups.group_exists("siteplane-alice")
    assert cgroups.read("siteplane-alice", "memory.max") == "268435456"
    assert cgroups.read(None, "cgroup.subtree_control") == "+cpu +memory +pids"
    assert cgroups.list_procs(None) == [1]

    (cgroups.root / "siteplane-alice" / "memory.max").unlink()
    cgroups.remove_group("siteplane-alice")
    assert not cgroups.group_exists("siteplane-alice")


@pytest.mark.parametrize("group", ["", "a/b", ".", ".."])
def test_group_names_cannot_escape_the_root(tmp_path: Path, group: str) -> None:
    with pytest.raises(ValueError, match="invalid cgroup name"):
        _fake_root(tmp_path).group_exists(group)


def test_parsers() -> None:
    assert parse_pid_list("12\n34\n\n") == [12, 34]
    assert parse_int("4096\n") == 4096
    assert parse_int("max\n") is None
    assert parse_int("") is None
    assert parse_flat_keyed("usage_usec 1500\nuser_usec 1000\nbogus\nnr_periods x\n") == {
        "usage_usec": 1500,
        "user_usec": 1000,
    }
