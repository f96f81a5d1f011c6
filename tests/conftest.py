"""Shared fakes and fixtures: an in-memory host backend and cgroup tree."""

from __future__ import annotations

import errno
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from siteplane.domain.models import RuntimeInstance, StaticRuntimeTable
from siteplane.host.ops import CommandResult, HostCommandError, OwnerIdentity
from siteplane.isolation.cgroups import CGROUP_PROCS, parse_pid_list
from siteplane.registry.provisioning import SiteProvisioner
from siteplane.registry.site_registry import SiteRegistry
from siteplane.registry.store import RegistryStore

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


@dataclass
class FakeHost:
    """Records every host call instead of touching ownership, ACLs, or processes."""

    identities: dict[str, OwnerIdentity] = field(default_factory=dict)
    tools: set[str] = field(default_factory=set)
    results: dict[str, CommandResult] = field(default_factory=dict)
    acl_error: str | None = None
    failing_chmods: set[Path] = field(default_factory=set)
    commands: list[tuple[str, ...]] = field(default_factory=list)
    chmods: list[tuple[Path, int]] = field(default_factory=list)
    chowns: list[tuple[Path, int, int]] = field(default_factory=list)
    recursive_chowns: list[tuple[Path, int, int]] = field(default_factory=list)
    acls: list[tuple[Path, str]] = field(default_factory=list)

    def add_user(self, owner_id: str, uid: int = 1001) -> OwnerIdentity:
        identity = OwnerIdentity(username=owner_id, uid=uid, gid=uid, home=f"/home/{owner_id}")
        self.identities[owner_id] = identity
        return identity

    def run(
        self, command: Sequence[str], *, timeout_seconds: float | None = None
    ) -> CommandResult:
        argv = tuple(str(part) for part in command)
        self.commands.append(argv)
        canned = self.results.get(argv[0])
        if canned is not None:
            return CommandResult(argv, canned.returncode, canned.stdout, canned.stderr)
        return CommandResult(argv, 0, "", "")

    def which(self, name: str) -> str | None:
        return f"/usr/sbin/{name}" if name in self.tools else None

    def resolve_owner(self, owner_id: str) -> OwnerIdentity | None:
        return self.identities.get(owner_id)

    def chown(self, path: str | Path, uid: int, gid: int) -> None:
        self.chowns.append((Path(path), uid, gid))

    def chown_recursive(self, path: str | Path, uid: int, gid: int) -> None:
        self.recursive_chowns.append((Path(path), uid, gid))

    def chmod(self, path: str | Path, mode: int) -> None:
        if Path(path) in self.failing_chmods:
            raise PermissionError(errno.EPERM, "Operation not permitted", str(path))
        self.chmods.append((Path(path), mode))

    def set_private_acl(self, path: str | Path, username: str) -> None:
        if self.acl_error is not None:
            raise HostCommandError(self.acl_error)
        self.acls.append((Path(path), username))


class FakeCgroups:
    """In-memory cgroup v2 tree. Pids in ``stuck`` refuse to leave their group."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.groups: dict[str, dict[str, str]] = {}
        self.root_files: dict[str, str] = {CGROUP_PROCS: ""}
        self.enabled: list[tuple[str, ...]] = []
        self.failing_files: set[str] = set()
        self.stuck: set[int] = set()

    def is_available(self) -> bool:
        return self.available

    def group_exists(self, group: str) -> bool:
        return group in self.groups

    def create_group(self, group: str) -> None:
        self.groups.setdefault(group, {CGROUP_PROCS: ""})

    def remove_group(self, group: str) -> None:
        if parse_pid_list(self.groups[group][CGROUP_PROCS]):
            raise OSError(errno.EBUSY, "Device or resource busy")
        del self.groups[group]

    def enable_controllers(self, controllers: Sequence[str]) -> None:
        self.enabled.append(tuple(controllers))

    def read(self, group: str | None, filename: str) -> str:
        files = self.root_files if group is None else self.groups.get(group)
        if files is None or filename not in files:
            raise FileNotFoundError(errno.ENOENT, "No such file", filename)
        return files[filename]

    def write(self, group: str | None, filename: str, value: str) -> None:
        if filename in self.failing_files:
            raise PermissionError(errno.EACCES, "Permission denied", filename)
        files = self.root_files if group is None else self.groups.get(group)
        if files is None:
            raise FileNotFoundError(errno.ENOENT, "No such file", group)
        if filename != CGROUP_PROCS:
            files[filename] = value
            return
        pid = int(value)
        if group is None and pid in self.stuck:
            raise PermissionError(errno.EPERM, "Operation not permitted", filename)
        for members in (self.root_files, *self.groups.values()):
            pids = [item for item in parse_pid_list(members[CGROUP_PROCS]) if item != pid]
            members[CGROUP_PROCS] = "\n".join(str(item) for item in pids)
        pids = [*parse_pid_list(files[CGROUP_PROCS]), pid]
        files[CGROUP_PROCS] = "\n".join(str(item) for item in pids)

    def list_procs(self, group: str | None) -> list[int]:
        return parse_pid_list(self.read(group, CGROUP_PROCS))


def sequential_ids(prefix: str = "site-") -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter):04d}"


def build_runtimes(*, include_disabled: bool = False) -> StaticRuntimeTable:
    instances = [
        RuntimeInstance(version="8.3", port=9001, admin_port=2020),
        RuntimeInstance(version="8.4", port=9002, admin_port=2021),
    ]
    if include_disabled:
        instances.append(RuntimeInstance(version="7.4", port=9003, admin_port=2022, enabled=False))
    return StaticRuntimeTable(instances)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def fake_cgroups() -> FakeCgroups:
    return FakeCgroups()


@pytest.fixture
def runtimes() -> StaticRuntimeTable:
    return build_runtimes(include_disabled=True)


@pytest.fixture
def provisioner(tmp_path: Path, fake_host: FakeHost) -> SiteProvisioner:
    return SiteProvisioner(tmp_path / "sites", tmp_path / "logs", fake_host)


@pytest.fixture
def store(tmp_path: Path) -> RegistryStore:
    return RegistryStore(tmp_path / "state")


@pytest.fixture
def registry(
    store: RegistryStore, runtimes: StaticRuntimeTable, provisioner: SiteProvisioner
) -> SiteRegistry:
    registry = SiteRegistry(
        store,
        runtimes,
        provisioner=provisioner,
        clock=lambda: FIXED_NOW,
        id_factory=sequential_ids(),
    )
    registry.load()
    return registry
