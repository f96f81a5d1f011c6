"""cgroup v2 filesystem access behind an injectable interface."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_CGROUP_ROOT: Final[Path] = Path("/sys/fs/cgroup")
DEFAULT_CONTROLLERS: Final[tuple[str, ...]] = ("cpu", "memory", "pids")

CGROUP_PROCS: Final[str] = "cgroup.procs"
SUBTREE_CONTROL: Final[str] = "cgroup.subtree_control"
CONTROLLERS_FILE: Final[str] = "cgroup.controllers"


class CgroupFilesystem(Protocol):
    """Minimal cgroup v2 operations. ``group=None`` addresses the root group."""

    def is_available(self) -> bool: ...

    def group_exists(self, group: str) -> bool: ...

    def create_group(self, group: str) -> None: ...

    def remove_group(self, group: str) -> None: ...

    def enable_controllers(self, controllers: Sequence[str]) -> None: ...

    def read(self, group: str | None, filename: str) -> str: ...

    def write(self, group: str | None, filename: str, value: str) -> None: ...

    def list_procs(self, group: str | None) -> list[int]: ...


class CgroupV2Filesystem:
    """Unified-hierarchy cgroup filesystem mounted at ``root``."""

    def __init__(self, root: str | os.PathLike[str] = DEFAULT_CGROUP_ROOT) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def is_available(self) -> bool:
        return (self._root / CONTROLLERS_FILE).is_file()

    def group_exists(self, group: str) -> bool:
        return self._group_dir(group).is_dir()

    def create_group(self, group: str) -> None:
        self._group_dir(group).mkdir(exist_ok=True)

    def remove_group(self, group: str) -> None:
        # Control files vanish with the directory; rmdir is the only valid removal.
        self._group_dir(group).rmdir()

    def enable_controllers(self, controllers: Sequence[str]) -> None:
        value = " ".join(f"+{name}" for name in controllers)
        self.write(None, SUBTREE_CONTROL, value)

    def read(self, group: str | None, filename: str) -> str:
        return self._path(group, filename).read_text(encoding="utf-8")

    def write(self, group: str | None, filename: str, value: str) -> None:
        with open(self._path(group, filename), "w", encoding="utf-8") as handle:
            handle.write(value)

    def list_procs(self, group: str | None) -> list[int]:
        return parse_pid_list(self.read(group, CGROUP_PROCS))

    def _group_dir(self, group: str) -> Path:
        if not group or "/" in group or group in {".", ".."}:
            raise ValueError(f"invalid cgroup name {group!r}")
        return self._root / group

    def _path(self, group: str | None, filename: str) -> Path:
        base = self._root if group is None else self._group_dir(group)
        return base / filename


def parse_pid_list(text: str) -> list[int]:
    return [int(token) for token in text.split() if token.isdigit()]


def parse_int(text: str) -> int | None:
    """Parse a single-value control file; ``max`` and garbage yield ``None``."""

    value = text.strip()
    if not value.isdigit():
        return None
    return int(value)


def parse_flat_keyed(text: str) -> dict[str, int]:
    """Parse ``key value`` lines such as ``cpu.stat``."""

    parsed: dict[str, int] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1].isdigit():
            parsed[parts[0]] = int(parts[1])
    return parsed


__all__ = [
    "CGROUP_PROCS",
    "DEFAULT_CGROUP_ROOT",
    "DEFAULT_CONTROLLERS",
    "SUBTREE_CONTROL",
    "CgroupFilesystem",
    "CgroupV2Filesystem",
    "parse_flat_keyed",
    "parse_int",
    "parse_pid_list",
]
