"""Disk quota commands and the cached directory-scan fallback."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Final

import psutil

from siteplane.domain.models import DiskUsageSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from siteplane.host.ops import HostOperations

KIB_PER_MIB: Final[int] = 1024
BYTES_PER_MIB: Final[int] = 1024 * 1024
_BLOCK_SIZE: Final[int] = 512


class QuotaTool:
    """Thin wrapper over ``setquota`` / ``quota`` run through the host interface."""

    def __init__(self, host: HostOperations) -> None:
        self._host = host

    def can_set(self) -> bool:
        return self._host.which("setquota") is not None

    def can_report(self) -> bool:
        return self._host.which("quota") is not None

    def set_user_quota(
        self,
        username: str,
        *,
        limit_mb: int,
        soft_inodes: int,
        hard_inodes: int,
        filesystem: str,
    ) -> tuple[str, ...]:
        """Set block and inode limits for ``username``; return the command that ran."""

        limit_kb = limit_mb * KIB_PER_MIB
        command = (
            "setquota",
            "-u",
            username,
            str(limit_kb),
            str(limit_kb),
            str(soft_inodes),
            str(hard_inodes),
            filesystem,
        )
        self._host.run(command).check()
        return command

    def used_mb(self, username: str) -> int | None:
        """Blocks in use according to ``quota -u``, or ``None`` when unknown."""

        if not self.can_report():
            return None
        result = self._host.run(("quota", "-u", username))
        if not result.ok:
            return None
        return parse_quota_used_mb(result.stdout)


def parse_quota_used_mb(output: str) -> int | None:
    for line in output.splitlines():
        if "/" not in line:
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        used = fields[1].rstrip("*")
        if used.isdigit():
            return int(used) // KIB_PER_MIB
    return None


def find_filesystem(path: str | os.PathLike[str]) -> str | None:
    """Device backing ``path``, chosen by the longest matching mount point."""

    target = os.path.realpath(path)
    best_device: str | None = None
    best_length = -1
    for partition in psutil.disk_partitions(all=True):
        mountpoint = partition.mountpoint
        if not mountpoint:
            continue
        prefix = mountpoint.rstrip("/") + "/"
        if target != mountpoint and not target.startswith(prefix):
            continue
        if len(mountpoint) > best_length:
            best_device = partition.device
            best_length = len(mountpoint)
    return best_device


def scan_directory_bytes(root: str | os.PathLike[str]) -> int:
    """Allocated bytes below ``root`` without following symlinks."""

    total = 0
    seen: set[tuple[int, int]] = set()
    for dirpath, dirnames, filenames in os.walk(root, onerror=None, followlinks=False):
        for name in (*dirnames, *filenames):
            try:
                stat = os.lstat(os.path.join(dirpath, name))
            except OSError:
                continue
            key = (stat.st_dev, stat.st_ino)
            if key in seen:
                continue
            seen.add(key)
            total += getattr(stat, "st_blocks", 0) * _BLOCK_SIZE
    return total


class DiskScanCache:
    """Per-owner memo of directory scans, valid for ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        scanner: Callable[[Path], int] = scan_directory_bytes,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._scanner = scanner
        self._entries: dict[str, tuple[float, int]] = {}

    def used_mb(self, owner_id: str, root: Path) -> tuple[int, DiskUsageSource]:
        now = self._clock()
        cached = self._entries.get(owner_id)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1], DiskUsageSource.CACHED
        if not root.is_dir():
            self._entries.pop(owner_id, None)
            return 0, DiskUsageSource.NONE
        value = self._scanner(root) // BYTES_PER_MIB
        self._entries[owner_id] = (now, value)
        return value, DiskUsageSource.SCAN

    def invalidate(self, owner_id: str) -> None:
        self._entries.pop(owner_id, None)


__all__ = [
    "DiskScanCache",
    "QuotaTool",
    "find_filesystem",
    "parse_quota_used_mb",
    "scan_directory_bytes",
]
