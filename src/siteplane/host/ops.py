"""
siteplane — host capability interface

File: src/siteplane/host/ops.py
Last updated: 2026-10-15

Purpose
- Narrow seam for every OS-facing action: spawning tools, ownership, modes, ACLs,
  and tenant identity lookup.

Functional requirements
- ``SystemHostOperations`` performs the real calls; tests substitute fakes.
- Subprocesses run without a shell, capture output, and honor an optional timeout.
- Tenant identity resolves from a numeric uid or a username via the password database.

Non-functional requirements
- No business rules here; callers decide what to do with failures.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol

import structlog

from siteplane.domain.errors import SiteplaneError

try:
    import pwd
except ImportError:  # pragma: no cover - non-POSIX hosts have no password database.
    pwd = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from collections.abc import Sequence

PathLike = str | os.PathLike[str]

TIMEOUT_RETURN_CODE: Final[int] = 124
_ACL_ENTRIES: Final[tuple[str, ...]] = ("u:root:rwx", "g::---", "o::---")


class HostCommandError(SiteplaneError):
    """Raised when a host command cannot be launched, times out, or exits non-zero."""

    def __init__(self, message: str, *, result: CommandResult | None = None) -> None:
        self.result = result
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess execution result."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or "no output"
        return f"{' '.join(self.command)} exited {self.returncode}: {detail}"

    def check(self) -> CommandResult:
        if not self.ok:
            raise HostCommandError(self.describe(), result=self)
        return self


@dataclass(frozen=True, slots=True)
class OwnerIdentity:
    """Numeric OS identity a tenant reference resolves to."""

    username: str
    uid: int
    gid: int
    home: str = ""


class HostOperations(Protocol):
    """Injectable OS capability interface used by provisioning and isolation."""

    def run(
        self, command: Sequence[str], *, timeout_seconds: float | None = None
    ) -> CommandResult: ...

    def which(self, name: str) -> str | None: ...

    def resolve_owner(self, owner_id: str) -> OwnerIdentity | None: ...

    def chown(self, path: PathLike, uid: int, gid: int) -> None: ...

    def chown_recursive(self, path: PathLike, uid: int, gid: int) -> None: ...

    def chmod(self, path: PathLike, mode: int) -> None: ...

    def set_private_acl(self, path: PathLike, username: str) -> None: ...


class SystemHostOperations:
    """Default host backend using ``subprocess``, ``os``, and ``pwd``."""

    def __init__(
        self,
        *,
        command_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if command_timeout_seconds is not None and command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be > 0")
        self._timeout = command_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run(
        self, command: Sequence[str], *, timeout_seconds: float | None = None
    ) -> CommandResult:
        argv = [str(part) for part in command]
        if not argv:
            raise ValueError("command must not be empty")
        timeout = timeout_seconds if timeout_seconds is not None else self._timeout
        try:
            completed = subprocess.run(
                argv,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise HostCommandError(
                f"command timed out after {timeout} seconds: {' '.join(argv)}",
                result=CommandResult(tuple(argv), TIMEOUT_RETURN_CODE, "", "timed out"),
            ) from exc
        except OSError as exc:
            raise HostCommandError(f"failed to launch {argv[0]!r}: {exc}") from exc

        result = CommandResult(
            command=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if not result.ok:
            self._logger.debug("host_command_failed", command=argv, returncode=result.returncode)
        return result

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def resolve_owner(self, owner_id: str) -> OwnerIdentity | None:
        if pwd is None or not owner_id:
            return None
        try:
            entry = pwd.getpwuid(int(owner_id)) if owner_id.isdigit() else pwd.getpwnam(owner_id)
        except (KeyError, OverflowError):
            return None
        return OwnerIdentity(
            username=entry.pw_name,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
            home=entry.pw_dir,
        )

    def chown(self, path: PathLike, uid: int, gid: int) -> None:
        os.chown(path, uid, gid)

    def chown_recursive(self, path: PathLike, uid: int, gid: int) -> None:
        root = Path(path)
        os.chown(root, uid, gid)
        for dirpath, dirnames, filenames in os.walk(root):
            for name in (*dirnames, *filenames):
                os.chown(os.path.join(dirpath, name), uid, gid, follow_symlinks=False)

    def chmod(self, path: PathLike, mode: int) -> None:
        os.chmod(path, mode)

    def set_private_acl(self, path: PathLike, username: str) -> None:
        """Restrict ``path`` to ``username`` and root, including inherited defaults."""

        target = str(path)
        entries = (f"u:{username}:rwx", *_ACL_ENTRIES)
        commands: list[list[str]] = [["setfacl", "-b", target]]
        commands.extend(["setfacl", "-m", entry, target] for entry in entries)
        commands.extend(["setfacl", "-d", "-m", entry, target] for entry in entries)
        for command in commands:
            self.run(command).check()


__all__ = [
    "CommandResult",
    "HostCommandError",
    "HostOperations",
    "OwnerIdentity",
    "SystemHostOperations",
]
