"""Unit tests for the system host backend."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

import pytest

from siteplane.host.ops import (
    TIMEOUT_RETURN_CODE,
    CommandResult,
    HostCommandError,
    SystemHostOperations,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


def test_command_result_check_and_describe() -> None:
    ok = CommandResult(("true",), 0, "", "")
    assert ok.ok
    assert ok.check() is ok

    failed = CommandResult(("setfacl", "-b", "/srv"), 1, "", "  not supported\n")
    assert failed.describe() == "setfacl -b /srv exited 1: not supported"
    with pytest.raises(HostCommandError) as excinfo:
        failed.check()
    assert excinfo.value.result is failed
    assert CommandResult(("x",), 2, "", "").describe() == "x exited 2: no output"


def test_run_captures_output_without_a_shell() -> None:
    host = SystemHostOperations(command_timeout_seconds=30.0)

    result = host.run([sys.executable, "-c", "import sys; print('out'); sys.exit(3)"])

    assert result.returncode == 3
    assert result.stdout.strip() == "out"
    assert not result.ok


def test_run_timeout_and_launch_failures() -> None:
    host = SystemHostOperations()

    with pytest.raises(HostCommandError, match="timed out") as excinfo:
        host.run([sys.executable, "-c", "import time; time.sleep(5)"], timeout_seconds=0.2)
    assert excinfo.value.result is not None
    assert excinfo.value.result.returncode == TIMEOUT_RETURN_CODE

    with pytest.raises(HostCommandError, match="failed to launch"):
        host.run(["/nonexistent/siteplane-tool"])
    with pytest.raises(ValueError, match="must not be empty"):
        host.run([])
    with pytest.raises(ValueError, match="command_timeout_seconds"):
        SystemHostOperations(command_timeout_seconds=0)


def test_set_private_acl_issues_access_and_default_entries(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    host = SystemHostOperations()
    calls: list[tuple[str, ...]] = []

    def _run(command: Sequence[str], *, timeout_seconds: float | None = None) -> CommandResult:
        calls.append(tuple(command))
        return CommandResult(tuple(command), 0, "", "")

    monkeypatch.setattr(host, "run", _run)

    host.set_private_acl(tmp_path, "alice")

    target = str(tmp_path)
    assert calls[0] == ("setfacl", "-b", target)
    entries = ("u:alice:rwx", "u:root:rwx", "g::---", "o::---")
    assert calls[1:5] == [("setfacl", "-m", entry, target) for entry in entries]
    assert calls[5:] == [("setfacl", "-d", "-m", entry, target) for entry in entries]


def test_set_private_acl_stops_on_first_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    host = SystemHostOperations()
    calls: list[tuple[str, ...]] = []

    def _run(command: Sequence[str], *, timeout_seconds: float | None = None) -> CommandResult:
        calls.append(tuple(command))
        return CommandResult(tuple(command), 1, "", "Operation not supported")

    monkeypatch.setattr(host, "run", _run)

    with pytest.raises(HostCommandError, match="Operation not supported"):
        host.set_private_acl(tmp_path, "alice")
    assert len(calls) == 1


@pytest.mark.skipif(not hasattr(os, "getuid"), reason="POSIX identity lookup")
def test_resolve_owner_by_name_and_uid() -> None:
    host = SystemHostOperations()
    uid = os.getuid()

    by_uid = host.resolve_owner(str(uid))
    assert by_uid is not None
    assert by_uid.uid == uid
    assert host.resolve_owner(by_uid.username) == by_uid
    assert host.resolve_owner("siteplane-no-such-user") is None
    assert host.resolve_owner("") is None


def test_chmod_and_chown_recursive_on_owned_tree(tmp_path: Path) -> None:
    host = SystemHostOperations()
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "a" / "b" / "f.txt").write_text("x", encoding="utf-8")

    host.chmod(tmp_path / "a", 0o750)
    host.chown_recursive(tmp_path / "a", os.getuid(), os.getgid())

    assert (tmp_path / "a").stat().st_mode & 0o777 == 0o750
    assert (tmp_path / "a" / "b" / "f.txt").stat().st_uid == os.getuid()
