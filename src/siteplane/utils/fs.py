"""
siteplane — file replacement helpers

File: src/siteplane/utils/fs.py
Last updated: 2026-10-19

Purpose
- Replace registry snapshots and generated proxy documents in one step, so a reader
  (the proxy, a second CLI run) sees either the previous file or the new one.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, text: str, *, mode: int = 0o644) -> None:
    """Write ``text`` beside ``path`` as a hidden temp file, fsync it, then rename over ``path``.

    Missing parent directories are created. The temp file never outlives a failure.
    """

    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_name, mode)
        os.replace(temp_name, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise
    _sync_directory(target.parent)


def read_text_if_exists(path: PathLike) -> str | None:
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def _sync_directory(directory: Path) -> None:
    # Persists the rename; some filesystems refuse fsync on a directory.
    with contextlib.suppress(OSError):
        dir_fd = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


__all__ = ["atomic_write", "read_text_if_exists"]
