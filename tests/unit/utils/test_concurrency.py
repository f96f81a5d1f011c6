"""Tests for the registry readers-writer lock."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import pytest

from siteplane.utils.concurrency import ReadWriteLock

if TYPE_CHECKING:
    from collections.abc import Callable


def _wait_until(predicate: Callable[[], bool], *, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_readers_share_the_lock() -> None:
    lock = ReadWriteLock()
    inside = threading.Barrier(4, timeout=5)

    def _reader() -> None:
        with lock.read():
            inside.wait()

    threads = [threading.Thread(target=_reader) for _ in range(3)]
    for thread in threads:
        thread.start()
    inside.wait()
    assert lock.readers == 3
    for thread in threads:
        thread.join()
    assert lock.snapshot() == {"readers": 0, "writer_active": False, "writers_waiting": 0}


def test_writer_excludes_readers_and_other_writers() -> None:
    lock = ReadWriteLock()
    acquired: list[str] = []

    lock.acquire_write()
    reader = threading.Thread(target=lambda: (lock.acquire_read(), acquired.append("reader")))
    writer = threading.Thread(target=lambda: (lock.acquire_write(), acquired.append("writer")))
    reader.start()
    writer.start()

    time.sleep(0.05)
    assert acquired == []
    assert lock.writer_active

    lock.release_write()
    assert _wait_until(lambda: len(acquired) >= 1)
    if acquired[0] == "writer":
        lock.release_write()
    else:
        lock.release_read()
    assert _wait_until(lambda: len(acquired) == 2)
    reader.join(timeout=5)
    writer.join(timeout=5)
    assert sorted(acquired) == ["reader", "writer"]


def test_waiting_writer_blocks_new_readers() -> None:
    lock = ReadWriteLock()
    order: list[str] = []
    lock.acquire_read()

    def _writer() -> None:
        with lock.write():
            order.append("writer")

    def _late_reader() -> None:
        with lock.read():
            order.append("reader")

    writer = threading.Thread(target=_writer)
    writer.start()
    assert _wait_until(lambda: lock.snapshot()["writers_waiting"] == 1)

    late = threading.Thread(target=_late_reader)
    late.start()
    time.sleep(0.05)
    assert order == []

    lock.release_read()
    writer.join(timeout=5)
    late.join(timeout=5)
    assert order == ["writer", "reader"]


def test_unmatched_release_raises() -> None:
    lock = ReadWriteLock()
    with pytest.raises(RuntimeError, match="release_read"):
        lock.release_read()
    with pytest.raises(RuntimeError, match="release_write"):
        lock.release_write()


def test_context_managers_release_on_error() -> None:
    lock = ReadWriteLock()
    with pytest.raises(ValueError), lock.write():
        raise ValueError("boom")
    with pytest.raises(ValueError), lock.read():
        raise ValueError("boom")
    assert lock.snapshot() == {"readers": 0, "writer_active": False, "writers_waiting": 0}


def test_concurrent_increments_under_write_lock_are_not_lost() -> None:
    lock = ReadWriteLock()
    counter = {"value": 0}

    def _bump() -> None:
        for _ in range(500):
            with lock.write():
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=_bump) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter["value"] == 3000
