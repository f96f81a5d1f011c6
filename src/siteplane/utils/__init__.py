"""Locking, atomic file replacement, and content digests shared by the registry and generator."""

from siteplane.utils.concurrency import ReadWriteLock
from siteplane.utils.fs import atomic_write, read_text_if_exists
from siteplane.utils.hashing import sha256_file, sha256_text

__all__ = [
    "ReadWriteLock",
    "atomic_write",
    "read_text_if_exists",
    "sha256_file",
    "sha256_text",
]
