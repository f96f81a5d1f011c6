"""Content digests used to skip rewriting unchanged proxy documents."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_file(path: str | os.PathLike[str]) -> str:
    """Digest of the file's bytes; equals ``sha256_text`` of the text it was written from."""

    with Path(path).open("rb") as handle:
        return hashlib.file_digest(handle, "sha256").hexdigest()


__all__ = ["sha256_file", "sha256_text"]
