"""Token helpers for emitting Caddyfile text safely."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

from siteplane.domain.errors import GenerationError

if TYPE_CHECKING:
    from collections.abc import Iterable

INDENT: Final[str] = "\t"

_MATCHER_UNSAFE_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_]")
_BARE_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"^[^\s\"'`\\{}#][^\s\"'`\\{}]*$")
_WHITESPACE_RUN_RE: Final[re.Pattern[str]] = re.compile(r"\s+")


def sanitize_matcher(value: str) -> str:
    """Map ``value`` onto the named-matcher alphabet ``[A-Za-z0-9_]``."""

    cleaned = _MATCHER_UNSAFE_RE.sub("_", value)
    return cleaned or "_"


def unique_matchers(values: Iterable[str]) -> list[str]:
    """Sanitize each value, suffixing collisions with ``_2``, ``_3``, ... in input order."""

    seen: set[str] = set()
    names: list[str] = []
    for value in values:
        base = sanitize_matcher(value)
        name = base
        counter = 2
        while name in seen:
            name = f"{base}_{counter}"
            counter += 1
        seen.add(name)
        names.append(name)
    return names


def quote_token(value: str) -> str:
    """Return ``value`` as one Caddyfile token, quoting when it is not a bare word.

    Double-quoted tokens only escape ``"``; values carrying a backslash use a
    backtick-quoted token, which has no escapes at all.
    """

    if _BARE_TOKEN_RE.fullmatch(value):
        return value
    if "\n" in value or "\r" in value:
        raise GenerationError(f"token must be a single line: {value!r}")
    if "\\" not in value:
        return '"' + value.replace('"', '\\"') + '"'
    if "`" not in value:
        return f"`{value}`"
    raise GenerationError(f"token cannot be quoted safely: {value!r}")


def comment(text: str) -> str:
    """Render ``text`` as a single ``#`` comment line."""

    flattened = _WHITESPACE_RUN_RE.sub(" ", text).strip()
    return f"# {flattened}" if flattened else "#"


def indent(lines: Iterable[str], depth: int) -> list[str]:
    prefix = INDENT * depth
    return [f"{prefix}{line}" if line else "" for line in lines]


__all__ = [
    "INDENT",
    "comment",
    "indent",
    "quote_token",
    "sanitize_matcher",
    "unique_matchers",
]
