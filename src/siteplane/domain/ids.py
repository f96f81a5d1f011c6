"""Site and log-session identifiers.

Site and owner ids end up as single path components (``<sites_dir>/<owner>``,
``<log_dir>/sites/<site id>``, ``siteplane-<owner>`` cgroups), so every id the
registry accepts must be one safe file name.
"""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import UTC, datetime
from typing import Final

MAX_ID_LENGTH: Final[int] = 128

# One path component: starts alphanumeric, so "." / ".." / "-flag" never pass.
_PATH_SAFE_ID_RE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9][A-Za-z0-9._@+-]*")


def generate_site_id() -> str:
    return str(uuid.uuid4())


def generate_session_id(*, now: datetime | None = None) -> str:
    """Name one CLI run's log directory: ``<UTC timestamp>-<6 hex chars>``."""

    moment = now if now is not None else datetime.now(UTC)
    return f"{moment.astimezone(UTC):%Y%m%dT%H%M%SZ}-{secrets.token_hex(3)}"


def validate_opaque_id(id_str: str) -> None:
    """Accept any external id scheme that is a single safe path component."""

    if not isinstance(id_str, str):
        raise ValueError(f"id must be a string, got {type(id_str).__name__}")
    if len(id_str) > MAX_ID_LENGTH:
        raise ValueError(f"id must be at most {MAX_ID_LENGTH} characters (got {len(id_str)})")
    if not _PATH_SAFE_ID_RE.fullmatch(id_str):
        raise ValueError(
            "id must start with a letter or digit and contain only letters, digits, "
            f"'.', '_', '@', '+' or '-' (got {id_str!r})"
        )


__all__ = [
    "MAX_ID_LENGTH",
    "generate_session_id",
    "generate_site_id",
    "validate_opaque_id",
]
